from admin_tools.mailgroups.cli import app

app(prog_name="mailgroups")
