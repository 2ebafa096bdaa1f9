"""MailGroups — mailbox migration-grouping reports
================================================
Part of *Admin-Tools* suite

Works out which mailboxes have to move together in a migration: if Alice has
full access to Bob's mailbox and Bob to Carol's, all three go in one batch.

MVS (minimum viable scope)
-------------------------
* **Prerequisite**: `ExchangeOnlineManagement` and RSAT `ActiveDirectory`
  PowerShell modules (or a JSON snapshot via `--snapshot`).
* **Sub-commands**
  • `group [SEED...]` → migration group per seed; no seed → mailboxes with no
    full-access relationships; `--all` → every group.
  • `permissions`     → full-access listing (table or `--csv`).
  • `diagram OUT`     → Graphviz DOT file of the access graph.
  • `snapshot OUT`    → save live directory data for offline runs.
* **Filtering**: built-in service accounts are excluded unless `--show-all`;
  add your own wildcard rules with `--exclude 'CONTOSO\\svc-*'`.
* **Logging**: JSON Lines (`mailgroups.log`) with timestamp + action + target.
"""

from __future__ import annotations
import logging
from pathlib import Path
from typing import List, Optional
import typer
from rich.console import Console
from admin_tools.common.actionlog import log_action
from admin_tools.common.env import env, env_list
from admin_tools.common.powershell import quote, run_ps
from admin_tools.mailgroups.directory import DirectoryService, PowerShellDirectory, SnapshotDirectory
from admin_tools.mailgroups.exclusions import build_matcher
from admin_tools.mailgroups.graph import AccessGraphCache, build_access_graph
from admin_tools.mailgroups.grouping import MailboxNotFoundError, all_groups, component, isolated_mailboxes, migration_group
from admin_tools.mailgroups.models import AccessGraph
from admin_tools.mailgroups.report import group_lines, permission_rows, permission_table, render_dot, write_csv

APP_VERSION = "0.2.0"
app = typer.Typer(add_completion=False, help="MailGroups - mailbox migration-grouping CLI")
LOG = logging.getLogger("mailgroups")
console = Console()


class _State:
    """Per-invocation directory and graph cache, reset by the callback."""

    def __init__(self):
        self.directory: Optional[DirectoryService] = None
        self.cache = AccessGraphCache()

    def reset(self, directory: Optional[DirectoryService] = None) -> None:
        self.directory = directory
        self.cache = AccessGraphCache()


state = _State()

# ----------------------------- helpers --------------------------------------

def ensure_connection(tenant: Optional[str] = None):
    """Connect to Exchange Online if not already connected."""
    cmd = "if (-not (Get-ConnectionInformation)) { Connect-ExchangeOnline -ShowBanner:$false"
    upn = env("ADMIN_TOOLS_UPN")
    if upn:
        cmd += f" -UserPrincipalName {quote(upn)}"
    if tenant:
        cmd += f" -Organization {quote(tenant)}"
    cmd += " }"
    run_ps(cmd, ["ExchangeOnlineManagement"])


def directory() -> DirectoryService:
    if state.directory is None:
        state.directory = PowerShellDirectory(domain=env("ADMIN_TOOLS_DOMAIN"))
    return state.directory


def load_graph(
    domain: Optional[str],
    exclude: List[str],
    show_all: bool,
    expand_groups: bool,
    mailbox_filter: Optional[str],
) -> AccessGraph:
    """Build (or reuse) the access graph for the given filtering options."""
    source = directory()
    domain = domain or env("ADMIN_TOOLS_DOMAIN") or source.detect_domain()
    if domain and not source.domain:
        # qualifies expanded group members
        source.domain = domain
    matcher = build_matcher(env_list("ADMIN_TOOLS_EXCLUDE") + list(exclude), domain, show_all)
    LOG.debug("Exclusion patterns: %s", matcher.patterns)
    graph = build_access_graph(source, matcher, expand_groups, mailbox_filter, cache=state.cache)
    for alias in graph.skipped:
        typer.secho(f"Warning: could not read permissions for {alias}; skipped", fg=typer.colors.YELLOW)
    return graph


# ----------------------------- shared options -------------------------------

DomainOpt = typer.Option(None, "--domain", "-d", help="Domain short name (auto-detected when omitted)")
ExcludeOpt = typer.Option([], "--exclude", "-x", help="Wildcard identity to ignore, e.g. 'CONTOSO\\svc-*' (repeatable)")
ShowAllOpt = typer.Option(False, "--show-all", help="Do not apply the built-in service-account exclusions")
ExpandOpt = typer.Option(False, "--expand-groups", "-g", help="Replace group grantees by their members")
FilterOpt = typer.Option(None, "--filter", "-f", help="Only consider mailboxes matching this wildcard")


# ----------------------------- CLI commands ---------------------------------

@app.callback()
def _common(
    connect: bool = typer.Option(False, "--connect", help="Connect to Exchange Online first."),
    tenant: Optional[str] = typer.Option(None, "--tenant", help="Tenant domain if using delegated admin"),
    snapshot: Optional[Path] = typer.Option(None, "--snapshot", exists=True, readable=True, help="Read directory data from a JSON snapshot"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Shared options for all sub-commands."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    state.reset(SnapshotDirectory.load(snapshot) if snapshot else None)
    if connect and not snapshot:
        typer.echo("Connecting to Exchange Online …")
        ensure_connection(tenant)


@app.command()
def group(
    seeds: Optional[List[str]] = typer.Argument(None, help="Seed mailbox(es): alias, address or display name"),
    all_: bool = typer.Option(False, "--all", help="Print every migration group (no SEED arguments)"),
    domain: Optional[str] = DomainOpt,
    exclude: List[str] = ExcludeOpt,
    show_all: bool = ShowAllOpt,
    expand_groups: bool = ExpandOpt,
    mailbox_filter: Optional[str] = FilterOpt,
):
    """Print the migration group of each *SEED* (or the isolated mailboxes)."""
    if all_ and seeds:
        typer.secho("--all cannot be combined with SEED arguments", fg=typer.colors.RED)
        raise typer.Exit(1)
    graph = load_graph(domain, exclude, show_all, expand_groups, mailbox_filter)

    if all_:
        groups = all_groups(graph)
        for idx, members in enumerate(groups, 1):
            typer.secho(f"Group {idx} ({len(members)} mailboxes)", bold=True)
            for line in group_lines(graph, members):
                typer.echo(f"  {line}")
        log_action("group", {"mode": "all", "groups": len(groups)})
        return

    if not seeds:
        isolated = isolated_mailboxes(graph)
        typer.secho(f"Mailboxes with no full-access relationships: {len(isolated)}", bold=True)
        for line in group_lines(graph, isolated):
            typer.echo(f"  {line}")
        log_action("group", {"mode": "isolated", "count": len(isolated)})
        return

    for seed in seeds:
        try:
            members = migration_group(graph, seed)
        except MailboxNotFoundError as exc:
            typer.secho(str(exc), fg=typer.colors.RED)
            log_action("group", {"seed": seed, "error": "not found"})
            raise typer.Exit(1)
        typer.secho(f"Migration group for {seed} ({len(members)} mailboxes)", bold=True)
        for line in group_lines(graph, members):
            typer.echo(f"  {line}")
        log_action("group", {"seed": seed, "members": sorted(members)})


@app.command()
def permissions(
    domain: Optional[str] = DomainOpt,
    exclude: List[str] = ExcludeOpt,
    show_all: bool = ShowAllOpt,
    expand_groups: bool = ExpandOpt,
    mailbox_filter: Optional[str] = FilterOpt,
    include_null: bool = typer.Option(False, "--include-null", help="List mailboxes nobody else can open"),
    csv_path: Optional[Path] = typer.Option(None, "--csv", help="Write rows to CSV instead of the console"),
):
    """List full-access grantees per mailbox."""
    graph = load_graph(domain, exclude, show_all, expand_groups, mailbox_filter)
    rows = permission_rows(graph, include_null)
    if csv_path:
        write_csv(rows, csv_path)
        typer.echo(f"Wrote {len(rows)} rows → {csv_path}")
    elif not rows:
        typer.echo("No full-access permissions found.")
    else:
        console.print(permission_table(rows))
    log_action("permissions", {"rows": len(rows), "skipped": graph.skipped})


@app.command()
def diagram(
    out_file: Path = typer.Argument(..., help="Output .dot path"),
    seed: Optional[str] = typer.Option(None, "--seed", help="Only draw this mailbox's migration group"),
    domain: Optional[str] = DomainOpt,
    exclude: List[str] = ExcludeOpt,
    show_all: bool = ShowAllOpt,
    expand_groups: bool = ExpandOpt,
    mailbox_filter: Optional[str] = FilterOpt,
):
    """Write a Graphviz diagram of full-access relationships."""
    graph = load_graph(domain, exclude, show_all, expand_groups, mailbox_filter)
    aliases = None
    if seed:
        try:
            aliases = component(graph, seed)
        except MailboxNotFoundError as exc:
            typer.secho(str(exc), fg=typer.colors.RED)
            raise typer.Exit(1)
    out_file.write_text(render_dot(graph, aliases), encoding="utf-8")
    typer.secho(f"Diagram → {out_file}", fg=typer.colors.GREEN)
    log_action("diagram", {"out": str(out_file), "seed": seed})


@app.command()
def snapshot(
    out_file: Path = typer.Argument(..., help="Output JSON path"),
    mailbox_filter: Optional[str] = FilterOpt,
):
    """Save mailboxes, permissions and group memberships to *OUT_FILE*."""
    snap = SnapshotDirectory.capture(directory(), mailbox_filter)
    snap.save(out_file)
    typer.secho(f"Saved {len(snap.mailboxes)} mailboxes → {out_file}", fg=typer.colors.GREEN)
    log_action("snapshot", {"out": str(out_file), "mailboxes": len(snap.mailboxes)})


@app.command()
def version():
    """Print MailGroups version."""
    typer.echo(APP_VERSION)


if __name__ == "__main__":
    app()
