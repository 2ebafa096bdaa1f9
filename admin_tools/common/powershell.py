"""PowerShell plumbing shared by the admin-tools modules.

Every cmdlet runs in a fresh ``pwsh`` process; structured results are
requested with ``ConvertTo-Json`` and decoded here.
"""

from __future__ import annotations
import json
import logging
import subprocess
from typing import Any, Iterable, List
from admin_tools.common.env import env

LOG = logging.getLogger("admin_tools.powershell")


class PowerShellError(RuntimeError):
    """A PowerShell command exited non-zero or returned unreadable output."""

    def __init__(self, message: str, command: str = ""):
        super().__init__(message)
        self.command = command


def quote(value: str) -> str:
    """Wrap *value* in single quotes, doubling embedded quotes."""
    return "'" + value.replace("'", "''") + "'"


def run_ps(cmd: str, modules: Iterable[str] = ()) -> str:
    """Invoke a PowerShell command and capture stdout (raise on error)."""
    prelude = "$PSStyle.OutputRendering='PlainText'; $ErrorActionPreference='Stop'; "
    for module in modules:
        prelude += f"Import-Module {module}; "
    LOG.debug("Executing: %s", cmd)
    proc = subprocess.run([
        env("ADMIN_TOOLS_PWSH", "pwsh"),
        "-NoLogo",
        "-NoProfile",
        "-NonInteractive",
        "-Command",
        prelude + cmd,
    ], capture_output=True, text=True)
    if proc.returncode != 0:
        raise PowerShellError(proc.stderr.strip() or f"exit code {proc.returncode}", cmd)
    return proc.stdout.strip()


def run_ps_json(cmd: str, modules: Iterable[str] = ()) -> List[Any]:
    """Run *cmd* piped through ``ConvertTo-Json`` and return a list of objects.

    PowerShell emits a bare object for a single result and nothing at all for
    an empty pipeline; both are normalised to a list.
    """
    out = run_ps(f"@({cmd}) | ConvertTo-Json -Depth 4 -Compress", modules)
    if not out:
        return []
    try:
        data = json.loads(out)
    except json.JSONDecodeError as exc:
        raise PowerShellError(f"unparseable output: {exc}", cmd) from exc
    if data is None:
        return []
    if isinstance(data, list):
        return data
    return [data]
