import json
import subprocess
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pytest

from admin_tools.common import powershell
from admin_tools.mailgroups.directory import SnapshotDirectory
from admin_tools.mailgroups.models import Mailbox, PermissionEntry

DOMAIN = "CONTOSO"


def full(grantee: str) -> PermissionEntry:
    if "\\" not in grantee and not grantee.startswith("S-1-"):
        grantee = f"{DOMAIN}\\{grantee}"
    return PermissionEntry(grantee, ("FullAccess",))


def snapshot_from_edges(
    aliases: Iterable[str],
    edges: Iterable[Tuple[str, str]] = (),
    groups: Optional[Dict[str, List[str]]] = None,
    missing: Iterable[str] = (),
) -> SnapshotDirectory:
    """Directory where each ``(grantee, target)`` pair is a FullAccess grant."""
    aliases = list(aliases)
    mailboxes = [Mailbox(a, a.upper(), f"{a}@contoso.com") for a in aliases]
    permissions: Dict[str, List[PermissionEntry]] = {
        a: [PermissionEntry("NT AUTHORITY\\SELF", ("FullAccess", "ReadPermission"))] for a in aliases
    }
    for grantee, target in edges:
        permissions[target].append(full(grantee))
    for a in missing:
        del permissions[a]
    return SnapshotDirectory(mailboxes, permissions, groups, DOMAIN)


class CountingDirectory:
    """Wraps a directory and counts calls per capability."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = {"list_mailboxes": 0, "get_permissions": 0, "resolve_group_members": 0}

    def list_mailboxes(self, filter=None):
        self.calls["list_mailboxes"] += 1
        return self.inner.list_mailboxes(filter)

    def get_permissions(self, alias):
        self.calls["get_permissions"] += 1
        return self.inner.get_permissions(alias)

    def resolve_group_members(self, identity):
        self.calls["resolve_group_members"] += 1
        return self.inner.resolve_group_members(identity)

    def detect_domain(self):
        return self.inner.detect_domain()


@pytest.fixture
def abcd():
    """A -> B -> C chain plus isolated D."""
    return snapshot_from_edges("abcd", [("a", "b"), ("b", "c")])


@pytest.fixture
def action_log(tmp_path, monkeypatch):
    path = tmp_path / "actions.log"
    monkeypatch.setenv("ADMIN_TOOLS_ACTION_LOG", str(path))
    return path


@pytest.fixture
def snapshot_file(tmp_path, abcd) -> Path:
    path = tmp_path / "snapshot.json"
    abcd.save(path)
    return path


def read_jsonl(path: Path) -> List[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


class FakePwsh:
    """Stands in for subprocess.run; replies by matching a cmdlet name.

    Needles are tried in insertion order, so list specific ones first.
    """

    def __init__(self, replies):
        self.replies = replies
        self.commands = []

    def __call__(self, args, **kwargs):
        cmd = args[-1]
        self.commands.append(cmd)
        for needle, (code, out) in self.replies.items():
            if needle in cmd:
                return subprocess.CompletedProcess(args, code, stdout=out, stderr="" if code == 0 else out)
        return subprocess.CompletedProcess(args, 0, stdout="", stderr="")


@pytest.fixture
def pwsh(monkeypatch):
    def install(replies):
        fake = FakePwsh(replies)
        monkeypatch.setattr(powershell.subprocess, "run", fake)
        return fake
    return install


def exchange_replies(mailboxes: List[dict], permissions: Dict[str, List[dict]], groups: Dict[str, List[str]]) -> dict:
    """FakePwsh replies for a small Exchange + AD tenant."""
    replies = {}
    for alias, rows in permissions.items():
        replies[f"Get-MailboxPermission -Identity '{alias}'"] = (0, json.dumps(rows))
    replies["Get-MailboxPermission"] = (0, "")
    replies["Get-Mailbox -ResultSize"] = (0, json.dumps(mailboxes))
    for name, members in groups.items():
        replies[f"$name = '{name}'"] = (0, json.dumps(members))
    return replies
