"""Directory/mailbox query backends.

The graph builder only needs three capabilities (enumerate mailboxes, read a
mailbox's permissions, expand a group) and is written against the
:class:`DirectoryService` protocol. Two backends ship here:

* :class:`PowerShellDirectory` - live Exchange / Active Directory cmdlets run
  through ``pwsh`` (see :mod:`admin_tools.common.powershell`).
* :class:`SnapshotDirectory` - an in-memory copy, loadable from and savable
  to a JSON file so reports can be produced offline.
"""

from __future__ import annotations
import fnmatch
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol
from admin_tools.common.powershell import PowerShellError, quote, run_ps, run_ps_json
from admin_tools.mailgroups.models import Mailbox, PermissionEntry

LOG = logging.getLogger("mailgroups")

EXCHANGE_MODULES = ("ExchangeOnlineManagement",)
AD_MODULES = ("ActiveDirectory",)


class DirectoryError(RuntimeError):
    """A directory query failed for one item."""


class DirectoryService(Protocol):
    domain: Optional[str]

    def list_mailboxes(self, filter: Optional[str] = None) -> List[Mailbox]:
        ...

    def get_permissions(self, alias: str) -> List[PermissionEntry]:
        ...

    def resolve_group_members(self, identity: str) -> Optional[List[str]]:
        """Recursive member identities, or None when *identity* is not a group."""
        ...

    def detect_domain(self) -> Optional[str]:
        ...


def account_name(identity: str) -> str:
    """``DOMAIN\\jdoe`` -> ``jdoe``; bare names pass through."""
    return identity.rsplit("\\", 1)[-1].strip()


def mailbox_matches(mbx: Mailbox, pattern: Optional[str]) -> bool:
    """Case-insensitive wildcard test over alias, display name and address."""
    if not pattern:
        return True
    pat = pattern.lower()
    return any(
        fnmatch.fnmatchcase(value.lower(), pat)
        for value in (mbx.alias, mbx.display_name, mbx.primary_address)
        if value
    )


# ----------------------------- live backend ----------------------------------

class PowerShellDirectory:
    """Exchange + Active Directory cmdlets executed via PowerShell."""

    def __init__(self, domain: Optional[str] = None, exchange_modules: Iterable[str] = EXCHANGE_MODULES):
        self.domain = domain
        self.exchange_modules = tuple(exchange_modules)

    def list_mailboxes(self, filter: Optional[str] = None) -> List[Mailbox]:
        rows = run_ps_json(
            "Get-Mailbox -ResultSize Unlimited | Select-Object "
            "Alias, DisplayName, SamAccountName, "
            "@{n='PrimarySmtpAddress';e={$_.PrimarySmtpAddress.ToString()}}",
            self.exchange_modules,
        )
        mailboxes = []
        for row in rows:
            mbx = Mailbox(
                alias=row["Alias"],
                display_name=row.get("DisplayName") or row["Alias"],
                primary_address=row.get("PrimarySmtpAddress") or "",
                account=row.get("SamAccountName") or None,
            )
            if mailbox_matches(mbx, filter):
                mailboxes.append(mbx)
        LOG.debug("Enumerated %d mailboxes (filter=%s)", len(mailboxes), filter)
        return mailboxes

    def get_permissions(self, alias: str) -> List[PermissionEntry]:
        try:
            rows = run_ps_json(
                f"Get-MailboxPermission -Identity {quote(alias)} | Select-Object "
                "@{n='grantee';e={$_.User.ToString()}}, "
                "@{n='rights';e={@($_.AccessRights | ForEach-Object { $_.ToString() })}}, "
                "@{n='denied';e={[bool]$_.Deny}}",
                self.exchange_modules,
            )
        except PowerShellError as exc:
            raise DirectoryError(f"permission query failed for {alias}: {exc}") from exc
        return [PermissionEntry.from_dict(row) for row in rows]

    def resolve_group_members(self, identity: str) -> Optional[List[str]]:
        script = (
            f"$name = {quote(account_name(identity))}; "
            "$g = Get-ADGroup -Filter { SamAccountName -eq $name }; "
            "if (-not $g) { 'null' } else { "
            "ConvertTo-Json -Compress -InputObject @(Get-ADGroupMember -Identity $g -Recursive "
            "| ForEach-Object { $_.SamAccountName }) }"
        )
        try:
            out = run_ps(script, AD_MODULES)
        except PowerShellError as exc:
            raise DirectoryError(f"group lookup failed for {identity}: {exc}") from exc
        try:
            members = json.loads(out) if out else None
        except json.JSONDecodeError as exc:
            raise DirectoryError(f"unreadable group lookup output for {identity}: {exc}") from exc
        if members is None:
            return None
        if isinstance(members, str):
            members = [members]
        prefix = f"{self.domain}\\" if self.domain else ""
        return [prefix + m for m in members]

    def detect_domain(self) -> Optional[str]:
        if self.domain:
            return self.domain
        try:
            self.domain = run_ps("(Get-ADDomain).NetBIOSName", AD_MODULES) or None
        except PowerShellError as exc:
            LOG.warning("Could not detect the AD domain: %s", exc)
        return self.domain


# ----------------------------- snapshot backend ------------------------------

class SnapshotDirectory:
    """Directory data held in memory.

    A mailbox with no entry in ``permissions`` behaves like a failed query.
    """

    def __init__(
        self,
        mailboxes: Iterable[Mailbox],
        permissions: Dict[str, List[PermissionEntry]],
        groups: Optional[Dict[str, List[str]]] = None,
        domain: Optional[str] = None,
    ):
        self.mailboxes = list(mailboxes)
        self.permissions = dict(permissions)
        self.groups = {account_name(k).lower(): list(v) for k, v in (groups or {}).items()}
        self.domain = domain

    def list_mailboxes(self, filter: Optional[str] = None) -> List[Mailbox]:
        return [m for m in self.mailboxes if mailbox_matches(m, filter)]

    def get_permissions(self, alias: str) -> List[PermissionEntry]:
        if alias not in self.permissions:
            raise DirectoryError(f"no permission data for {alias}")
        return list(self.permissions[alias])

    def resolve_group_members(self, identity: str) -> Optional[List[str]]:
        members = self.groups.get(account_name(identity).lower())
        return None if members is None else list(members)

    def detect_domain(self) -> Optional[str]:
        return self.domain

    # ---- persistence

    @classmethod
    def load(cls, path: Path) -> "SnapshotDirectory":
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        return cls(
            mailboxes=[Mailbox.from_dict(m) for m in data.get("mailboxes", [])],
            permissions={
                alias: [PermissionEntry.from_dict(p) for p in entries]
                for alias, entries in data.get("permissions", {}).items()
            },
            groups=data.get("groups", {}),
            domain=data.get("domain"),
        )

    def save(self, path: Path) -> None:
        data = {
            "domain": self.domain,
            "mailboxes": [m.to_dict() for m in self.mailboxes],
            "permissions": {
                alias: [p.to_dict() for p in entries] for alias, entries in self.permissions.items()
            },
            "groups": self.groups,
        }
        with path.open("w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)

    @classmethod
    def capture(cls, directory: DirectoryService, filter: Optional[str] = None) -> "SnapshotDirectory":
        """Copy everything the graph builder could ask *directory* for."""
        mailboxes = directory.list_mailboxes(filter)
        accounts = {m.logon.lower() for m in mailboxes}
        permissions: Dict[str, List[PermissionEntry]] = {}
        groups: Dict[str, List[str]] = {}
        checked = set(accounts)
        for mbx in mailboxes:
            try:
                permissions[mbx.alias] = directory.get_permissions(mbx.alias)
            except DirectoryError as exc:
                LOG.warning("Skipping %s: %s", mbx.alias, exc)
                continue
            for entry in permissions[mbx.alias]:
                name = account_name(entry.grantee).lower()
                if not entry.is_full_access or name in checked:
                    continue
                checked.add(name)
                try:
                    members = directory.resolve_group_members(entry.grantee)
                except DirectoryError as exc:
                    LOG.warning("Could not expand %s: %s", entry.grantee, exc)
                    continue
                if members is not None:
                    groups[name] = members
        return cls(mailboxes, permissions, groups, directory.detect_domain())
