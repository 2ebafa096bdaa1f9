"""Record types shared by the graph builder, grouping engine and reports."""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

FULL_ACCESS = "fullaccess"


@dataclass(frozen=True)
class Mailbox:
    alias: str
    display_name: str
    primary_address: str = ""
    account: Optional[str] = None  # sAMAccountName; falls back to alias

    @property
    def logon(self) -> str:
        return self.account or self.alias

    @classmethod
    def from_dict(cls, raw: dict) -> "Mailbox":
        return cls(
            alias=raw["alias"],
            display_name=raw.get("display_name") or raw["alias"],
            primary_address=raw.get("primary_address", "") or "",
            account=raw.get("account") or None,
        )

    def to_dict(self) -> dict:
        return {
            "alias": self.alias,
            "display_name": self.display_name,
            "primary_address": self.primary_address,
            "account": self.account,
        }


@dataclass(frozen=True)
class PermissionEntry:
    grantee: str  # DOMAIN\account, a bare name, or a SID
    rights: Tuple[str, ...] = ()
    denied: bool = False

    @property
    def is_full_access(self) -> bool:
        """True for an allow entry carrying FullAccess."""
        if self.denied:
            return False
        return any(r.strip().lower() == FULL_ACCESS for r in self.rights)

    @classmethod
    def from_dict(cls, raw: dict) -> "PermissionEntry":
        rights = raw.get("rights") or ()
        if isinstance(rights, str):
            # Exchange sometimes hands back "FullAccess, ReadPermission"
            rights = [r for r in rights.split(",") if r.strip()]
        return cls(
            grantee=raw["grantee"],
            rights=tuple(r.strip() for r in rights),
            denied=bool(raw.get("denied", False)),
        )

    def to_dict(self) -> dict:
        return {"grantee": self.grantee, "rights": list(self.rights), "denied": self.denied}


@dataclass(frozen=True)
class AccessRecord:
    """One row of the permission listing; ``grantee`` None is a null-access row."""

    mailbox: Mailbox
    grantee: Optional[str] = None


@dataclass
class AccessGraph:
    """Full-access relationships between queried mailboxes.

    ``accessed_by`` maps a target alias to the principals holding full access
    to it; ``access_to`` is the inverse view. Mailboxes whose permission query
    failed are listed in ``skipped`` and appear nowhere else.
    """

    mailboxes: Dict[str, Mailbox] = field(default_factory=dict)
    accessed_by: Dict[str, List[str]] = field(default_factory=dict)
    access_to: Dict[str, List[str]] = field(default_factory=dict)
    records: List[AccessRecord] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def grantees_of(self, alias: str) -> List[str]:
        return self.accessed_by.get(alias, [])

    def targets_of(self, alias: str) -> List[str]:
        return self.access_to.get(alias, [])

    def label(self, alias: str) -> str:
        """Display name for *alias*, or the alias itself for non-mailbox principals."""
        mbx = self.mailboxes.get(alias)
        return mbx.display_name if mbx else alias

    @property
    def edge_count(self) -> int:
        return sum(len(v) for v in self.accessed_by.values())
