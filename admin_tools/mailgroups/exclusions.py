"""Exclusion rules for well-known service and administrative principals.

All wildcard patterns are folded into a single case-insensitive regular
expression when the matcher is built, so a run over thousands of mailboxes
compiles the rule set exactly once.
"""

from __future__ import annotations
import fnmatch
import re
from typing import Iterable, List, Optional

# Group and account names created by Exchange / AD setup.
BUILTIN_PRINCIPALS = [
    "Administrator",
    "Domain Admins",
    "Enterprise Admins",
    "Organization Management",
    "Exchange *",
    "Public Folder Management",
    "Delegated Setup",
    "Managed Availability Servers",
    "Discovery Management",
]


def default_exclusions(domain: Optional[str] = None) -> List[str]:
    """Built-in exclusion patterns, scoped to *domain* when it is known."""
    prefix = f"{domain}\\" if domain else "*\\"
    return ["NT AUTHORITY\\*", "S-1-5-*"] + [prefix + name for name in BUILTIN_PRINCIPALS]


class ExclusionMatcher:
    """Answers "is this identity excluded?" for a fixed set of wildcard patterns."""

    def __init__(self, patterns: Iterable[str] = ()):
        self.patterns = [p.strip() for p in patterns if p and p.strip()]
        if self.patterns:
            combined = "|".join(f"(?:{fnmatch.translate(p)})" for p in self.patterns)
            self._regex: Optional[re.Pattern[str]] = re.compile(combined, re.IGNORECASE)
        else:
            self._regex = None

    def matches(self, identity: str) -> bool:
        if self._regex is None or not identity:
            return False
        return self._regex.match(identity.strip()) is not None

    __call__ = matches

    def __bool__(self) -> bool:
        return self._regex is not None

    def __repr__(self) -> str:
        return f"ExclusionMatcher({self.patterns!r})"


def build_matcher(extra: Iterable[str] = (), domain: Optional[str] = None, show_all: bool = False) -> ExclusionMatcher:
    """Built-in rules plus caller patterns; ``show_all`` keeps only the caller's."""
    patterns = [] if show_all else default_exclusions(domain)
    patterns.extend(extra)
    return ExclusionMatcher(patterns)
