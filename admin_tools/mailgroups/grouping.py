"""Migration grouping over an :class:`AccessGraph`.

A migration group is every queried mailbox reachable from a seed by following
full-access edges in either direction, i.e. the weakly-connected component
containing the seed.
"""

from __future__ import annotations
from collections import deque
from typing import FrozenSet, List
from admin_tools.mailgroups.models import AccessGraph, Mailbox


class MailboxNotFoundError(LookupError):
    """The requested seed mailbox does not exist in the graph."""

    def __init__(self, name: str):
        super().__init__(f"seed user not found: {name}")
        self.name = name


def find_mailbox(graph: AccessGraph, name: str) -> Mailbox:
    """Look *name* up by alias, logon, primary address or display name."""
    wanted = name.strip().lower()
    if not wanted:
        raise MailboxNotFoundError(name)
    if name in graph.mailboxes:
        return graph.mailboxes[name]
    for mbx in graph.mailboxes.values():
        if wanted in (mbx.alias.lower(), mbx.logon.lower(), mbx.primary_address.lower()):
            return mbx
    for mbx in graph.mailboxes.values():
        if mbx.display_name.lower() == wanted:
            return mbx
    raise MailboxNotFoundError(name)


def component(graph: AccessGraph, seed: str) -> FrozenSet[str]:
    """Every node linked to *seed*, including principals that own no mailbox."""
    start = find_mailbox(graph, seed).alias
    queue = deque([start])
    examined = set()
    nodes = {start}
    while queue:
        alias = queue.popleft()
        if alias in examined:
            continue
        examined.add(alias)
        for neighbour in graph.targets_of(alias) + graph.grantees_of(alias):
            nodes.add(neighbour)
            if neighbour not in examined:
                queue.append(neighbour)
    return frozenset(nodes)


def migration_group(graph: AccessGraph, seed: str) -> FrozenSet[str]:
    """Mailbox aliases that must move together with *seed* (the seed included).

    Principals without a mailbox of their own still link mailboxes together
    but are not members; every member is itself a valid seed.
    """
    return frozenset(alias for alias in component(graph, seed) if alias in graph.mailboxes)


def isolated_mailboxes(graph: AccessGraph) -> List[str]:
    """Queried mailboxes nobody can open and that open nothing themselves."""
    return sorted(
        alias for alias in graph.mailboxes
        if not graph.targets_of(alias) and not graph.grantees_of(alias)
    )


def all_groups(graph: AccessGraph) -> List[FrozenSet[str]]:
    """Partition every queried mailbox into its migration group.

    Largest groups first, ties broken by the lexicographically smallest member.
    """
    seen = set()
    groups = []
    for alias in graph.mailboxes:
        if alias in seen:
            continue
        group = migration_group(graph, alias)
        seen.update(group)
        groups.append(group)
    return sorted(groups, key=lambda g: (-len(g), min(g)))
