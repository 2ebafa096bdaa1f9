"""Access-graph builder.

Turns per-mailbox permission entries into directed full-access edges
(grantee -> target) after exclusion filtering and optional group expansion.
Filtering happens here, before any grouping, so the grouping engine only
ever sees surviving edges.
"""

from __future__ import annotations
import logging
from typing import Dict, List, Optional, Tuple
from admin_tools.mailgroups.directory import DirectoryError, DirectoryService, account_name
from admin_tools.mailgroups.exclusions import ExclusionMatcher
from admin_tools.mailgroups.models import AccessGraph, AccessRecord, Mailbox

LOG = logging.getLogger("mailgroups")

GraphKey = Tuple[Tuple[str, ...], bool, Optional[str]]


class AccessGraphCache:
    """Caller-owned store for results worth reusing across several seeds.

    Holds the mailbox enumeration, group expansions and finished graphs for
    one directory. Nothing is cached unless the caller passes an instance in;
    :meth:`invalidate` drops everything.
    """

    def __init__(self):
        self.hits = 0
        self.misses = 0
        self.groups: Dict[str, Optional[List[str]]] = {}
        self._mailboxes: Dict[Optional[str], List[Mailbox]] = {}
        self._graphs: Dict[GraphKey, AccessGraph] = {}

    def mailboxes(self, directory: DirectoryService, filter: Optional[str] = None) -> List[Mailbox]:
        if filter not in self._mailboxes:
            self._mailboxes[filter] = directory.list_mailboxes(filter)
        return self._mailboxes[filter]

    def get(self, key: GraphKey) -> Optional[AccessGraph]:
        """Finished graph for *key*, counting the hit or miss."""
        graph = self._graphs.get(key)
        if graph is None:
            self.misses += 1
        else:
            self.hits += 1
        return graph

    def put(self, key: GraphKey, graph: AccessGraph) -> None:
        self._graphs[key] = graph

    def invalidate(self) -> None:
        self._mailboxes.clear()
        self.groups.clear()
        self._graphs.clear()
        self.hits = self.misses = 0

    def __len__(self) -> int:
        return len(self._graphs)


class _Resolver:
    """Maps grantee identities to graph node keys for one run."""

    def __init__(self, mailboxes: List[Mailbox]):
        self._nodes: Dict[str, str] = {}
        for mbx in mailboxes:
            self._nodes.setdefault(mbx.logon.lower(), mbx.alias)
        for mbx in mailboxes:
            self._nodes.setdefault(mbx.alias.lower(), mbx.alias)

    def node(self, identity: str) -> str:
        name = account_name(identity)
        return self._nodes.get(name.lower(), name)

    def is_mailbox(self, identity: str) -> bool:
        return account_name(identity).lower() in self._nodes


def _expand(directory: DirectoryService, identity: str, memo: Dict[str, Optional[List[str]]]) -> Optional[List[str]]:
    key = account_name(identity).lower()
    if key not in memo:
        memo[key] = directory.resolve_group_members(identity)
    return memo[key]


def _grantees(
    mbx: Mailbox,
    directory: DirectoryService,
    matcher: ExclusionMatcher,
    resolver: _Resolver,
    expand_groups: bool,
    memo: Dict[str, Optional[List[str]]],
) -> List[str]:
    """Surviving, de-duplicated full-access grantees of *mbx* (raises DirectoryError)."""
    found: Dict[str, None] = {}
    for entry in directory.get_permissions(mbx.alias):
        if not entry.is_full_access or matcher(entry.grantee):
            continue
        members = None
        if expand_groups and not resolver.is_mailbox(entry.grantee):
            members = _expand(directory, entry.grantee, memo)
        identities = [entry.grantee] if members is None else [m for m in members if not matcher(m)]
        for identity in identities:
            node = resolver.node(identity)
            if node != mbx.alias:
                found[node] = None
    return list(found)


def build_access_graph(
    directory: DirectoryService,
    matcher: Optional[ExclusionMatcher] = None,
    expand_groups: bool = False,
    mailbox_filter: Optional[str] = None,
    cache: Optional[AccessGraphCache] = None,
) -> AccessGraph:
    """Query every mailbox's permissions and assemble the access graph.

    Mailboxes are processed in enumeration order. A mailbox whose permission
    (or group) query fails is logged and listed in ``skipped``; it appears
    nowhere else, not even as another mailbox's grantee. A queried mailbox
    with no surviving grantees gets a null-access record.
    """
    matcher = matcher or ExclusionMatcher()
    key: GraphKey = (tuple(matcher.patterns), expand_groups, mailbox_filter)
    if cache is not None:
        cached = cache.get(key)
        if cached is not None:
            LOG.debug("Access graph cache hit %s", key)
            return cached
        mailboxes = cache.mailboxes(directory, mailbox_filter)
        memo = cache.groups
    else:
        mailboxes = directory.list_mailboxes(mailbox_filter)
        memo = {}

    resolver = _Resolver(mailboxes)
    graph = AccessGraph()
    fetched = []
    for mbx in mailboxes:
        try:
            fetched.append((mbx, _grantees(mbx, directory, matcher, resolver, expand_groups, memo)))
        except DirectoryError as exc:
            LOG.warning("Skipping mailbox %s: %s", mbx.alias, exc)
            graph.skipped.append(mbx.alias)

    skipped = set(graph.skipped)
    for mbx, grantees in fetched:
        graph.mailboxes[mbx.alias] = mbx
        grantees = [g for g in grantees if g not in skipped]
        if not grantees:
            graph.records.append(AccessRecord(mbx, None))
            continue
        graph.accessed_by[mbx.alias] = grantees
        for grantee in grantees:
            graph.access_to.setdefault(grantee, []).append(mbx.alias)
            graph.records.append(AccessRecord(mbx, grantee))

    LOG.info(
        "Access graph: %d mailboxes, %d edges, %d skipped",
        len(graph.mailboxes), graph.edge_count, len(graph.skipped),
    )
    if cache is not None:
        cache.put(key, graph)
    return graph
