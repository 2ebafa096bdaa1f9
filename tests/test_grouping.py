import random

import pytest
from conftest import snapshot_from_edges

from admin_tools.mailgroups.directory import SnapshotDirectory
from admin_tools.mailgroups.exclusions import build_matcher
from admin_tools.mailgroups.graph import build_access_graph
from admin_tools.mailgroups.grouping import (
    MailboxNotFoundError,
    all_groups,
    component,
    find_mailbox,
    isolated_mailboxes,
    migration_group,
)
from admin_tools.mailgroups.models import Mailbox

MATCHER = build_matcher(domain="CONTOSO")


def graph_of(aliases, edges, **kwargs):
    return build_access_graph(snapshot_from_edges(aliases, edges), kwargs.pop("matcher", MATCHER), **kwargs)


def random_edges(rng, aliases, count):
    return [(rng.choice(aliases), rng.choice(aliases)) for _ in range(count)]


def random_tenant(rng, size=20):
    """Mailboxes, mailbox-less principals, groups and a few unreadable mailboxes."""
    aliases = [f"m{i:02d}" for i in range(size)]
    principals = [f"p{i}" for i in range(3)]
    groups = {
        f"g{i}": [f"CONTOSO\\{m}" for m in rng.sample(aliases + principals, 3)]
        for i in range(3)
    }
    grantees = aliases + principals + list(groups)
    edges = [(rng.choice(grantees), rng.choice(aliases)) for _ in range(size)]
    missing = rng.sample(aliases, 3)
    return aliases, edges, groups, missing


def test_chain_example(abcd):
    graph = build_access_graph(abcd, MATCHER)
    for seed in "abc":
        assert migration_group(graph, seed) == {"a", "b", "c"}
    assert migration_group(graph, "d") == {"d"}
    assert isolated_mailboxes(graph) == ["d"]


def test_cycle_terminates():
    graph = graph_of("ab", [("a", "b"), ("b", "a")])
    assert migration_group(graph, "a") == {"a", "b"}
    assert migration_group(graph, "b") == {"a", "b"}
    assert isolated_mailboxes(graph) == []


def test_no_edges_everything_isolated():
    aliases = ["u1", "u2", "u3"]
    graph = graph_of(aliases, [])
    assert isolated_mailboxes(graph) == aliases
    for alias in aliases:
        assert migration_group(graph, alias) == {alias}


def test_inbound_only_links_are_followed():
    # b and c both open a; neither can open the other
    graph = graph_of("abc", [("b", "a"), ("c", "a")])
    assert migration_group(graph, "b") == {"a", "b", "c"}


@pytest.mark.parametrize("seed", range(10))
def test_group_is_idempotent_over_members(seed):
    rng = random.Random(seed)
    aliases = [f"m{i:02d}" for i in range(25)]
    graph = graph_of(aliases, random_edges(rng, aliases, 18))
    for alias in aliases:
        group = migration_group(graph, alias)
        assert alias in group
        for member in group:
            assert migration_group(graph, member) == group


@pytest.mark.parametrize("expand_groups", [False, True])
@pytest.mark.parametrize("seed", range(8))
def test_mixed_tenant_groups_hold_only_seedable_mailboxes(seed, expand_groups):
    aliases, edges, groups, missing = random_tenant(random.Random(seed))
    directory = snapshot_from_edges(aliases, edges, groups=groups, missing=missing)
    graph = build_access_graph(directory, MATCHER, expand_groups=expand_groups)
    assert sorted(graph.skipped) == sorted(missing)
    for alias in graph.mailboxes:
        group = migration_group(graph, alias)
        assert alias in group
        assert group <= set(graph.mailboxes)
        for member in group:
            assert migration_group(graph, member) == group
    for alias in missing:
        assert alias not in graph.access_to
        with pytest.raises(MailboxNotFoundError):
            migration_group(graph, alias)
    assert sum(len(g) for g in all_groups(graph)) == len(graph.mailboxes)


@pytest.mark.parametrize("expand_groups", [False, True])
@pytest.mark.parametrize("seed", range(8))
def test_mixed_tenant_membership_ignores_visit_order(seed, expand_groups):
    rng = random.Random(seed)
    aliases, edges, groups, missing = random_tenant(rng)
    baseline = build_access_graph(
        snapshot_from_edges(aliases, edges, groups=groups, missing=missing), MATCHER, expand_groups=expand_groups,
    )

    shuffled_aliases = aliases[:]
    shuffled_edges = edges[:]
    rng.shuffle(shuffled_aliases)
    rng.shuffle(shuffled_edges)
    shuffled = build_access_graph(
        snapshot_from_edges(shuffled_aliases, shuffled_edges, groups=groups, missing=missing),
        MATCHER, expand_groups=expand_groups,
    )

    assert set(baseline.mailboxes) == set(shuffled.mailboxes)
    for alias in baseline.mailboxes:
        assert migration_group(baseline, alias) == migration_group(shuffled, alias)
    assert isolated_mailboxes(baseline) == isolated_mailboxes(shuffled)


@pytest.mark.parametrize("seed", range(10))
def test_visit_order_does_not_change_membership(seed):
    rng = random.Random(seed)
    aliases = [f"m{i:02d}" for i in range(20)]
    edges = random_edges(rng, aliases, 15)
    baseline = graph_of(aliases, edges)

    shuffled_aliases = aliases[:]
    shuffled_edges = edges[:]
    rng.shuffle(shuffled_aliases)
    rng.shuffle(shuffled_edges)
    shuffled = graph_of(shuffled_aliases, shuffled_edges)

    for alias in aliases:
        assert migration_group(baseline, alias) == migration_group(shuffled, alias)
    assert isolated_mailboxes(baseline) == isolated_mailboxes(shuffled)


def test_groups_partition_mailboxes():
    graph = graph_of("abcdef", [("a", "b"), ("c", "d"), ("d", "e")])
    groups = all_groups(graph)
    assert groups == [frozenset("cde"), frozenset("ab"), frozenset("f")]
    assert sum(len(g) for g in groups) == len(graph.mailboxes)


def test_exclusion_applies_transitively():
    # svc-backup would otherwise bridge {a, b} and {c}
    edges = [("a", "b"), ("svc-backup", "b"), ("svc-backup", "c")]
    aliases = ["a", "b", "c", "svc-backup"]
    unfiltered = graph_of(aliases, edges)
    assert migration_group(unfiltered, "a") == {"a", "b", "c", "svc-backup"}

    graph = graph_of(aliases, edges, matcher=build_matcher(["CONTOSO\\svc-backup"], domain="CONTOSO"))
    assert migration_group(graph, "a") == {"a", "b"}
    assert migration_group(graph, "c") == {"c"}
    for group in all_groups(graph):
        if "svc-backup" in group:
            assert group == {"svc-backup"}


def test_non_mailbox_principals_link_but_are_not_members():
    directory = snapshot_from_edges("ab", [("helpdesk", "a"), ("helpdesk", "b")])
    graph = build_access_graph(directory, MATCHER)
    assert migration_group(graph, "a") == {"a", "b"}
    assert component(graph, "a") == {"a", "b", "helpdesk"}
    assert all_groups(graph) == [frozenset({"a", "b"})]


def test_members_are_seedable_with_skipped_mailbox_and_principal():
    # c failed to load; helpdesk owns no mailbox
    directory = snapshot_from_edges("abcd", [("a", "b"), ("c", "b"), ("c", "d"), ("helpdesk", "a")], missing=["c"])
    graph = build_access_graph(directory, MATCHER)
    group = migration_group(graph, "a")
    assert group == {"a", "b"}
    for member in group:
        assert migration_group(graph, member) == group
    assert "c" not in graph.access_to
    assert migration_group(graph, "d") == {"d"}
    assert all("c" not in g for g in all_groups(graph))


def test_skipped_mailbox_is_not_isolated():
    directory = snapshot_from_edges("abc", [], missing=["c"])
    graph = build_access_graph(directory, MATCHER)
    assert isolated_mailboxes(graph) == ["a", "b"]
    with pytest.raises(MailboxNotFoundError):
        migration_group(graph, "c")


class TestFindMailbox:
    @pytest.fixture
    def graph(self, abcd):
        return build_access_graph(abcd, MATCHER)

    @pytest.mark.parametrize("name", ["a", "A", "a@contoso.com", "A@CONTOSO.COM"])
    def test_lookup_variants(self, graph, name):
        assert find_mailbox(graph, name).alias == "a"

    def test_display_name(self):
        directory = SnapshotDirectory([Mailbox("jdoe", "Jane Doe")], {"jdoe": []})
        graph = build_access_graph(directory)
        assert find_mailbox(graph, "jane doe").alias == "jdoe"

    def test_unknown_seed(self, graph):
        with pytest.raises(MailboxNotFoundError, match="seed user not found: nobody"):
            migration_group(graph, "nobody")
