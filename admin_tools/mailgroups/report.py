"""Output formats for access graphs and migration groups."""

from __future__ import annotations
import csv
from pathlib import Path
from typing import Iterable, List, Optional
import pydot
from rich.table import Table
from admin_tools.mailgroups.models import AccessGraph

COLUMNS = ("Mailbox", "Email", "Alias", "FullAccess")
NULL_ACCESS = "(none)"


def permission_rows(graph: AccessGraph, include_null: bool = False) -> List[dict]:
    rows = []
    for rec in graph.records:
        if rec.grantee is None and not include_null:
            continue
        rows.append({
            "Mailbox": rec.mailbox.display_name,
            "Email": rec.mailbox.primary_address,
            "Alias": rec.mailbox.alias,
            "FullAccess": graph.label(rec.grantee) if rec.grantee else NULL_ACCESS,
        })
    return rows


def permission_table(rows: List[dict], title: str = "Full-access permissions") -> Table:
    table = Table(title=title)
    for col in COLUMNS:
        table.add_column(col)
    for row in rows:
        table.add_row(*(row[col] for col in COLUMNS))
    return table


def write_csv(rows: List[dict], path: Path) -> None:
    with path.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=COLUMNS)
        writer.writeheader()
        writer.writerows(rows)


def group_lines(graph: AccessGraph, group: Iterable[str]) -> List[str]:
    """Sorted ``alias (Display Name)`` lines for console output."""
    lines = []
    for alias in sorted(group, key=str.lower):
        label = graph.label(alias)
        lines.append(alias if label == alias else f"{alias} ({label})")
    return lines


def render_dot(graph: AccessGraph, aliases: Optional[Iterable[str]] = None, name: str = "FullAccess") -> str:
    """Graphviz digraph with one edge per grantee -> mailbox full-access grant."""
    keep = set(aliases) if aliases is not None else None
    dot = pydot.Dot(name, graph_type="digraph", rankdir="LR")
    dot.set_node_defaults(shape="box", fontname="Helvetica")

    nodes = set(graph.mailboxes) | set(graph.access_to)
    if keep is not None:
        nodes &= keep
    for alias in sorted(nodes):
        shape = "box" if alias in graph.mailboxes else "ellipse"
        dot.add_node(pydot.Node(alias, label=graph.label(alias), shape=shape))

    for target in sorted(graph.accessed_by):
        if target not in nodes:
            continue
        for grantee in graph.accessed_by[target]:
            if grantee in nodes:
                dot.add_edge(pydot.Edge(grantee, target))
    return dot.to_string()
