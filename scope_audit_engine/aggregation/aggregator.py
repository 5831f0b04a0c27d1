"""
Aggregator — merges per-scope results from every root into one Report.
Runs only after all collection work has joined, so nothing here is shared.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable, Optional

from ..models import AssignmentRecord, Report, ScopeKind, ScopeNode, SkippedScope

logger = logging.getLogger("scope_audit_engine.aggregator")

KIND_ORDER = {kind: idx for idx, kind in enumerate(ScopeKind)}


def _node_sort_key(node: ScopeNode) -> tuple:
    return (node.root_id, KIND_ORDER[node.kind], node.id)


def aggregate(
    nodes: Iterable[ScopeNode],
    records: Iterable[AssignmentRecord],
    skipped: Optional[Iterable[SkippedScope]] = None,
    reached_from: Optional[dict[str, list[str]]] = None,
    incomplete: bool = False,
) -> Report:
    """
    Aggregate(nodes, records) -> Report.

    Nodes dedupe by id (first wins). Records whose scope is not among the
    nodes are dropped and counted. Records dedupe on
    (scope, category, principal, role/policy, bound scope path).
    """
    node_map: dict[str, ScopeNode] = {}
    for node in nodes:
        node_map.setdefault(node.id, node)

    dropped = 0
    unique: dict[tuple, AssignmentRecord] = {}
    for record in records:
        if record.scope_id not in node_map:
            dropped += 1
            logger.warning(
                f"Dropping record {record.assignment_id or record.dedup_key} — "
                f"scope {record.scope_id} is not in the result set"
            )
            continue
        unique.setdefault(record.dedup_key, record)

    def _record_sort_key(record: AssignmentRecord) -> tuple:
        node = node_map[record.scope_id]
        return (
            node.root_id,
            KIND_ORDER[node.kind],
            record.scope_id,
            record.category.value,
            record.reference.id,
            record.principal.id,
            record.scope_path,
        )

    sorted_nodes = tuple(sorted(node_map.values(), key=_node_sort_key))
    sorted_records = tuple(sorted(unique.values(), key=_record_sort_key))

    merged_reach = {
        node_id: list(roots)
        for node_id, roots in (reached_from or {}).items()
        if node_id in node_map
    }

    report = Report(
        nodes=sorted_nodes,
        records=sorted_records,
        summaries=summarize(sorted_nodes, sorted_records, node_map),
        skipped=list(skipped or []),
        reached_from=merged_reach,
        incomplete=incomplete,
        dropped_records=dropped,
    )
    logger.info(
        f"Aggregated {len(sorted_records)} records over {len(sorted_nodes)} scopes "
        f"({dropped} dropped, {len(report.skipped)} skipped)"
    )
    return report


def summarize(
    nodes: Iterable[ScopeNode],
    records: Iterable[AssignmentRecord],
    node_map: dict[str, ScopeNode],
) -> dict[str, dict[str, int]]:
    """Grouped counts over the final record set. Derived data only."""
    by_root: Counter = Counter()
    by_kind: Counter = Counter()
    by_category: Counter = Counter()
    by_state: Counter = Counter()
    by_identity: Counter = Counter()
    by_inheritance: Counter = Counter()

    for record in records:
        node = node_map[record.scope_id]
        by_root[node.root_id] += 1
        by_kind[node.kind.value] += 1
        by_category[record.category.value] += 1
        by_state[record.lifecycle_state.value] += 1
        by_identity[record.principal.kind] += 1
        by_inheritance[record.inheritance.value] += 1

    scopes_by_kind = Counter(node.kind.value for node in nodes)

    return {
        "by_root": dict(sorted(by_root.items())),
        "by_scope_kind": dict(sorted(by_kind.items())),
        "by_category": dict(sorted(by_category.items())),
        "by_lifecycle_state": dict(sorted(by_state.items())),
        "by_identity_kind": dict(sorted(by_identity.items())),
        "by_inheritance": dict(sorted(by_inheritance.items())),
        "scopes_by_kind": dict(sorted(scopes_by_kind.items())),
    }
