"""
CSV exporter — Produces one assignment CSV per scope kind plus scope,
skipped-scope and summary CSVs.
"""

from __future__ import annotations

import csv
from pathlib import Path

from ..models import Report, ScopeKind

RECORD_FIELDS = [
    "scopeId", "scopePath", "category", "assignmentId",
    "principalId", "principalDisplayName", "principalKind",
    "referenceId", "referenceDisplayName",
    "startTime", "endTime", "createdOn",
    "conditional", "condition", "inheritance",
    "lifecycleState", "stateLabel", "warnings",
]

SCOPE_FIELDS = ["id", "displayName", "kind", "parentId", "rootId", "reachedFrom"]

SKIPPED_FIELDS = ["scopeId", "stage", "category", "reason", "detail"]

FILE_STEMS = {
    ScopeKind.MANAGEMENT_GROUP: "management_group_assignments",
    ScopeKind.SUBSCRIPTION: "subscription_assignments",
    ScopeKind.RESOURCE_GROUP: "resource_group_assignments",
    ScopeKind.RESOURCE: "resource_assignments",
}


def export_csv(report: Report, output_dir: Path, run_id: str) -> list[Path]:
    """
    Write CSV files for records, scopes, skipped scopes and summary counts.
    A record CSV is written only for scope kinds present in the report.

    Returns:
        List of created CSV file paths.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    created = []

    # --- Records, one file per scope kind ---
    kinds = {n.id: n.kind for n in report.nodes}
    present = [k for k in ScopeKind if k in set(kinds.values())]
    for kind in present:
        path = output_dir / f"{FILE_STEMS[kind]}_{run_id}.csv"
        with open(path, "w", newline="", encoding="utf-8-sig") as fh:
            writer = csv.DictWriter(fh, fieldnames=RECORD_FIELDS, extrasaction="ignore")
            writer.writeheader()
            for record in report.records:
                if kinds.get(record.scope_id) is not kind:
                    continue
                row = record.to_dict()
                row["warnings"] = "; ".join(row["warnings"])
                writer.writerow(row)
        created.append(path)

    # --- Scopes ---
    scopes_path = output_dir / f"scopes_{run_id}.csv"
    with open(scopes_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=SCOPE_FIELDS)
        writer.writeheader()
        for node in report.nodes:
            row = node.to_dict()
            row["reachedFrom"] = "; ".join(report.reached_from.get(node.id, [node.root_id]))
            writer.writerow(row)
    created.append(scopes_path)

    # --- Skipped ---
    skipped_path = output_dir / f"skipped_{run_id}.csv"
    with open(skipped_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=SKIPPED_FIELDS)
        writer.writeheader()
        for skipped in report.skipped:
            writer.writerow(skipped.to_dict())
    created.append(skipped_path)

    # --- Summary ---
    summary_path = output_dir / f"summary_{run_id}.csv"
    with open(summary_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.writer(fh)
        writer.writerow(["dimension", "key", "count"])
        writer.writerow(["total", "scopes", len(report.nodes)])
        writer.writerow(["total", "records", len(report.records)])
        writer.writerow(["total", "dropped_records", report.dropped_records])
        writer.writerow(["total", "complete", int(not report.incomplete)])
        for dimension, counts in report.summaries.items():
            for key, count in counts.items():
                writer.writerow([dimension, key, count])
        for reason, count in report.skip_counts.items():
            writer.writerow(["skipped", reason, count])
    created.append(summary_path)

    return created
