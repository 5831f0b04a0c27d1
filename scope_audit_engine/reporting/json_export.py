"""
JSON exporter — Produces the full raw JSON output of the audit.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from .. import __version__
from ..models import Report


def export_json(
    report: Report,
    output_dir: Path,
    run_id: str,
    roots: list[str] | None = None,
) -> Path:
    """
    Write the full report to a JSON file.

    Returns:
        Path to the created JSON file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    payload = {
        "metadata": {
            "engine": "Scope Audit Engine",
            "version": __version__,
            "run_id": run_id,
            "generated_utc": datetime.now(timezone.utc).isoformat(),
            "mode": "READ-ONLY",
            "roots": list(roots or []),
        },
        "report": report.to_dict(),
    }

    filepath = output_dir / f"scope_audit_{run_id}.json"

    with open(filepath, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, default=str, ensure_ascii=False)

    return filepath
