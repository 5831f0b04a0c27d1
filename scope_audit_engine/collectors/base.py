"""
Collection result container — one per scope.
Holds normalized assignments plus the categories that could not be read.
"""

from __future__ import annotations

import logging
import time

from ..models import Category, RawAssignment, ScopeNode, SkippedScope, SkipReason

logger = logging.getLogger("scope_audit_engine.collectors")


class CollectionOutcome:
    """Standardized result of collecting one scope."""

    def __init__(self, scope: ScopeNode):
        self.scope = scope
        self.assignments: list[RawAssignment] = []
        self.skipped: list[SkippedScope] = []
        self.metadata: dict = {
            "scope_id": scope.id,
            "started_at": time.time(),
            "completed_at": None,
            "duration_seconds": 0,
            "items_collected": 0,
            "categories_queried": 0,
        }

    def add_assignments(self, items: list[RawAssignment]):
        self.assignments.extend(items)
        self.metadata["items_collected"] += len(items)

    def add_skipped(
        self,
        category: Category,
        reason: SkipReason,
        detail: str = "",
    ):
        self.skipped.append(SkippedScope(
            scope_id=self.scope.id,
            stage="collect",
            reason=reason,
            detail=detail,
            category=category,
        ))
        logger.warning(f"[{self.scope.id}] Skipped {category.value}: {reason.value} {detail}".rstrip())

    def complete(self):
        self.metadata["completed_at"] = time.time()
        self.metadata["duration_seconds"] = round(
            self.metadata["completed_at"] - self.metadata["started_at"], 2
        )

