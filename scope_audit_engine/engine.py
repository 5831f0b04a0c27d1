"""
Audit Engine — orchestrates one read-only audit run.

roots -> HierarchyWalker -> AssignmentCollector (bounded pool, per scope)
      -> Classifier (per record) -> Aggregator -> Report
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from .aggregation.aggregator import aggregate
from .analyzers.classifier import Classifier
from .cancellation import CancellationToken
from .collectors.assignments import AssignmentCollector
from .config import AuditOptions, CollectionConfig, validate_roots
from .directory.base import ScopeDirectory
from .hierarchy.walker import HierarchyWalker, WalkResult
from .models import (
    AssignmentRecord,
    Category,
    Report,
    ScopeNode,
    SkippedScope,
    SkipReason,
)

logger = logging.getLogger("scope_audit_engine.engine")


class AuditEngine:
    """
    Run(roots) -> Report.

    Configuration problems raise ConfigurationError before any remote call.
    Everything after that is recovered per branch or per scope and shows up
    in Report.skipped; a cancelled or timed-out run still returns what was
    gathered, flagged incomplete.
    """

    def __init__(
        self,
        directory: ScopeDirectory,
        options: Optional[AuditOptions] = None,
        config: Optional[CollectionConfig] = None,
        now: Optional[datetime] = None,
    ):
        self.directory = directory
        self.options = options or AuditOptions()
        self.config = config or CollectionConfig()
        self.now = now

    async def run(
        self,
        roots: list[str],
        cancel: Optional[CancellationToken] = None,
    ) -> Report:
        roots = validate_roots(roots)
        self.options.validate()
        self.config.validate()
        categories = self.options.categories()

        if cancel is None:
            cancel = CancellationToken(self.config.timeout_seconds)

        logger.info(
            f"Starting audit of {len(roots)} root(s); categories: "
            f"{', '.join(c.value for c in categories)}"
        )

        walker = HierarchyWalker(self.directory, self.options, self.config, cancel)
        walk = WalkResult()
        try:
            await asyncio.wait_for(walker.walk(roots, walk), timeout=cancel.remaining())
        except asyncio.TimeoutError:
            cancel.cancel("Deadline reached")
            walker.abandon(walk)
            logger.warning(
                f"Walk stopped at the deadline with {len(walk.nodes)} scopes discovered"
            )

        per_scope = await self._collect_all(list(walk.nodes.values()), categories, cancel)

        records: list[AssignmentRecord] = []
        skipped: list[SkippedScope] = list(walk.skipped)
        for scope_id in walk.nodes:
            scope_records, scope_skipped = per_scope.get(scope_id, ([], []))
            records.extend(scope_records)
            skipped.extend(scope_skipped)

        # Only work that was actually cut short makes the run incomplete.
        incomplete = walk.incomplete or any(s.reason is SkipReason.CANCELLED for s in skipped)
        report = aggregate(
            walk.node_set,
            records,
            skipped=skipped,
            reached_from=walk.reached_from,
            incomplete=incomplete,
        )
        if report.incomplete:
            logger.warning(f"Audit incomplete: {cancel.reason or 'cancelled'}")
        return report

    async def _collect_all(
        self,
        scopes: list[ScopeNode],
        categories: list[Category],
        cancel: CancellationToken,
    ) -> dict[str, tuple[list[AssignmentRecord], list[SkippedScope]]]:
        """Collect and classify every scope on a bounded worker pool."""
        collector = AssignmentCollector(self.directory, self.config, cancel)
        classifier = Classifier(self.now)
        semaphore = asyncio.Semaphore(self.config.max_workers)
        results: dict[str, tuple[list[AssignmentRecord], list[SkippedScope]]] = {}

        async def worker(scope: ScopeNode):
            async with semaphore:
                outcome = await collector.collect(scope, categories)
            scope_records = []
            scope_skipped = list(outcome.skipped)
            for raw in outcome.assignments:
                try:
                    scope_records.append(classifier.classify(raw, scope))
                except Exception as e:
                    logger.exception(f"[{scope.id}] Could not classify {raw.assignment_id}")
                    scope_skipped.append(SkippedScope(
                        scope_id=scope.id,
                        stage="collect",
                        reason=SkipReason.ERROR,
                        detail=f"classification of {raw.assignment_id}: {e}",
                        category=raw.category,
                    ))
            results[scope.id] = (scope_records, scope_skipped)

        if not scopes:
            return results

        tasks = {asyncio.create_task(worker(scope)): scope for scope in scopes}
        done, pending = await asyncio.wait(tasks.keys(), timeout=cancel.remaining())

        if pending:
            cancel.cancel("Deadline reached")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in pending:
                scope = tasks[task]
                if scope.id in results:
                    continue  # finished while the others were being cancelled
                results[scope.id] = ([], [
                    SkippedScope(
                        scope_id=scope.id,
                        stage="collect",
                        reason=SkipReason.CANCELLED,
                        detail=cancel.reason,
                        category=category,
                    )
                    for category in categories
                ])

        for task in done:
            if task.exception() is not None:
                scope = tasks[task]
                logger.error(f"[{scope.id}] Worker failed: {task.exception()}")
                results[scope.id] = ([], [SkippedScope(
                    scope_id=scope.id,
                    stage="collect",
                    reason=SkipReason.ERROR,
                    detail=str(task.exception()),
                )])

        return results
