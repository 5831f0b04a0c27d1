"""
Assignment Collector
Queries one scope for each requested category and normalizes the payloads.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional

from ..cancellation import CancellationToken
from ..config import CollectionConfig
from ..directory.base import RemoteError, ScopeDirectory, call_with_retry
from ..models import Category, RawAssignment, ScopeNode, SkipReason
from .base import CollectionOutcome
from .normalize import normalize_assignment

logger = logging.getLogger("scope_audit_engine.collectors.assignments")


class AssignmentCollector:
    """
    Collect(scope, categories) -> CollectionOutcome.

    Categories are requested concurrently and fail independently: a denied
    policy read never hides the same scope's role assignments.
    """

    def __init__(
        self,
        directory: ScopeDirectory,
        config: CollectionConfig,
        cancel: Optional[CancellationToken] = None,
    ):
        self.directory = directory
        self.config = config
        self.cancel = cancel

    async def collect(
        self,
        scope: ScopeNode,
        categories: Iterable[Category],
    ) -> CollectionOutcome:
        outcome = CollectionOutcome(scope)
        ordered = list(dict.fromkeys(categories))

        await asyncio.gather(
            *[self._collect_category(scope, category, outcome) for category in ordered]
        )

        outcome.complete()
        logger.debug(
            f"[{scope.id}] {outcome.metadata['items_collected']} assignments "
            f"in {outcome.metadata['duration_seconds']}s"
        )
        return outcome

    async def _collect_category(
        self,
        scope: ScopeNode,
        category: Category,
        outcome: CollectionOutcome,
    ):
        if self.cancel is not None and self.cancel.cancelled:
            outcome.add_skipped(category, SkipReason.CANCELLED, self.cancel.reason)
            return

        fetch = self.directory.fetcher_for(category)
        try:
            payloads = await call_with_retry(
                lambda: fetch(scope.id),
                self.config,
                f"{category.value} at {scope.id}",
                self.cancel,
            )
            outcome.metadata["categories_queried"] += 1
        except RemoteError as e:
            outcome.add_skipped(category, e.skip_reason, str(e))
            return
        except Exception as e:
            logger.exception(f"[{scope.id}] {category.value} collection failed")
            outcome.add_skipped(category, SkipReason.ERROR, f"{type(e).__name__}: {e}")
            return

        items: list[RawAssignment] = []
        for payload in payloads or []:
            if not isinstance(payload, dict):
                logger.warning(f"[{scope.id}] Ignoring non-object {category.value} payload")
                continue
            items.append(normalize_assignment(payload, category))
        outcome.add_assignments(items)
