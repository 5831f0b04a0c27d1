"""
Hierarchy Walker — expands root scopes into the full set of descendant scopes.

One walker instance owns the visited set for one run, shared across all
roots, so overlapping hierarchies are expanded once and cyclic directory
data always terminates. Expansion is depth-first over an explicit stack;
siblings are fetched concurrently, bounded by a semaphore.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..cancellation import CancellationToken
from ..config import AuditOptions, CollectionConfig
from ..directory.base import RemoteError, ScopeDirectory, call_with_retry
from ..models import ScopeKind, ScopeNode, SkippedScope, SkipReason, canonical_scope

logger = logging.getLogger("scope_audit_engine.walker")


@dataclass
class WalkResult:
    """Scopes discovered by one walk, keyed by id in discovery order."""
    nodes: dict[str, ScopeNode] = field(default_factory=dict)
    reached_from: dict[str, list[str]] = field(default_factory=dict)
    skipped: list[SkippedScope] = field(default_factory=list)
    incomplete: bool = False

    @property
    def node_set(self) -> set[ScopeNode]:
        return set(self.nodes.values())


class HierarchyWalker:
    """
    Walk(roots) -> WalkResult.

    Management groups are always expanded. Subscriptions and resource
    groups are expanded only when the options ask for it; anything else is
    recorded as a leaf.
    """

    def __init__(
        self,
        directory: ScopeDirectory,
        options: AuditOptions,
        config: CollectionConfig,
        cancel: Optional[CancellationToken] = None,
    ):
        self.directory = directory
        self.options = options
        self.config = config
        self.cancel = cancel
        self._visited: dict[str, str] = {}   # canonical id -> first id seen
        self._lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(config.walk_concurrency)
        self._pending: dict[str, ScopeNode] = {}   # claimed, not yet expanded
        self._unstarted: list[str] = []

    def should_expand(self, kind: ScopeKind) -> bool:
        if kind is ScopeKind.MANAGEMENT_GROUP:
            return True
        if kind is ScopeKind.SUBSCRIPTION:
            return self.options.include_subscriptions
        if kind is ScopeKind.RESOURCE_GROUP:
            return self.options.include_resource_groups
        return False

    async def walk(self, roots: list[str], result: Optional[WalkResult] = None) -> WalkResult:
        """
        Expand every root into result (a fresh WalkResult when omitted).
        A caller that abandons the walk part-way keeps what result already
        holds and can call abandon() to record the unfinished scopes.
        """
        result = result if result is not None else WalkResult()

        for position, root in enumerate(roots):
            self._unstarted = list(roots[position:])
            node = ScopeNode(
                id=root,
                display_name=root,
                kind=ScopeKind.from_scope_id(root),
                parent_id=None,
                root_id=root,
            )
            claimed = await self._claim(node, root, result)
            self._unstarted = list(roots[position + 1:])
            if not claimed:
                logger.info(f"Root {root} already reached from another root; not re-expanding")
                continue
            if self.should_expand(node.kind):
                self._pending[node.id] = node
                await self._expand_from(node, root, result)

        logger.info(
            f"Walk complete — {len(result.nodes)} scopes, "
            f"{len(result.skipped)} branches skipped"
        )
        return result

    def abandon(self, result: WalkResult):
        """Record every scope not yet expanded, and every unstarted root, as Cancelled."""
        for node in list(self._pending.values()):
            self._skip_cancelled(node, result)
        for root in self._unstarted:
            result.incomplete = True
            result.skipped.append(SkippedScope(
                scope_id=root,
                stage="walk",
                reason=SkipReason.CANCELLED,
                detail=self.cancel.reason if self.cancel else "",
            ))
        self._unstarted = []

    async def _expand_from(self, start: ScopeNode, root: str, result: WalkResult):
        stack = [start]

        while stack:
            if self._is_cancelled():
                for pending in reversed(stack):
                    self._skip_cancelled(pending, result)
                return

            batch = []
            while stack and len(batch) < self.config.walk_concurrency:
                batch.append(stack.pop())

            expanded = await asyncio.gather(
                *[self._expand_one(node, root, result) for node in batch]
            )
            # Push in reverse so the first child of the first node pops next.
            for children in reversed(expanded):
                stack.extend(reversed(children))

    async def _expand_one(
        self, node: ScopeNode, root: str, result: WalkResult
    ) -> list[ScopeNode]:
        """Fetch one node's children; return the newly claimed expandable ones."""
        if self._is_cancelled():
            self._skip_cancelled(node, result)
            return []

        try:
            children = await call_with_retry(
                lambda: self._fetch_children(node.id),
                self.config,
                f"children of {node.id}",
                self.cancel,
            )
        except RemoteError as e:
            if e.skip_reason is SkipReason.CANCELLED:
                self._skip_cancelled(node, result, str(e))
                return []
            logger.warning(f"Skipping subtree of {node.id}: {e.skip_reason.value} — {e}")
            self._skip_failed(node, result, e.skip_reason, str(e))
            return []
        except Exception as e:
            logger.exception(f"Unexpected failure expanding {node.id}")
            self._skip_failed(node, result, SkipReason.ERROR, f"{type(e).__name__}: {e}")
            return []

        to_expand = []
        for raw in children:
            child = self._to_node(raw, node, root)
            if child is None:
                continue
            if await self._claim(child, root, result) and self.should_expand(child.kind):
                self._pending[child.id] = child
                to_expand.append(child)
        self._pending.pop(node.id, None)
        return to_expand

    async def _fetch_children(self, scope_id: str) -> list[dict[str, Any]]:
        async with self._semaphore:
            return await self.directory.get_children(scope_id)

    async def _claim(self, node: ScopeNode, root: str, result: WalkResult) -> bool:
        """Record that root reached node; True only for the first visit."""
        key = canonical_scope(node.id)
        async with self._lock:
            first_id = self._visited.get(key)
            if first_id is not None:
                roots = result.reached_from.setdefault(first_id, [])
                if root not in roots:
                    roots.append(root)
                logger.debug(f"Already visited {node.id}; not expanding again")
                return False
            self._visited[key] = node.id
            result.nodes[node.id] = node
            result.reached_from[node.id] = [root]
            return True

    def _to_node(self, raw: dict[str, Any], parent: ScopeNode, root: str) -> Optional[ScopeNode]:
        child_id = raw.get("id") if isinstance(raw, dict) else None
        if not child_id:
            logger.warning(f"Ignoring child of {parent.id} without an id: {raw!r}")
            return None
        try:
            kind = ScopeKind(raw.get("kind"))
        except ValueError:
            kind = ScopeKind.from_scope_id(child_id)
        return ScopeNode(
            id=child_id,
            display_name=raw.get("displayName") or child_id,
            kind=kind,
            parent_id=parent.id,
            root_id=root,
        )

    def _is_cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.cancelled

    def _skip_failed(self, node: ScopeNode, result: WalkResult, reason: SkipReason, detail: str):
        self._pending.pop(node.id, None)
        result.skipped.append(SkippedScope(
            scope_id=node.id,
            stage="walk",
            reason=reason,
            detail=detail,
        ))

    def _skip_cancelled(self, node: ScopeNode, result: WalkResult, detail: str = ""):
        self._pending.pop(node.id, None)
        result.incomplete = True
        result.skipped.append(SkippedScope(
            scope_id=node.id,
            stage="walk",
            reason=SkipReason.CANCELLED,
            detail=detail or (self.cancel.reason if self.cancel else ""),
        ))
