"""
Core data model — scopes, assignments, and the aggregated report.
All classified types are immutable; a run never mutates them after creation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


MANAGEMENT_GROUP_PREFIX = "/providers/microsoft.management/managementgroups/"
UNKNOWN_SCOPE = "Unknown"


class ScopeKind(str, Enum):
    MANAGEMENT_GROUP = "ManagementGroup"
    SUBSCRIPTION = "Subscription"
    RESOURCE_GROUP = "ResourceGroup"
    RESOURCE = "Resource"

    @classmethod
    def from_scope_id(cls, scope_id: str) -> "ScopeKind":
        """
        Derive the kind of an ARM scope path.
        A bare identifier (no leading slash) is taken to be a management group.
        """
        lowered = scope_id.lower().rstrip("/")
        if not lowered.startswith("/") or lowered.startswith(MANAGEMENT_GROUP_PREFIX):
            return cls.MANAGEMENT_GROUP
        parts = lowered.strip("/").split("/")
        if parts[0] == "subscriptions":
            if len(parts) <= 2:
                return cls.SUBSCRIPTION
            if len(parts) <= 4 and parts[2] == "resourcegroups":
                return cls.RESOURCE_GROUP
        return cls.RESOURCE


class Category(str, Enum):
    STANDING_GRANT = "StandingGrant"
    ELIGIBLE_GRANT = "EligibleGrant"
    POLICY_ASSIGNMENT = "PolicyAssignment"

    @property
    def is_rbac(self) -> bool:
        return self is not Category.POLICY_ASSIGNMENT


class PrincipalKind(str, Enum):
    USER = "User"
    GROUP = "Group"
    SERVICE_PRINCIPAL = "ServicePrincipal"
    MANAGED_IDENTITY = "ManagedIdentity"
    UNKNOWN = "Unknown"


class Inheritance(str, Enum):
    DIRECT = "Direct"
    INHERITED = "Inherited"


class LifecycleState(str, Enum):
    ACTIVE = "Active"
    EXPIRED = "Expired"
    NOT_YET_ACTIVE = "NotYetActive"
    CONDITIONAL = "Conditional"
    UNKNOWN = "Unknown"


class SkipReason(str, Enum):
    ACCESS_DENIED = "AccessDenied"
    NOT_FOUND = "NotFound"
    TRANSIENT = "Transient"
    CANCELLED = "Cancelled"
    ERROR = "Error"


def canonical_scope(path: str) -> str:
    """ARM scope paths compare case-insensitively and without a trailing slash."""
    trimmed = path.strip()
    if len(trimmed) > 1:
        trimmed = trimmed.rstrip("/")
    return trimmed.lower()


def is_management_group_path(path: str) -> bool:
    return canonical_scope(path).startswith(MANAGEMENT_GROUP_PREFIX)


@dataclass(frozen=True)
class ScopeNode:
    """
    A node in the resource hierarchy, created once by the walker.
    Equality and hashing use the id only, so sets of nodes dedupe by id.
    """
    id: str
    display_name: str = field(default="", compare=False)
    kind: ScopeKind = field(default=ScopeKind.MANAGEMENT_GROUP, compare=False)
    parent_id: Optional[str] = field(default=None, compare=False)
    root_id: str = field(default="", compare=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "kind": self.kind.value,
            "parentId": self.parent_id,
            "rootId": self.root_id,
        }


@dataclass(frozen=True)
class RawAssignment:
    """Collector output: provider fields normalized, nothing derived yet."""
    category: Category
    assignment_id: str
    scope_path: str = UNKNOWN_SCOPE
    principal_id: str = ""
    principal_display_name: str = ""
    principal_type: Optional[str] = None
    ref_id: str = ""
    ref_display_name: str = ""
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    created_on: Optional[str] = None
    condition: Optional[str] = None
    source: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Principal:
    id: str
    display_name: str
    kind: str  # PrincipalKind value, or the provider's own value passed through


@dataclass(frozen=True)
class Reference:
    """Role definition (RBAC) or policy definition/assignment reference."""
    id: str
    display_name: str


@dataclass(frozen=True)
class Temporal:
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    created_on: Optional[datetime] = None

    @property
    def is_time_bound(self) -> bool:
        return self.start_time is not None or self.end_time is not None


@dataclass(frozen=True)
class AssignmentRecord:
    """A classified grant as reported at one scope."""
    scope_id: str
    scope_path: str
    category: Category
    assignment_id: str
    principal: Principal
    reference: Reference
    temporal: Temporal
    conditional: bool
    condition: Optional[str]
    inheritance: Inheritance
    lifecycle_state: LifecycleState
    state_label: str
    warnings: tuple[str, ...] = ()

    @property
    def dedup_key(self) -> tuple:
        return (
            self.scope_id,
            self.category.value,
            self.principal.id,
            self.reference.id,
            self.scope_path,
        )

    def to_dict(self) -> dict:
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "scopeId": self.scope_id,
            "scopePath": self.scope_path,
            "category": self.category.value,
            "assignmentId": self.assignment_id,
            "principalId": self.principal.id,
            "principalDisplayName": self.principal.display_name,
            "principalKind": self.principal.kind,
            "referenceId": self.reference.id,
            "referenceDisplayName": self.reference.display_name,
            "startTime": _iso(self.temporal.start_time),
            "endTime": _iso(self.temporal.end_time),
            "createdOn": _iso(self.temporal.created_on),
            "conditional": self.conditional,
            "condition": self.condition,
            "inheritance": self.inheritance.value,
            "lifecycleState": self.lifecycle_state.value,
            "stateLabel": self.state_label,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class SkippedScope:
    """A branch or scope whose data is missing from the report, and why."""
    scope_id: str
    stage: str                    # "walk" or "collect"
    reason: SkipReason
    detail: str = ""
    category: Optional[Category] = None

    def to_dict(self) -> dict:
        return {
            "scopeId": self.scope_id,
            "stage": self.stage,
            "category": self.category.value if self.category else None,
            "reason": self.reason.value,
            "detail": self.detail,
        }


@dataclass
class Report:
    """Merged, deduplicated and sorted result of one audit run."""
    nodes: tuple[ScopeNode, ...] = ()
    records: tuple[AssignmentRecord, ...] = ()
    summaries: dict[str, dict[str, int]] = field(default_factory=dict)
    skipped: list[SkippedScope] = field(default_factory=list)
    reached_from: dict[str, list[str]] = field(default_factory=dict)
    incomplete: bool = False
    dropped_records: int = 0

    @property
    def skip_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for s in self.skipped:
            counts[s.reason.value] = counts.get(s.reason.value, 0) + 1
        return counts

    def node(self, scope_id: str) -> Optional[ScopeNode]:
        for n in self.nodes:
            if n.id == scope_id:
                return n
        return None

    def records_for(self, scope_id: str) -> list[AssignmentRecord]:
        return [r for r in self.records if r.scope_id == scope_id]

    def to_dict(self) -> dict:
        return {
            "complete": not self.incomplete,
            "scopeCount": len(self.nodes),
            "recordCount": len(self.records),
            "droppedRecords": self.dropped_records,
            "skipCounts": self.skip_counts,
            "summaries": self.summaries,
            "scopes": [
                {**n.to_dict(), "reachedFrom": self.reached_from.get(n.id, [n.root_id])}
                for n in self.nodes
            ],
            "records": [r.to_dict() for r in self.records],
            "skipped": [s.to_dict() for s in self.skipped],
        }
