"""
Assignment Classifier
Derives inheritance, identity kind and lifecycle state for one assignment
as seen from one reporting scope.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

from ..models import (
    AssignmentRecord,
    Category,
    Inheritance,
    LifecycleState,
    Principal,
    PrincipalKind,
    RawAssignment,
    Reference,
    ScopeKind,
    ScopeNode,
    Temporal,
    canonical_scope,
    is_management_group_path,
)

logger = logging.getLogger("scope_audit_engine.classifier")

# Provider principal types -> canonical kind. Keys are case-folded.
PRINCIPAL_KIND_TABLE = {
    "user": PrincipalKind.USER,
    "group": PrincipalKind.GROUP,
    "foreigngroup": PrincipalKind.GROUP,
    "serviceprincipal": PrincipalKind.SERVICE_PRINCIPAL,
    "application": PrincipalKind.SERVICE_PRINCIPAL,
    "managedidentity": PrincipalKind.MANAGED_IDENTITY,
    "msi": PrincipalKind.MANAGED_IDENTITY,
    "systemassigned": PrincipalKind.MANAGED_IDENTITY,
    "userassigned": PrincipalKind.MANAGED_IDENTITY,
}

SUBSCRIPTION_OR_BELOW = {
    ScopeKind.SUBSCRIPTION,
    ScopeKind.RESOURCE_GROUP,
    ScopeKind.RESOURCE,
}

TIME_BOUND_LABEL = "TimeBound"
CONDITIONAL_QUALIFIER = " (Conditional)"

# ARM emits 7 fractional digits; datetime accepts at most 6.
_FRACTION = re.compile(r"(\.\d{6})\d+")


class MalformedDataError(ValueError):
    """A provider field could not be interpreted."""
    pass


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        text = _FRACTION.sub(r"\1", text)
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise MalformedDataError(f"Unparseable timestamp {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def principal_kind(principal_type: Optional[str]) -> str:
    """Known types map through the table; unknown ones pass through as-is."""
    if principal_type is None or not str(principal_type).strip():
        return PrincipalKind.UNKNOWN.value
    mapped = PRINCIPAL_KIND_TABLE.get(str(principal_type).strip().lower())
    return mapped.value if mapped else principal_type


def rbac_inheritance(scope_path: str, reporting_scope: ScopeNode) -> Inheritance:
    """Direct only when the grant is bound exactly at the reporting scope."""
    if canonical_scope(scope_path) == canonical_scope(reporting_scope.id):
        return Inheritance.DIRECT
    return Inheritance.INHERITED


def policy_inheritance(scope_path: str, reporting_scope: ScopeNode) -> Inheritance:
    """
    Policy assignments bound at a management group are always inherited
    when reported at a subscription or anything beneath it.
    """
    if reporting_scope.kind in SUBSCRIPTION_OR_BELOW and is_management_group_path(scope_path):
        return Inheritance.INHERITED
    return rbac_inheritance(scope_path, reporting_scope)


class Classifier:
    """
    Classify(raw, reporting_scope) -> AssignmentRecord.

    Evaluation time is fixed at construction, so classifying the same input
    twice yields equal records.
    """

    def __init__(self, now: Optional[datetime] = None):
        self.now = parse_timestamp(now) if now else datetime.now(timezone.utc)

    def classify(self, raw: RawAssignment, reporting_scope: ScopeNode) -> AssignmentRecord:
        warnings: list[str] = []

        start = self._parse(raw.start_time, "startTime", raw, warnings)
        end = self._parse(raw.end_time, "endTime", raw, warnings)
        created = self._parse(raw.created_on, "createdOn", raw, warnings)

        if not raw.principal_id:
            warnings.append("principalId missing")

        conditional = bool(raw.condition and raw.condition.strip())
        state, label = self._lifecycle(raw, start, end, conditional)

        if raw.category is Category.POLICY_ASSIGNMENT:
            inheritance = policy_inheritance(raw.scope_path, reporting_scope)
        else:
            inheritance = rbac_inheritance(raw.scope_path, reporting_scope)

        return AssignmentRecord(
            scope_id=reporting_scope.id,
            scope_path=raw.scope_path,
            category=raw.category,
            assignment_id=raw.assignment_id,
            principal=Principal(
                id=raw.principal_id,
                display_name=raw.principal_display_name or raw.principal_id,
                kind=principal_kind(raw.principal_type),
            ),
            reference=Reference(
                id=raw.ref_id,
                display_name=raw.ref_display_name or raw.ref_id,
            ),
            temporal=Temporal(start_time=start, end_time=end, created_on=created),
            conditional=conditional,
            condition=raw.condition if conditional else None,
            inheritance=inheritance,
            lifecycle_state=state,
            state_label=label,
            warnings=tuple(warnings),
        )

    def _lifecycle(
        self,
        raw: RawAssignment,
        start: Optional[datetime],
        end: Optional[datetime],
        conditional: bool,
    ) -> tuple[LifecycleState, str]:
        """First match wins; the conditional qualifier is layered on top."""
        time_bound = raw.start_time is not None or raw.end_time is not None
        label = None

        if not time_bound:
            state = LifecycleState.ACTIVE
        elif start is None and end is None:
            # Time-bound, but nothing usable survived parsing.
            state = LifecycleState.UNKNOWN
            label = TIME_BOUND_LABEL
        elif end is not None and end < self.now:
            state = LifecycleState.EXPIRED
        elif start is not None and start > self.now:
            state = LifecycleState.NOT_YET_ACTIVE
        elif conditional:
            state = LifecycleState.CONDITIONAL
        else:
            state = LifecycleState.ACTIVE

        label = label or state.value
        if conditional and state is not LifecycleState.CONDITIONAL:
            label += CONDITIONAL_QUALIFIER
        return state, label

    @staticmethod
    def _parse(
        value: Optional[str],
        field_name: str,
        raw: RawAssignment,
        warnings: list[str],
    ) -> Optional[datetime]:
        try:
            return parse_timestamp(value)
        except MalformedDataError as e:
            logger.warning(f"[{raw.assignment_id or raw.principal_id}] {field_name}: {e}")
            warnings.append(f"{field_name} unparseable: {value!r}")
            return None
