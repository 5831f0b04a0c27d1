"""
Provider payload normalization.

Each canonical field is read through an ordered tuple of accessors; the
first one yielding a non-empty value wins. Keeping the chains as data makes
the fallback order reviewable and testable on its own.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Sequence

from ..models import Category, RawAssignment, UNKNOWN_SCOPE

Accessor = Callable[[dict], Any]

AUTHORIZATION_PROVIDER_MARKER = "/providers/microsoft.authorization/"


def path(*keys: str) -> Accessor:
    """Accessor that walks nested dict keys, returning None on any miss."""
    def _get(payload: dict) -> Any:
        current: Any = payload
        for key in keys:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        return current
    _get.__name__ = ".".join(keys)
    return _get


def first_present(payload: dict, accessors: Sequence[Accessor]) -> Optional[Any]:
    """Evaluate accessors in order; return the first non-empty value."""
    for accessor in accessors:
        value = accessor(payload)
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        return value
    return None


def scope_from_resource_id(resource_id: str) -> Optional[str]:
    """
    Derive the bound scope from an assignment's resource id.

    ARM ids end in /providers/Microsoft.Authorization/<type>/<name>, and the
    scope is everything before that. Other ids lose their trailing segment.
    """
    if not resource_id or not isinstance(resource_id, str):
        return None
    idx = resource_id.lower().rfind(AUTHORIZATION_PROVIDER_MARKER)
    if idx > 0:
        return resource_id[:idx]
    if idx == 0:
        return "/"
    trimmed = resource_id.rstrip("/")
    if "/" not in trimmed:
        return None
    head = trimmed.rsplit("/", 1)[0]
    return head or None


def _derived_scope(payload: dict) -> Optional[str]:
    return scope_from_resource_id(payload.get("id") or "")


PRINCIPAL_ID_FIELDS: tuple[Accessor, ...] = (
    path("properties", "principalId"),
    path("properties", "expandedProperties", "principal", "id"),
    path("principalId"),
    path("principal", "id"),
    path("identity", "principalId"),   # policy assignment managed identity
)

PRINCIPAL_NAME_FIELDS: tuple[Accessor, ...] = (
    path("properties", "expandedProperties", "principal", "displayName"),
    path("properties", "principalDisplayName"),
    path("principalDisplayName"),
    path("principal", "displayName"),
    path("properties", "principalName"),
    path("principalName"),
    path("signInName"),
)

PRINCIPAL_TYPE_FIELDS: tuple[Accessor, ...] = (
    path("properties", "principalType"),
    path("properties", "expandedProperties", "principal", "type"),
    path("principalType"),
    path("principal", "type"),
    path("objectType"),
    path("identity", "type"),
)

ROLE_REF_ID_FIELDS: tuple[Accessor, ...] = (
    path("properties", "roleDefinitionId"),
    path("properties", "expandedProperties", "roleDefinition", "id"),
    path("roleDefinitionId"),
)

POLICY_REF_ID_FIELDS: tuple[Accessor, ...] = (
    path("properties", "policyDefinitionId"),
    path("policyDefinitionId"),
    path("id"),
)

REF_NAME_FIELDS: tuple[Accessor, ...] = (
    path("properties", "expandedProperties", "roleDefinition", "displayName"),
    path("properties", "roleDefinitionName"),
    path("properties", "displayName"),
    path("roleDefinitionName"),
    path("displayName"),
)

# Used when no display name is present at all.
TECHNICAL_NAME_FIELDS: tuple[Accessor, ...] = (
    path("name"),
    path("properties", "roleDefinitionId"),
    path("properties", "policyDefinitionId"),
)

SCOPE_FIELDS: tuple[Accessor, ...] = (
    path("properties", "scope"),
    path("scope"),
    path("properties", "expandedProperties", "scope", "id"),
    _derived_scope,
)

START_FIELDS: tuple[Accessor, ...] = (
    path("properties", "startDateTime"),
    path("properties", "scheduleInfo", "startDateTime"),
    path("startDateTime"),
    path("startTime"),
)

END_FIELDS: tuple[Accessor, ...] = (
    path("properties", "endDateTime"),
    path("properties", "scheduleInfo", "expiration", "endDateTime"),
    path("endDateTime"),
    path("endTime"),
)

CREATED_FIELDS: tuple[Accessor, ...] = (
    path("properties", "createdOn"),
    path("properties", "createdDateTime"),
    path("systemData", "createdAt"),
    path("createdOn"),
)

CONDITION_FIELDS: tuple[Accessor, ...] = (
    path("properties", "condition"),
    path("condition"),
)

ASSIGNMENT_ID_FIELDS: tuple[Accessor, ...] = (
    path("id"),
    path("name"),
    path("properties", "roleEligibilityScheduleId"),
)


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def normalize_assignment(payload: dict, category: Category) -> RawAssignment:
    """Shape one provider payload into a RawAssignment. Never raises on gaps."""
    principal_id = _as_text(first_present(payload, PRINCIPAL_ID_FIELDS)) or ""
    ref_fields = ROLE_REF_ID_FIELDS if category.is_rbac else POLICY_REF_ID_FIELDS
    ref_id = _as_text(first_present(payload, ref_fields)) or ""

    technical_name = _as_text(first_present(payload, TECHNICAL_NAME_FIELDS)) or ref_id
    ref_name = _as_text(first_present(payload, REF_NAME_FIELDS)) or technical_name

    # Temporal fields are a property of eligible grants only.
    if category is Category.ELIGIBLE_GRANT:
        start = _as_text(first_present(payload, START_FIELDS))
        end = _as_text(first_present(payload, END_FIELDS))
    else:
        start = end = None

    return RawAssignment(
        category=category,
        assignment_id=_as_text(first_present(payload, ASSIGNMENT_ID_FIELDS)) or "",
        scope_path=_as_text(first_present(payload, SCOPE_FIELDS)) or UNKNOWN_SCOPE,
        principal_id=principal_id,
        principal_display_name=(
            _as_text(first_present(payload, PRINCIPAL_NAME_FIELDS)) or principal_id
        ),
        principal_type=_as_text(first_present(payload, PRINCIPAL_TYPE_FIELDS)),
        ref_id=ref_id,
        ref_display_name=ref_name,
        start_time=start,
        end_time=end,
        created_on=_as_text(first_present(payload, CREATED_FIELDS)),
        condition=_as_text(first_present(payload, CONDITION_FIELDS)),
        source=payload,
    )
