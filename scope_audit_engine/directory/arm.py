"""
ARM-backed Scope Directory.
Reads the management group / subscription / resource hierarchy and the
role, eligibility and policy assignments bound at or above each scope.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..arm.client import ArmClient
from ..config import (
    MANAGEMENT_GROUPS_API_VERSION,
    POLICY_API_VERSION,
    PRINCIPAL_BATCH_SIZE,
    RESOURCES_API_VERSION,
    ROLE_ASSIGNMENTS_API_VERSION,
    ROLE_ELIGIBILITY_API_VERSION,
)
from ..models import ScopeKind
from .base import RemoteError, ScopeDirectory

logger = logging.getLogger("scope_audit_engine.directory.arm")

MANAGEMENT_GROUP_PATH = "/providers/Microsoft.Management/managementGroups/"
AUTHORIZATION = "providers/Microsoft.Authorization"
AT_SCOPE = "atScope()"

GRAPH_PRINCIPAL_TYPES = {
    "#microsoft.graph.user": "User",
    "#microsoft.graph.group": "Group",
    "#microsoft.graph.serviceprincipal": "ServicePrincipal",
}


def to_scope_id(root: str) -> str:
    """Bare management group names become full ARM scope paths."""
    if root.startswith("/"):
        return root
    return f"{MANAGEMENT_GROUP_PATH}{root}"


def child_kind(child_type: str, child_id: str) -> ScopeKind:
    lowered = (child_type or "").lower()
    if "managementgroups" in lowered:
        return ScopeKind.MANAGEMENT_GROUP
    if lowered.endswith("subscriptions"):
        return ScopeKind.SUBSCRIPTION
    return ScopeKind.from_scope_id(child_id)


class ArmScopeDirectory(ScopeDirectory):
    """
    ScopeDirectory over Azure Resource Manager.

    Role-definition names are looked up once per definition for the
    lifetime of this instance (one run). Principal display names come from
    Graph when a graph client is supplied.
    """

    def __init__(self, arm: ArmClient, graph: Optional[ArmClient] = None):
        self.arm = arm
        self.graph = graph
        self._role_names: dict[str, Optional[str]] = {}
        self._principals: dict[str, dict[str, str]] = {}

    # ── Hierarchy ──────────────────────────────────────────────────────────

    async def get_children(self, scope_id: str) -> list[dict[str, Any]]:
        scope_id = to_scope_id(scope_id)
        kind = ScopeKind.from_scope_id(scope_id)

        if kind is ScopeKind.MANAGEMENT_GROUP:
            return await self._management_group_children(scope_id)
        if kind is ScopeKind.SUBSCRIPTION:
            return await self._list_children(
                f"{scope_id}/resourcegroups", ScopeKind.RESOURCE_GROUP
            )
        if kind is ScopeKind.RESOURCE_GROUP:
            return await self._list_children(f"{scope_id}/resources", ScopeKind.RESOURCE)
        return []

    async def _management_group_children(self, scope_id: str) -> list[dict[str, Any]]:
        data = await self.arm.get(
            scope_id,
            params={"api-version": MANAGEMENT_GROUPS_API_VERSION, "$expand": "children"},
        )
        children = (data.get("properties") or {}).get("children") or []
        return [
            {
                "id": c.get("id"),
                "displayName": c.get("displayName") or c.get("name"),
                "kind": child_kind(c.get("type", ""), c.get("id") or "").value,
            }
            for c in children
            if c.get("id")
        ]

    async def _list_children(self, endpoint: str, kind: ScopeKind) -> list[dict[str, Any]]:
        items = await self.arm.get_all_pages(
            endpoint, params={"api-version": RESOURCES_API_VERSION}
        )
        return [
            {
                "id": item.get("id"),
                "displayName": item.get("name") or item.get("id"),
                "kind": kind.value,
            }
            for item in items
            if item.get("id")
        ]

    # ── Assignments ────────────────────────────────────────────────────────

    async def get_standing_grants(self, scope_id: str) -> list[dict[str, Any]]:
        scope_id = to_scope_id(scope_id)
        assignments = await self.arm.get_all_pages(
            f"{scope_id}/{AUTHORIZATION}/roleAssignments",
            params={"api-version": ROLE_ASSIGNMENTS_API_VERSION, "$filter": AT_SCOPE},
        )
        assignments = [await self._with_role_name(a) for a in assignments]
        return await self._with_principal_names(assignments)

    async def get_eligible_grants(self, scope_id: str) -> list[dict[str, Any]]:
        scope_id = to_scope_id(scope_id)
        instances = await self.arm.get_all_pages(
            f"{scope_id}/{AUTHORIZATION}/roleEligibilityScheduleInstances",
            params={"api-version": ROLE_ELIGIBILITY_API_VERSION, "$filter": AT_SCOPE},
        )
        return await self._with_principal_names(instances)

    async def get_policy_assignments(self, scope_id: str) -> list[dict[str, Any]]:
        scope_id = to_scope_id(scope_id)
        return await self.arm.get_all_pages(
            f"{scope_id}/{AUTHORIZATION}/policyAssignments",
            params={"api-version": POLICY_API_VERSION, "$filter": AT_SCOPE},
        )

    # ── Name resolution ────────────────────────────────────────────────────

    async def _with_role_name(self, assignment: dict) -> dict:
        props = assignment.get("properties") or {}
        role_id = props.get("roleDefinitionId")
        if not role_id or props.get("roleDefinitionName"):
            return assignment
        name = await self._role_name(role_id)
        if not name:
            return assignment
        return {**assignment, "properties": {**props, "roleDefinitionName": name}}

    async def _role_name(self, role_definition_id: str) -> Optional[str]:
        key = role_definition_id.lower()
        if key in self._role_names:
            return self._role_names[key]
        try:
            data = await self.arm.get(
                role_definition_id,
                params={"api-version": ROLE_ASSIGNMENTS_API_VERSION},
            )
            name = (data.get("properties") or {}).get("roleName")
        except RemoteError as e:
            logger.debug(f"Role definition {role_definition_id} unresolved: {e}")
            name = None
        self._role_names[key] = name
        return name

    async def _with_principal_names(self, assignments: list[dict]) -> list[dict]:
        if self.graph is None or not assignments:
            return assignments

        wanted = []
        for a in assignments:
            pid = (a.get("properties") or {}).get("principalId")
            if pid and pid not in self._principals and pid not in wanted:
                wanted.append(pid)
        await self._resolve_principals(wanted)

        enriched = []
        for a in assignments:
            props = a.get("properties") or {}
            found = self._principals.get(props.get("principalId") or "")
            if found and not props.get("principalDisplayName"):
                props = {**props, "principalDisplayName": found["displayName"]}
                if not props.get("principalType") and found.get("type"):
                    props["principalType"] = found["type"]
                a = {**a, "properties": props}
            enriched.append(a)
        return enriched

    async def _resolve_principals(self, principal_ids: list[str]):
        for i in range(0, len(principal_ids), PRINCIPAL_BATCH_SIZE):
            chunk = principal_ids[i:i + PRINCIPAL_BATCH_SIZE]
            try:
                data = await self.graph.post(
                    "directoryObjects/getByIds",
                    {"ids": chunk, "types": ["user", "group", "servicePrincipal"]},
                )
            except RemoteError as e:
                logger.warning(f"Principal lookup failed for {len(chunk)} ids: {e}")
                continue
            for obj in data.get("value", []):
                self._principals[obj.get("id")] = {
                    "displayName": obj.get("displayName") or obj.get("id"),
                    "type": GRAPH_PRINCIPAL_TYPES.get(
                        (obj.get("@odata.type") or "").lower(), ""
                    ),
                }
