"""Shared fixtures: an in-memory scope directory and fast collection settings."""

import asyncio
from collections import Counter
from datetime import datetime, timezone

import pytest

from scope_audit_engine.config import AuditOptions, CollectionConfig
from scope_audit_engine.directory.base import ScopeDirectory
from scope_audit_engine.models import Category, ScopeKind


NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def child(scope_id, kind=ScopeKind.MANAGEMENT_GROUP, name=None):
    """Child entry in the shape get_children returns."""
    return {"id": scope_id, "displayName": name or scope_id, "kind": kind.value}


def standing(principal_id, role, scope, principal_type="User", **properties):
    """ARM roleAssignments payload."""
    return {
        "id": f"{scope}/providers/Microsoft.Authorization/roleAssignments/{principal_id}-{role}",
        "name": f"{principal_id}-{role}",
        "properties": {
            "principalId": principal_id,
            "principalType": principal_type,
            "roleDefinitionId": f"/providers/Microsoft.Authorization/roleDefinitions/{role.lower()}",
            "roleDefinitionName": role,
            "scope": scope,
            **properties,
        },
    }


def eligible(principal_id, role, scope, start=None, end=None, principal_type="User", **properties):
    """ARM roleEligibilityScheduleInstances payload with expanded properties."""
    props = {
        "principalId": principal_id,
        "principalType": principal_type,
        "roleDefinitionId": f"/providers/Microsoft.Authorization/roleDefinitions/{role.lower()}",
        "scope": scope,
        "expandedProperties": {
            "principal": {"id": principal_id, "displayName": principal_id.title(), "type": principal_type},
            "roleDefinition": {"displayName": role},
            "scope": {"id": scope},
        },
        **properties,
    }
    if start is not None:
        props["startDateTime"] = start
    if end is not None:
        props["endDateTime"] = end
    return {
        "id": f"{scope}/providers/Microsoft.Authorization/roleEligibilityScheduleInstances/{principal_id}-{role}",
        "properties": props,
    }


def policy(name, scope, definition="allowed-locations", **extra):
    """ARM policyAssignments payload."""
    return {
        "id": f"{scope}/providers/Microsoft.Authorization/policyAssignments/{name}",
        "name": name,
        "properties": {
            "displayName": name.replace("-", " ").title(),
            "policyDefinitionId": f"/providers/Microsoft.Authorization/policyDefinitions/{definition}",
            "scope": scope,
        },
        **extra,
    }


class FakeDirectory(ScopeDirectory):
    """
    In-memory ScopeDirectory.

    children:  scope id -> list of child dicts
    grants:    (scope id, Category) -> list of payloads
    failures:  (scope id, op) -> exception, or list of exceptions raised in
               turn before the call succeeds. op is "children" or a Category.
    delays:    (scope id, op) -> seconds to sleep before answering
    """

    def __init__(self, children=None, grants=None, failures=None, delays=None):
        self.children = children or {}
        self.grants = grants or {}
        self.failures = failures or {}
        self.delays = delays or {}
        self.calls = Counter()

    async def _answer(self, scope_id, op, value):
        self.calls[(scope_id, op)] += 1
        delay = self.delays.get((scope_id, op))
        if delay:
            await asyncio.sleep(delay)
        planned = self.failures.get((scope_id, op))
        if isinstance(planned, list):
            if planned:
                raise planned.pop(0)
        elif planned is not None:
            raise planned
        return list(value)

    async def get_children(self, scope_id):
        return await self._answer(scope_id, "children", self.children.get(scope_id, []))

    async def get_standing_grants(self, scope_id):
        return await self._answer(
            scope_id, Category.STANDING_GRANT,
            self.grants.get((scope_id, Category.STANDING_GRANT), []),
        )

    async def get_eligible_grants(self, scope_id):
        return await self._answer(
            scope_id, Category.ELIGIBLE_GRANT,
            self.grants.get((scope_id, Category.ELIGIBLE_GRANT), []),
        )

    async def get_policy_assignments(self, scope_id):
        return await self._answer(
            scope_id, Category.POLICY_ASSIGNMENT,
            self.grants.get((scope_id, Category.POLICY_ASSIGNMENT), []),
        )

    def children_calls(self, scope_id):
        return self.calls[(scope_id, "children")]


@pytest.fixture
def fast_config():
    """Collection settings with retries but no real backoff sleeps."""
    return CollectionConfig(
        max_workers=4,
        walk_concurrency=4,
        retry_attempts=2,
        initial_backoff_seconds=0.0,
        max_backoff_seconds=0.0,
    )


@pytest.fixture
def options():
    return AuditOptions()


@pytest.fixture
def contoso_directory():
    """
    contoso-root
    ├── it-div
    │   └── /subscriptions/sub-it          (Subscription)
    │       └── /subscriptions/sub-it/resourceGroups/rg-web
    └── finance
    """
    sub = "/subscriptions/sub-it"
    rg = "/subscriptions/sub-it/resourceGroups/rg-web"
    return FakeDirectory(
        children={
            "contoso-root": [child("it-div"), child("finance")],
            "it-div": [child(sub, ScopeKind.SUBSCRIPTION, "IT Production")],
            sub: [child(rg, ScopeKind.RESOURCE_GROUP, "rg-web")],
        },
        grants={
            ("it-div", Category.STANDING_GRANT): [standing("alice", "Reader", "it-div")],
            ("contoso-root", Category.STANDING_GRANT): [
                standing("ops-team", "Contributor", "contoso-root", principal_type="Group"),
            ],
        },
    )
