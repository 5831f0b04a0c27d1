"""Tests for provider payload normalization."""

import pytest

from scope_audit_engine.collectors.normalize import (
    first_present,
    normalize_assignment,
    path,
    scope_from_resource_id,
)
from scope_audit_engine.models import Category, UNKNOWN_SCOPE

from tests.conftest import eligible, policy, standing


class TestNormalizeAssignment:
    """normalize_assignment(payload, category) -> RawAssignment."""

    def test_role_assignment(self):
        payload = standing("alice", "Reader", "/subscriptions/sub-it", createdOn="2025-03-01T00:00:00Z")
        item = normalize_assignment(payload, Category.STANDING_GRANT)

        assert item.category is Category.STANDING_GRANT
        assert item.assignment_id == payload["id"]
        assert item.scope_path == "/subscriptions/sub-it"
        assert item.principal_id == "alice"
        assert item.principal_type == "User"
        assert item.ref_id.endswith("/roleDefinitions/reader")
        assert item.ref_display_name == "Reader"
        assert item.created_on == "2025-03-01T00:00:00Z"
        assert item.start_time is None and item.end_time is None
        assert item.source is payload

    def test_eligible_instance_reads_expanded_properties(self):
        payload = eligible(
            "bob", "Owner", "/subscriptions/sub-it",
            start="2026-01-01T00:00:00Z", end="2026-06-01T00:00:00Z",
        )
        item = normalize_assignment(payload, Category.ELIGIBLE_GRANT)

        assert item.principal_display_name == "Bob"
        assert item.ref_display_name == "Owner"
        assert item.start_time == "2026-01-01T00:00:00Z"
        assert item.end_time == "2026-06-01T00:00:00Z"

    def test_standing_grant_ignores_schedule_fields(self):
        payload = standing("alice", "Reader", "it-div", endDateTime="2020-01-01T00:00:00Z")
        item = normalize_assignment(payload, Category.STANDING_GRANT)
        assert item.end_time is None

    def test_reference_name_falls_back_to_technical_name(self):
        payload = standing("alice", "Reader", "it-div")
        del payload["properties"]["roleDefinitionName"]
        item = normalize_assignment(payload, Category.STANDING_GRANT)

        assert item.ref_display_name == "alice-Reader"

    def test_reference_name_falls_back_to_reference_id(self):
        payload = {"properties": {"roleDefinitionId": "/roleDefinitions/abc", "scope": "it-div"}}
        item = normalize_assignment(payload, Category.STANDING_GRANT)
        assert item.ref_display_name == "/roleDefinitions/abc"

    def test_principal_name_falls_back_to_id(self):
        item = normalize_assignment(standing("alice", "Reader", "it-div"), Category.STANDING_GRANT)
        assert item.principal_display_name == "alice"

    def test_scope_derived_from_resource_id(self):
        payload = standing("alice", "Reader", "/subscriptions/sub-it/resourceGroups/rg-web")
        del payload["properties"]["scope"]
        item = normalize_assignment(payload, Category.STANDING_GRANT)

        assert item.scope_path == "/subscriptions/sub-it/resourceGroups/rg-web"

    def test_unresolvable_scope_is_unknown(self):
        item = normalize_assignment({"name": "orphan"}, Category.STANDING_GRANT)

        assert item.scope_path == UNKNOWN_SCOPE
        assert item.assignment_id == "orphan"
        assert item.principal_id == ""

    def test_policy_assignment_with_managed_identity(self):
        payload = policy(
            "deploy-diagnostics", "/providers/Microsoft.Management/managementGroups/contoso-root",
            identity={"type": "SystemAssigned", "principalId": "mi-123"},
        )
        item = normalize_assignment(payload, Category.POLICY_ASSIGNMENT)

        assert item.ref_id.endswith("/policyDefinitions/allowed-locations")
        assert item.ref_display_name == "Deploy Diagnostics"
        assert item.principal_id == "mi-123"
        assert item.principal_type == "SystemAssigned"

    def test_blank_strings_skipped(self):
        payload = standing("alice", "Reader", "it-div", principalDisplayName="  ")
        item = normalize_assignment(payload, Category.STANDING_GRANT)
        assert item.principal_display_name == "alice"


class TestAccessors:

    def test_path_misses_return_none(self):
        assert path("a", "b")({"a": "not-a-dict"}) is None
        assert path("a", "b")({"a": {"b": 1}}) == 1

    def test_first_present_keeps_falsy_non_strings(self):
        assert first_present({"n": 0}, (path("missing"), path("n"))) == 0


@pytest.mark.parametrize("resource_id,expected", [
    ("/subscriptions/s1/providers/Microsoft.Authorization/roleAssignments/x", "/subscriptions/s1"),
    ("/providers/Microsoft.Management/managementGroups/mg/providers/microsoft.authorization/policyAssignments/p",
     "/providers/Microsoft.Management/managementGroups/mg"),
    ("/providers/Microsoft.Authorization/roleAssignments/x", "/"),
    ("/subscriptions/s1/resourceGroups/rg/thing", "/subscriptions/s1/resourceGroups/rg"),
    ("no-slashes", None),
    ("", None),
])
def test_scope_from_resource_id(resource_id, expected):
    assert scope_from_resource_id(resource_id) == expected
