"""Tests for assignment classification."""

from datetime import datetime, timedelta, timezone

import pytest

from scope_audit_engine.analyzers.classifier import (
    Classifier,
    MalformedDataError,
    parse_timestamp,
    principal_kind,
    policy_inheritance,
)
from scope_audit_engine.models import (
    Category,
    Inheritance,
    LifecycleState,
    RawAssignment,
    ScopeKind,
    ScopeNode,
)

from tests.conftest import NOW

YESTERDAY = (NOW - timedelta(days=1)).isoformat()
TOMORROW = (NOW + timedelta(days=1)).isoformat()
LAST_WEEK = (NOW - timedelta(days=7)).isoformat()
NEXT_WEEK = (NOW + timedelta(days=7)).isoformat()

IT_DIV = ScopeNode(id="it-div", display_name="IT", kind=ScopeKind.MANAGEMENT_GROUP, root_id="contoso-root")
SUBSCRIPTION = ScopeNode(id="/subscriptions/sub-it", kind=ScopeKind.SUBSCRIPTION, root_id="contoso-root")


def raw(category=Category.STANDING_GRANT, **fields):
    defaults = {
        "assignment_id": "a-1",
        "scope_path": "it-div",
        "principal_id": "alice",
        "principal_type": "User",
        "ref_id": "reader",
        "ref_display_name": "Reader",
    }
    defaults.update(fields)
    return RawAssignment(category=category, **defaults)


@pytest.fixture
def classifier():
    return Classifier(now=NOW)


class TestClassifier:
    """Classify(raw, scope) -> AssignmentRecord."""

    def test_direct_standing_grant(self, classifier):
        record = classifier.classify(raw(), IT_DIV)

        assert record.scope_id == "it-div"
        assert record.inheritance is Inheritance.DIRECT
        assert record.lifecycle_state is LifecycleState.ACTIVE
        assert record.state_label == "Active"
        assert record.principal.kind == "User"
        assert record.reference.display_name == "Reader"
        assert record.warnings == ()

    def test_inherited_from_ancestor(self, classifier):
        record = classifier.classify(raw(scope_path="contoso-root"), IT_DIV)
        assert record.inheritance is Inheritance.INHERITED

    def test_direct_ignores_case_and_trailing_slash(self, classifier):
        record = classifier.classify(raw(scope_path="/Subscriptions/SUB-IT/"), SUBSCRIPTION)
        assert record.inheritance is Inheritance.DIRECT

    def test_expired_regardless_of_start(self, classifier):
        record = classifier.classify(
            raw(Category.ELIGIBLE_GRANT, start_time=TOMORROW, end_time=YESTERDAY), IT_DIV
        )
        assert record.lifecycle_state is LifecycleState.EXPIRED

    def test_not_yet_active(self, classifier):
        record = classifier.classify(raw(Category.ELIGIBLE_GRANT, start_time=TOMORROW), IT_DIV)
        assert record.lifecycle_state is LifecycleState.NOT_YET_ACTIVE

    def test_active_window(self, classifier):
        record = classifier.classify(
            raw(Category.ELIGIBLE_GRANT, start_time=LAST_WEEK, end_time=NEXT_WEEK), IT_DIV
        )
        assert record.lifecycle_state is LifecycleState.ACTIVE
        assert record.temporal.is_time_bound
        assert record.temporal.end_time == NOW + timedelta(days=7)

    def test_conditional_within_window(self, classifier):
        record = classifier.classify(
            raw(Category.ELIGIBLE_GRANT, start_time=LAST_WEEK, end_time=NEXT_WEEK,
                condition="@Resource[tag] == 'x'"),
            IT_DIV,
        )
        assert record.lifecycle_state is LifecycleState.CONDITIONAL
        assert record.state_label == "Conditional"
        assert record.conditional

    def test_condition_on_standing_grant_is_a_qualifier(self, classifier):
        record = classifier.classify(raw(condition="@Resource[tag] == 'x'"), IT_DIV)

        assert record.lifecycle_state is LifecycleState.ACTIVE
        assert record.state_label == "Active (Conditional)"
        assert record.conditional
        assert record.condition == "@Resource[tag] == 'x'"

    def test_expired_and_conditional(self, classifier):
        record = classifier.classify(
            raw(Category.ELIGIBLE_GRANT, end_time=YESTERDAY, condition="x"), IT_DIV
        )
        assert record.lifecycle_state is LifecycleState.EXPIRED
        assert record.state_label == "Expired (Conditional)"

    def test_blank_condition_is_not_conditional(self, classifier):
        record = classifier.classify(raw(condition="   "), IT_DIV)
        assert not record.conditional
        assert record.condition is None

    def test_unparseable_temporal_is_unknown(self, classifier):
        record = classifier.classify(raw(Category.ELIGIBLE_GRANT, end_time="not-a-date"), IT_DIV)

        assert record.lifecycle_state is LifecycleState.UNKNOWN
        assert record.state_label == "TimeBound"
        assert any("endTime" in w for w in record.warnings)

    def test_partially_parseable_temporal_uses_what_parsed(self, classifier):
        record = classifier.classify(
            raw(Category.ELIGIBLE_GRANT, start_time=LAST_WEEK, end_time="garbage"), IT_DIV
        )
        assert record.lifecycle_state is LifecycleState.ACTIVE
        assert len(record.warnings) == 1

    def test_missing_principal_warns(self, classifier):
        record = classifier.classify(raw(principal_id="", principal_type=None), IT_DIV)

        assert record.principal.kind == "Unknown"
        assert "principalId missing" in record.warnings

    def test_display_names_fall_back_to_ids(self, classifier):
        record = classifier.classify(raw(ref_display_name="", principal_display_name=""), IT_DIV)

        assert record.principal.display_name == "alice"
        assert record.reference.display_name == "reader"

    def test_idempotent(self, classifier):
        item = raw(Category.ELIGIBLE_GRANT, start_time=LAST_WEEK, end_time=NEXT_WEEK, condition="c")
        assert classifier.classify(item, IT_DIV) == classifier.classify(item, IT_DIV)

    def test_policy_bound_at_management_group_is_inherited_at_subscription(self, classifier):
        item = raw(
            Category.POLICY_ASSIGNMENT,
            scope_path="/providers/Microsoft.Management/managementGroups/contoso-root",
            principal_id="",
            ref_id="/providers/Microsoft.Authorization/policyDefinitions/allowed-locations",
        )
        record = classifier.classify(item, SUBSCRIPTION)
        assert record.inheritance is Inheritance.INHERITED

    def test_policy_bound_at_subscription_is_direct_there(self, classifier):
        item = raw(Category.POLICY_ASSIGNMENT, scope_path="/subscriptions/sub-it")
        assert classifier.classify(item, SUBSCRIPTION).inheritance is Inheritance.DIRECT

    def test_naive_evaluation_time_taken_as_utc(self):
        classifier = Classifier(now=datetime(2026, 1, 15, 12, 0))
        record = classifier.classify(raw(Category.ELIGIBLE_GRANT, end_time=YESTERDAY), IT_DIV)
        assert record.lifecycle_state is LifecycleState.EXPIRED


class TestPrincipalKind:
    """Provider principal types map to canonical kinds."""

    @pytest.mark.parametrize("value,expected", [
        ("User", "User"),
        ("group", "Group"),
        ("ForeignGroup", "Group"),
        ("ServicePrincipal", "ServicePrincipal"),
        ("SERVICEPRINCIPAL", "ServicePrincipal"),
        ("MSI", "ManagedIdentity"),
        ("SystemAssigned", "ManagedIdentity"),
        (None, "Unknown"),
        ("", "Unknown"),
        ("Device", "Device"),
    ])
    def test_mapping(self, value, expected):
        assert principal_kind(value) == expected


class TestParseTimestamp:
    """ISO-8601 parsing."""

    def test_seven_digit_fraction(self):
        parsed = parse_timestamp("2026-01-15T10:30:00.1234567Z")
        assert parsed == datetime(2026, 1, 15, 10, 30, 0, 123456, tzinfo=timezone.utc)

    def test_offset_converted_to_utc(self):
        parsed = parse_timestamp("2026-01-15T12:00:00+02:00")
        assert parsed == datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)

    def test_blank_is_none(self):
        assert parse_timestamp("  ") is None
        assert parse_timestamp(None) is None

    def test_garbage_raises(self):
        with pytest.raises(MalformedDataError):
            parse_timestamp("yesterday")


def test_policy_inheritance_at_management_group_uses_exact_match():
    mg = ScopeNode(
        id="/providers/Microsoft.Management/managementGroups/it-div",
        kind=ScopeKind.MANAGEMENT_GROUP,
    )
    ancestor = "/providers/Microsoft.Management/managementGroups/contoso-root"
    assert policy_inheritance(ancestor, mg) is Inheritance.INHERITED
    assert policy_inheritance(mg.id.upper(), mg) is Inheritance.DIRECT
