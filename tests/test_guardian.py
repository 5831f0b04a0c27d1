"""Tests for read-only enforcement."""

import pytest

from scope_audit_engine.safety.guardian import SafetyGuardian, SafetyViolation

ARM = "https://management.azure.com"


@pytest.fixture
def guardian():
    return SafetyGuardian()


class TestSafetyGuardian:

    @pytest.mark.parametrize("url", [
        f"{ARM}/subscriptions/s1/providers/Microsoft.Authorization/roleAssignments?$filter=atScope()",
        f"{ARM}/providers/Microsoft.Management/managementGroups/mg?$expand=children",
    ])
    def test_reads_allowed(self, guardian, url):
        assert guardian.validate_request("GET", url)

    @pytest.mark.parametrize("url", [
        "https://graph.microsoft.com/v1.0/directoryObjects/getByIds",
        f"{ARM}/providers/Microsoft.ResourceGraph/resources?api-version=2021-03-01",
    ])
    def test_query_posts_allowed(self, guardian, url):
        assert guardian.validate_request("POST", url)

    @pytest.mark.parametrize("method,url", [
        ("PUT", f"{ARM}/subscriptions/s1/providers/Microsoft.Authorization/roleAssignments/x"),
        ("DELETE", f"{ARM}/subscriptions/s1/providers/Microsoft.Authorization/policyAssignments/p"),
        ("POST", f"{ARM}/providers/Microsoft.Authorization/elevateAccess?api-version=2015-07-01"),
        ("PUT", f"{ARM}/providers/Microsoft.Management/managementGroups/mg/subscriptions/s1"),
        ("PATCH", f"{ARM}/providers/Microsoft.Management/managementGroups/mg"),
    ])
    def test_writes_blocked(self, guardian, method, url):
        with pytest.raises(SafetyViolation):
            guardian.validate_request(method, url)

        record = guardian.get_audit_record()["safety_guardian"]
        assert record["violations_detected"] == 1
        assert record["status"] == "VIOLATIONS_DETECTED"

    def test_clean_audit_record(self, guardian):
        guardian.validate_request("GET", f"{ARM}/subscriptions/s1")
        record = guardian.get_audit_record()["safety_guardian"]

        assert record["checks_performed"] == 1
        assert record["status"] == "CLEAN"

    def test_banner_prints(self, capsys):
        SafetyGuardian.print_banner()
        assert "READ-ONLY" in capsys.readouterr().out
