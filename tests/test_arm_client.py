"""Tests for the ARM REST client against a mocked transport."""

import httpx
import pytest

from scope_audit_engine.arm.client import ArmClient
from scope_audit_engine.directory.base import (
    AccessDeniedError,
    NotFoundError,
    PermanentRemoteError,
    TransientRemoteError,
)
from scope_audit_engine.safety.guardian import SafetyGuardian, SafetyViolation

BASE = "https://management.azure.com"


def client_for(handler):
    return ArmClient("token", SafetyGuardian(), transport=httpx.MockTransport(handler))


class TestArmClient:
    """Status mapping, pagination and safety enforcement."""

    @pytest.mark.asyncio
    async def test_get_sends_bearer_and_params(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"name": "mg"})

        async with client_for(handler) as client:
            data = await client.get("/providers/Microsoft.Management/managementGroups/mg",
                                    params={"api-version": "2020-05-01"})

        assert data == {"name": "mg"}
        assert seen[0].headers["Authorization"] == "Bearer token"
        assert seen[0].url.params["api-version"] == "2020-05-01"
        assert str(seen[0].url).startswith(f"{BASE}/providers/Microsoft.Management/managementGroups/mg")

    @pytest.mark.asyncio
    async def test_pagination_follows_next_link(self):
        def handler(request):
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json={"value": [{"id": "c"}]})
            return httpx.Response(200, json={
                "value": [{"id": "a"}, {"id": "b"}],
                "nextLink": f"{BASE}/subscriptions/s1/resourcegroups?api-version=2021-04-01&page=2",
            })

        async with client_for(handler) as client:
            items = await client.get_all_pages("/subscriptions/s1/resourcegroups",
                                               params={"api-version": "2021-04-01"})
            stats = client.get_stats()

        assert [i["id"] for i in items] == ["a", "b", "c"]
        assert stats["total_requests"] == 2

    @pytest.mark.asyncio
    async def test_empty_body_is_empty_list(self):
        async with client_for(lambda request: httpx.Response(200, content=b"")) as client:
            assert await client.get_all_pages("/subscriptions/s1/resourcegroups") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,error", [
        (401, AccessDeniedError),
        (403, AccessDeniedError),
        (404, NotFoundError),
        (400, PermanentRemoteError),
        (500, TransientRemoteError),
        (503, TransientRemoteError),
    ])
    async def test_status_mapping(self, status, error):
        def handler(request):
            return httpx.Response(status, json={"error": {"code": "X", "message": f"status {status}"}})

        async with client_for(handler) as client:
            with pytest.raises(error) as exc_info:
                await client.get("/subscriptions/s1")

        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_permission_error_message_from_body(self):
        def handler(request):
            return httpx.Response(403, json={"error": {"code": "AuthorizationFailed", "message": "no read"}})

        async with client_for(handler) as client:
            with pytest.raises(AccessDeniedError, match="no read"):
                await client.get("/subscriptions/s1")

    @pytest.mark.asyncio
    async def test_throttling_carries_retry_after(self):
        def handler(request):
            return httpx.Response(429, headers={"Retry-After": "7"}, json={})

        async with client_for(handler) as client:
            with pytest.raises(TransientRemoteError) as exc_info:
                await client.get("/subscriptions/s1")
            stats = client.get_stats()

        assert exc_info.value.retry_after == 7.0
        assert stats["throttle_events"] == 1

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with client_for(handler) as client:
            with pytest.raises(TransientRemoteError):
                await client.get("/subscriptions/s1")

    @pytest.mark.asyncio
    async def test_write_post_blocked_before_sending(self):
        sent = []

        def handler(request):
            sent.append(request)
            return httpx.Response(200, json={})

        async with client_for(handler) as client:
            with pytest.raises(SafetyViolation):
                await client.post(
                    "/subscriptions/s1/providers/Microsoft.Authorization/roleAssignments/x",
                    {"properties": {}},
                )
        assert not sent

    @pytest.mark.asyncio
    async def test_read_only_post_allowed(self):
        def handler(request):
            return httpx.Response(200, json={"value": [{"id": "u1"}]})

        client = ArmClient("token", SafetyGuardian(), base_url="https://graph.microsoft.com/v1.0",
                           transport=httpx.MockTransport(handler))
        async with client:
            data = await client.post("directoryObjects/getByIds", {"ids": ["u1"]})
        assert data["value"][0]["id"] == "u1"

    @pytest.mark.asyncio
    async def test_requires_context_manager(self):
        client = client_for(lambda request: httpx.Response(200, json={}))
        with pytest.raises(RuntimeError):
            await client.get("/subscriptions/s1")
