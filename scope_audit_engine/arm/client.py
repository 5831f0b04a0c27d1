"""
Async Azure Resource Manager client with pagination, status mapping and
safety enforcement. The same client serves Graph lookups when pointed at
the Graph base URL.

Retries are not done here: failures surface as Transient/Permanent remote
errors and the walker and collector decide whether to retry.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from ..config import (
    ARM_BASE_URL,
    MAX_CONCURRENT_REQUESTS,
    MAX_PAGES_PER_ENDPOINT,
)
from ..directory.base import (
    AccessDeniedError,
    NotFoundError,
    PermanentRemoteError,
    TransientRemoteError,
)
from ..safety.guardian import SafetyGuardian, SafetyViolation

logger = logging.getLogger("scope_audit_engine.arm")

TRANSIENT_STATUS_CODES = (408, 429, 500, 502, 503, 504)


class ArmClient:
    """
    Async REST client for management.azure.com (or Graph).
    Features:
      - Safety-validated requests (read-only enforcement)
      - Automatic pagination with nextLink / @odata.nextLink
      - Throttling surfaced as TransientRemoteError carrying Retry-After
      - Concurrent request semaphore
    """

    def __init__(
        self,
        access_token: str,
        guardian: SafetyGuardian,
        base_url: str = ARM_BASE_URL,
        max_concurrent: int = MAX_CONCURRENT_REQUESTS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.guardian = guardian
        self.base_url = base_url.rstrip("/")
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._max_concurrent = max_concurrent
        self._transport = transport
        self._request_count = 0
        self._throttle_count = 0
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=30.0),
            limits=httpx.Limits(
                max_connections=self._max_concurrent * 2,
                max_keepalive_connections=self._max_concurrent,
            ),
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    def build_url(self, endpoint: str) -> str:
        """Build a full URL from a relative path or scope id."""
        if endpoint.startswith("http"):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def get(self, endpoint: str, params: Optional[dict] = None) -> dict:
        """Execute a single GET request."""
        url = self.build_url(endpoint)
        self.guardian.validate_request("GET", url)
        async with self._semaphore:
            return await self._execute("GET", url, params=params)

    async def post(self, endpoint: str, json_body: dict) -> dict:
        """POST for read-only query endpoints; the guardian rejects anything else."""
        url = self.build_url(endpoint)
        self.guardian.validate_request("POST", url, json_body)
        async with self._semaphore:
            return await self._execute("POST", url, json_body=json_body)

    async def get_all_pages(
        self,
        endpoint: str,
        params: Optional[dict] = None,
    ) -> list[dict]:
        """Fetch every page of a list endpoint into one list."""
        items: list[dict] = []
        url: Optional[str] = self.build_url(endpoint)
        pages = 0

        while url and pages < MAX_PAGES_PER_ENDPOINT:
            self.guardian.validate_request("GET", url)
            async with self._semaphore:
                data = await self._execute("GET", url, params=params)

            items.extend(data.get("value", []))

            # nextLink already carries every query parameter
            url = data.get("nextLink") or data.get("@odata.nextLink")
            params = None
            pages += 1

        if pages >= MAX_PAGES_PER_ENDPOINT and url:
            logger.warning(
                f"Pagination safety cap reached ({MAX_PAGES_PER_ENDPOINT} pages) "
                f"for endpoint: {endpoint}"
            )
        return items

    async def _execute(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> dict:
        """Execute one request and map the response onto the error taxonomy."""
        if not self._client:
            raise RuntimeError("ArmClient not initialized. Use 'async with' context.")

        try:
            if method == "GET":
                response = await self._client.get(url, params=params)
            elif method == "POST":
                response = await self._client.post(url, json=json_body, params=params)
            else:
                raise SafetyViolation(f"Unsupported method at raw level: {method}")
        except httpx.TimeoutException as e:
            logger.warning(f"Timeout on {url}")
            raise TransientRemoteError(f"Timeout: {e}", url) from e
        except httpx.TransportError as e:
            logger.warning(f"Connection error on {url}: {e}")
            raise TransientRemoteError(f"Connection error: {e}", url) from e

        self._request_count += 1
        status = response.status_code

        if status == 200:
            if not response.content or not response.content.strip():
                return {"value": []}
            try:
                return response.json()
            except ValueError:
                logger.debug(f"200 response with non-JSON body from {url}")
                return {"value": []}

        if status == 204:
            return {}

        message = self._error_message(response)

        if status in TRANSIENT_STATUS_CODES:
            if status in (429, 503):
                self._throttle_count += 1
            logger.warning(f"Transient {status} on {url}: {message}")
            raise TransientRemoteError(
                message, url, status_code=status,
                retry_after=self._retry_after(response),
            )

        if status in (401, 403):
            logger.warning(f"{status} Access denied: {url} — {message}")
            raise AccessDeniedError(message, url, status_code=status)

        if status == 404:
            logger.debug(f"404 Not Found: {url}")
            raise NotFoundError(message, url, status_code=status)

        raise PermanentRemoteError(
            f"ARM error {status} for {url}: {message}", url, status_code=status
        )

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json() if response.content else {}
        except ValueError:
            return response.text[:200]
        if not isinstance(body, dict):
            return response.text[:200]
        error = body.get("error") or {}
        if isinstance(error, dict):
            return error.get("message") or error.get("code") or response.text[:200]
        return str(error)[:200]

    @staticmethod
    def _retry_after(response: httpx.Response) -> Optional[float]:
        value = response.headers.get("Retry-After")
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    def get_stats(self) -> dict:
        """Return client statistics."""
        return {
            "total_requests": self._request_count,
            "throttle_events": self._throttle_count,
        }
