"""
Scope Directory contract — the remote collaborator the engine reads from.
Defines the remote error taxonomy and the call-site retry helper.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..cancellation import CancellationToken
from ..config import CollectionConfig
from ..models import Category, SkipReason

logger = logging.getLogger("scope_audit_engine.directory")

T = TypeVar("T")


class RemoteError(Exception):
    """Base for failures reported by a directory call."""
    def __init__(self, message: str, url: str = "", status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)

    @property
    def skip_reason(self) -> SkipReason:
        return SkipReason.ERROR


class TransientRemoteError(RemoteError):
    """Timeouts, throttling and connection failures. Safe to retry."""
    def __init__(
        self,
        message: str,
        url: str = "",
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, url, status_code)

    @property
    def skip_reason(self) -> SkipReason:
        return SkipReason.TRANSIENT


class PermanentRemoteError(RemoteError):
    """Non-retryable failure; the branch or scope is skipped."""
    pass


class NotFoundError(PermanentRemoteError):
    @property
    def skip_reason(self) -> SkipReason:
        return SkipReason.NOT_FOUND


class AccessDeniedError(PermanentRemoteError):
    @property
    def skip_reason(self) -> SkipReason:
        return SkipReason.ACCESS_DENIED


class CallCancelledError(RemoteError):
    """The run was cancelled before a retry could be issued."""
    @property
    def skip_reason(self) -> SkipReason:
        return SkipReason.CANCELLED


class ScopeDirectory(ABC):
    """
    Read-only view of the scope hierarchy and the grants bound to it.

    Every method is an idempotent read and may be retried. Each raises a
    RemoteError subclass on failure; categories fail independently.
    """

    @abstractmethod
    async def get_children(self, scope_id: str) -> list[dict[str, Any]]:
        """Immediate children as dicts with id, displayName and kind."""
        raise NotImplementedError

    @abstractmethod
    async def get_standing_grants(self, scope_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    async def get_eligible_grants(self, scope_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    async def get_policy_assignments(self, scope_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    def fetcher_for(self, category: Category) -> Callable[[str], Awaitable[list[dict[str, Any]]]]:
        """Map an assignment category to the directory call that serves it."""
        return {
            Category.STANDING_GRANT: self.get_standing_grants,
            Category.ELIGIBLE_GRANT: self.get_eligible_grants,
            Category.POLICY_ASSIGNMENT: self.get_policy_assignments,
        }[category]


async def call_with_retry(
    call: Callable[[], Awaitable[T]],
    config: CollectionConfig,
    description: str,
    cancel: Optional[CancellationToken] = None,
) -> T:
    """
    Await call(), retrying TransientRemoteError with exponential backoff.
    PermanentRemoteError and anything else propagate immediately.

    With a cancel token, backoff sleeps never run past its deadline and no
    retry is issued once it has fired; CallCancelledError is raised instead.
    """
    backoff = config.initial_backoff_seconds

    for attempt in range(config.retry_attempts + 1):
        try:
            return await call()
        except TransientRemoteError as e:
            if attempt == config.retry_attempts:
                logger.warning(
                    f"Giving up on {description} after {attempt + 1} attempts: {e}"
                )
                raise
            wait_time = max(e.retry_after or 0.0, backoff)
            remaining = cancel.remaining() if cancel is not None else None
            if remaining is not None:
                wait_time = min(wait_time, remaining)
            logger.warning(
                f"Transient failure on {description}. "
                f"Retry {attempt + 1}/{config.retry_attempts} in {wait_time:.1f}s"
            )
            await asyncio.sleep(wait_time)
            backoff = min(backoff * config.backoff_multiplier, config.max_backoff_seconds)
            if cancel is not None and cancel.cancelled:
                logger.warning(f"Not retrying {description}: {cancel.reason}")
                raise CallCancelledError(
                    f"{cancel.reason} after {attempt + 1} attempt(s); last error: {e}",
                    url=e.url,
                    status_code=e.status_code,
                ) from e

    raise RuntimeError("unreachable")  # pragma: no cover
