from .base import (
    AccessDeniedError,
    CallCancelledError,
    NotFoundError,
    PermanentRemoteError,
    RemoteError,
    ScopeDirectory,
    TransientRemoteError,
    call_with_retry,
)

__all__ = [
    "AccessDeniedError",
    "CallCancelledError",
    "NotFoundError",
    "PermanentRemoteError",
    "RemoteError",
    "ScopeDirectory",
    "TransientRemoteError",
    "call_with_retry",
]
