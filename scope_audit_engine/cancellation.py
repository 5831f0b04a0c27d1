"""
Run cancellation — user abort or deadline.
Walkers and collectors consult the token before each remote call.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

logger = logging.getLogger("scope_audit_engine.cancellation")


class CancellationToken:
    """
    Signals that no new remote calls should be issued.
    Work already in flight finishes and is still reported.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        self._cancelled = False
        self._reason = ""
        self._deadline = (
            time.monotonic() + timeout_seconds if timeout_seconds else None
        )

    def cancel(self, reason: str = "Cancelled by caller"):
        if not self._cancelled:
            logger.warning(f"Run cancelled: {reason}")
        self._cancelled = True
        self._reason = self._reason or reason

    @property
    def cancelled(self) -> bool:
        if not self._cancelled and self._deadline is not None:
            if time.monotonic() >= self._deadline:
                self.cancel("Deadline reached")
        return self._cancelled

    @property
    def reason(self) -> str:
        return self._reason

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None when there is none."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())
