"""
Safety Guardian — Enforces strict read-only operation.
Validates all HTTP methods, blocks write attempts, and logs safety events.
"""

from __future__ import annotations

import logging
import re
import sys
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("scope_audit_engine.safety")

# ─── Blocked HTTP Methods ────────────────────────────────────────────────────

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# Known read-only POST endpoints (Graph and ARM use POST for some queries)
SAFE_POST_ENDPOINTS = [
    re.compile(r"/directoryObjects/getByIds$", re.IGNORECASE),       # Resolve principal ids
    re.compile(r"/providers/Microsoft\.ResourceGraph/resources$", re.IGNORECASE),
    re.compile(r"/policyStates/latest/queryResults$", re.IGNORECASE),
]

# ARM action URLs that change access or policy state
BLOCKED_URL_PATTERNS = [
    re.compile(r"/elevateAccess$", re.IGNORECASE),
    re.compile(r"/roleAssignmentScheduleRequests/", re.IGNORECASE),
    re.compile(r"/roleEligibilityScheduleRequests/", re.IGNORECASE),
    re.compile(r"/Microsoft\.PolicyInsights/remediations/", re.IGNORECASE),
    re.compile(r"/policyStates/latest/triggerEvaluation$", re.IGNORECASE),
    re.compile(r"/Microsoft\.Management/managementGroups/[^/]+/subscriptions/", re.IGNORECASE),
    re.compile(r"/moveResources$", re.IGNORECASE),
    re.compile(r"/validateMoveResources$", re.IGNORECASE),
    re.compile(r"/cancel$", re.IGNORECASE),
]


class SafetyViolation(Exception):
    """Raised when a write operation is attempted."""
    pass


class SafetyGuardian:
    """
    Validates every outbound HTTP request to ensure read-only operation.
    Maintains an audit log of all safety checks and violations.
    """

    def __init__(self):
        self.violations: list[dict] = []
        self.checks_performed: int = 0
        self.started_at: str = datetime.now(timezone.utc).isoformat()

    def validate_request(self, method: str, url: str, body: Optional[dict] = None) -> bool:
        """
        Validate that a request is read-only.
        Returns True if safe, raises SafetyViolation if not.
        """
        self.checks_performed += 1
        method_upper = method.upper()
        path = url.split("?", 1)[0]

        if method_upper in ("GET", "HEAD", "OPTIONS"):
            return True

        if method_upper == "POST":
            for pattern in SAFE_POST_ENDPOINTS:
                if pattern.search(path):
                    return True

        for pattern in BLOCKED_URL_PATTERNS:
            if pattern.search(path):
                self._record_violation(method_upper, url, "Blocked write-pattern URL")
                raise SafetyViolation(
                    f"SAFETY VIOLATION: Write-pattern URL detected: {method_upper} {url}"
                )

        if method_upper in WRITE_METHODS:
            self._record_violation(method_upper, url, "Write HTTP method blocked")
            raise SafetyViolation(
                f"SAFETY VIOLATION: Write method blocked: {method_upper} {url}"
            )

        return True

    def _record_violation(self, method: str, url: str, reason: str):
        """Record a safety violation for audit."""
        violation = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "method": method,
            "url": url,
            "reason": reason,
        }
        self.violations.append(violation)
        logger.critical(f"SAFETY VIOLATION: {reason} — {method} {url}")

    def get_audit_record(self) -> dict:
        """Return the full safety audit record."""
        return {
            "safety_guardian": {
                "mode": "READ-ONLY",
                "started_at": self.started_at,
                "checks_performed": self.checks_performed,
                "violations_detected": len(self.violations),
                "violations": self.violations,
                "status": "CLEAN" if not self.violations else "VIOLATIONS_DETECTED",
            }
        }

    @staticmethod
    def print_banner():
        """Print the read-only warning banner."""
        # Box-drawing only on an interactive UTF-8 terminal; pipes get ASCII.
        enc = getattr(sys.stdout, "encoding", "") or ""
        unicode_ok = (
            sys.stdout.isatty()
            and enc.lower().replace("-", "") in ("utf8", "utf16", "utf32")
        )

        if unicode_ok:
            banner = """
╔═══════════════════════════════════════════════════════════════════════════╗
║   READ-ONLY SCOPE ACCESS & POLICY AUDIT — NO CHANGES WILL BE MADE         ║
║                                                                           ║
║   * All ARM calls are GET/read-only                                       ║
║   * No role assignments or policy assignments will be modified            ║
║   * Safety Guardian enforces read-only at the HTTP layer                  ║
╚═══════════════════════════════════════════════════════════════════════════╝
"""
            try:
                print(banner)
                return
            except UnicodeEncodeError:
                pass  # fall through to ASCII banner

        print("=" * 75)
        print("  READ-ONLY SCOPE ACCESS & POLICY AUDIT -- NO CHANGES WILL BE MADE")
        print("  * All ARM calls are GET/read-only")
        print("  * Safety Guardian enforces read-only at the HTTP layer")
        print("=" * 75)
