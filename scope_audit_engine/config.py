"""
Configuration module for the Scope Audit Engine.
Defines all tunable parameters, API endpoints, and operational settings.
"""

from __future__ import annotations

import os
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from datetime import datetime, timezone

from .models import Category


class ConfigurationError(Exception):
    """Raised for invalid roots or conflicting options, before any remote call."""
    pass


# ─── Tenant Authentication ───────────────────────────────────────────────────

@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str
    client_id: str
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = "" # Will be prompted if empty
    thumbprint: str = ""

@dataclass
class DelegatedAuth:
    """Delegated (interactive) authentication configuration."""
    tenant_id: str
    client_id: str

@dataclass
class AuthConfig:
    """Authentication configuration — supports both modes."""
    mode: str = "certificate"  # "certificate" or "delegated"
    certificate: Optional[CertificateAuth] = None
    delegated: Optional[DelegatedAuth] = None


# ─── Azure Resource Manager / Graph Settings ────────────────────────────────

ARM_BASE_URL = "https://management.azure.com"
ARM_SCOPE = "https://management.azure.com/.default"
GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

MANAGEMENT_GROUPS_API_VERSION = "2020-05-01"
RESOURCES_API_VERSION = "2021-04-01"
ROLE_ASSIGNMENTS_API_VERSION = "2022-04-01"
ROLE_ELIGIBILITY_API_VERSION = "2020-10-01"
POLICY_API_VERSION = "2022-06-01"

# Rate limiting / throttling
MAX_CONCURRENT_REQUESTS = 4       # Parallel requests to ARM
MAX_RETRIES = 5                   # Retry count for transient failures
INITIAL_BACKOFF_SECONDS = 2.0     # First retry delay
MAX_BACKOFF_SECONDS = 120.0       # Cap on exponential backoff
BACKOFF_MULTIPLIER = 2.0          # Exponential factor

# Pagination
MAX_PAGES_PER_ENDPOINT = 10000    # Safety cap on nextLink loops

# Graph getByIds accepts at most 1000 ids per call
PRINCIPAL_BATCH_SIZE = 1000


# ─── Audit Options ──────────────────────────────────────────────────────────

@dataclass
class AuditOptions:
    """What to walk and which assignment categories to collect."""
    include_subscriptions: bool = False    # Expand subscriptions into resource groups
    include_resource_groups: bool = False  # Expand resource groups into resources
    include_eligible_grants: bool = False  # PIM eligible (time-bound) grants
    include_policy_domain: bool = False    # Policy assignments
    include_rbac: bool = True              # Standing RBAC grants

    def validate(self):
        if self.include_resource_groups and not self.include_subscriptions:
            raise ConfigurationError(
                "include_resource_groups requires include_subscriptions"
            )
        if self.include_eligible_grants and not self.include_rbac:
            raise ConfigurationError(
                "include_eligible_grants cannot be combined with a policy-only audit"
            )
        if not self.categories():
            raise ConfigurationError("No assignment category selected")

    def categories(self) -> list:
        selected = []
        if self.include_rbac:
            selected.append(Category.STANDING_GRANT)
            if self.include_eligible_grants:
                selected.append(Category.ELIGIBLE_GRANT)
        if self.include_policy_domain:
            selected.append(Category.POLICY_ASSIGNMENT)
        return selected


# ─── Collection Settings ────────────────────────────────────────────────────

@dataclass
class CollectionConfig:
    """Controls for walk and collection behavior."""
    max_workers: int = MAX_CONCURRENT_REQUESTS  # Per-scope collection pool size
    walk_concurrency: int = MAX_CONCURRENT_REQUESTS
    retry_attempts: int = MAX_RETRIES
    initial_backoff_seconds: float = INITIAL_BACKOFF_SECONDS
    max_backoff_seconds: float = MAX_BACKOFF_SECONDS
    backoff_multiplier: float = BACKOFF_MULTIPLIER
    timeout_seconds: Optional[float] = None     # Whole-run deadline
    resolve_principals: bool = False            # Graph lookups for display names

    def validate(self):
        if self.max_workers < 1 or self.walk_concurrency < 1:
            raise ConfigurationError("Worker pool sizes must be at least 1")
        if self.retry_attempts < 0:
            raise ConfigurationError("retry_attempts cannot be negative")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ConfigurationError("timeout_seconds must be positive")


# ─── Output Configuration ───────────────────────────────────────────────────

@dataclass
class OutputConfig:
    """Output directory and format settings."""
    base_dir: str = ""
    timestamp: str = ""
    formats: list[str] = field(default_factory=lambda: ["json", "csv"])

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        if not self.base_dir:
            self.base_dir = os.path.join(
                os.getcwd(),
                f"scope_audit_{self.timestamp}"
            )

    @property
    def scan_dir(self) -> Path:
        return Path(self.base_dir)


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class EngineConfig:
    """Top-level configuration for the entire engine."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    options: AuditOptions = field(default_factory=AuditOptions)
    collection: CollectionConfig = field(default_factory=CollectionConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    roots: list[str] = field(default_factory=list)
    verbose: bool = False

    @classmethod
    def from_file(cls, path: str) -> "EngineConfig":
        """Load configuration from a JSON file."""
        with open(path, "r") as f:
            data = json.load(f)
        config = cls()
        if "auth" in data:
            auth_data = data["auth"]
            config.auth.mode = auth_data.get("mode", "certificate")
            if "certificate" in auth_data:
                c = auth_data["certificate"]
                config.auth.certificate = CertificateAuth(
                    tenant_id=c["tenant_id"],
                    client_id=c["client_id"],
                    certificate_path=c.get("certificate_path", "./base64.txt"),
                    certificate_password=c.get("certificate_password", ""),
                    thumbprint=c.get("thumbprint", ""),
                )
            if "delegated" in auth_data:
                d = auth_data["delegated"]
                config.auth.delegated = DelegatedAuth(
                    tenant_id=d["tenant_id"],
                    client_id=d["client_id"],
                )
        for section, target in (
            ("options", config.options),
            ("collection", config.collection),
            ("output", config.output),
        ):
            for k, v in data.get(section, {}).items():
                if not hasattr(target, k):
                    raise ConfigurationError(f"Unknown {section} setting: {k}")
                setattr(target, k, v)
        roots = data.get("roots", [])
        if isinstance(roots, str):
            roots = [roots]
        config.roots = list(roots)
        config.verbose = data.get("verbose", False)
        return config


def validate_roots(roots: list[str]) -> list[str]:
    """
    Check root scope ids and drop repeats while keeping order.
    Raises ConfigurationError for an empty list or a malformed id.
    """
    if not roots:
        raise ConfigurationError("At least one root scope is required")
    seen = set()
    cleaned = []
    for root in roots:
        if not isinstance(root, str) or not root.strip():
            raise ConfigurationError(f"Invalid root scope id: {root!r}")
        if root != root.strip() or any(ch.isspace() for ch in root):
            raise ConfigurationError(f"Root scope id contains whitespace: {root!r}")
        if root in seen:
            continue
        seen.add(root)
        cleaned.append(root)
    return cleaned


# ─── Required Azure Permissions (Least Privilege, Read-Only) ───────────────

REQUIRED_PERMISSIONS = {
    # Azure RBAC actions, all covered by the built-in Reader role at each root
    "Microsoft.Management/managementGroups/read": "Read management group hierarchy and children",
    "Microsoft.Resources/subscriptions/resourceGroups/read": "Enumerate resource groups",
    "Microsoft.Resources/subscriptions/resources/read": "Enumerate resources in a resource group",
    "Microsoft.Authorization/roleAssignments/read": "Read standing role assignments",
    "Microsoft.Authorization/roleDefinitions/read": "Resolve role definition display names",
    "Microsoft.Authorization/roleEligibilityScheduleInstances/read": "Read PIM eligible assignments",
    "Microsoft.Authorization/policyAssignments/read": "Read policy assignments",

    # Microsoft Graph, only for principal display-name resolution
    "Directory.Read.All": "Resolve principal ids to display names (optional)",
}
