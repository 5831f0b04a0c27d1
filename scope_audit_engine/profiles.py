"""
Tenant profiles — saved credentials plus the root scopes audited by default.

Stored in ~/.scope_audit_engine/profiles.json:

    {
      "default_profile": "contoso-prod",
      "profiles": {
        "contoso-prod": {"tenant_id": "...", "client_id": "...",
                         "cert_path": "./base64.txt", "roots": ["contoso-root"]}
      }
    }

Profile names are matched case-insensitively everywhere.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .config import validate_roots

logger = logging.getLogger("scope_audit_engine.profiles")

_CONFIG_DIR = Path.home() / ".scope_audit_engine"
_PROFILES_FILE = _CONFIG_DIR / "profiles.json"


@dataclass
class TenantProfile:
    """One tenant the auditor can sign in to, and where to start walking it."""
    name: str
    tenant_id: str
    client_id: str
    cert_path: str = "./base64.txt"    # base64-encoded PFX
    tenant_display_name: str = ""
    roots: list[str] = field(default_factory=list)

    def resolve_cert_path(self) -> str:
        """Absolute cert path, with ~ and relative paths resolved."""
        p = Path(self.cert_path).expanduser()
        if not p.is_absolute():
            p = Path.cwd() / p
        return str(p)

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "client_id": self.client_id,
            "cert_path": self.cert_path,
            "tenant_display_name": self.tenant_display_name,
            "roots": list(self.roots),
        }

    @classmethod
    def from_dict(cls, name: str, data: dict) -> "TenantProfile":
        return cls(
            name=name,
            tenant_id=data["tenant_id"],
            client_id=data["client_id"],
            cert_path=data.get("cert_path", "./base64.txt"),
            tenant_display_name=data.get("tenant_display_name", ""),
            roots=list(data.get("roots", [])),
        )


@dataclass
class ProfileStore:
    """The profiles file, loaded into memory. Every mutation is written back."""
    profiles: dict[str, TenantProfile] = field(default_factory=dict)
    default_profile: str = ""
    path: Path = _PROFILES_FILE

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "ProfileStore":
        """Read the store; a missing or unreadable file gives an empty one."""
        path = path or _PROFILES_FILE
        store = cls(path=path)
        if not path.exists():
            return store
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            for name, entry in data.get("profiles", {}).items():
                store.profiles[name] = TenantProfile.from_dict(name, entry)
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable profiles file {path}: {e}")
            return cls(path=path)
        store.default_profile = store._key(data.get("default_profile", "")) or ""
        return store

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "default_profile": self.default_profile,
            "profiles": {name: p.to_dict() for name, p in self.profiles.items()},
        }
        self.path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")

    def _key(self, name: str) -> Optional[str]:
        """Stored spelling of name, or None."""
        wanted = name.lower()
        return next((k for k in self.profiles if k.lower() == wanted), None)

    def add(self, profile: TenantProfile, set_default: bool = False) -> None:
        """
        Add or replace a profile. Its roots are checked the same way run
        roots are, so a bad entry fails here rather than at audit time.
        """
        if profile.roots:
            profile.roots = validate_roots(profile.roots)
        existing = self._key(profile.name)
        if existing is not None and existing != profile.name:
            del self.profiles[existing]
            if self.default_profile == existing:
                self.default_profile = profile.name
        self.profiles[profile.name] = profile
        if set_default or not self.default_profile:
            self.default_profile = profile.name
        self.save()

    def remove(self, name: str) -> bool:
        key = self._key(name)
        if key is None:
            return False
        del self.profiles[key]
        if self.default_profile == key:
            self.default_profile = next(iter(self.profiles), "")
        self.save()
        return True

    def get(self, name: str) -> Optional[TenantProfile]:
        key = self._key(name)
        return self.profiles[key] if key is not None else None

    def get_default(self) -> Optional[TenantProfile]:
        if self.default_profile in self.profiles:
            return self.profiles[self.default_profile]
        return next(iter(self.profiles.values()), None)

    def set_default(self, name: str) -> bool:
        key = self._key(name)
        if key is None:
            return False
        self.default_profile = key
        self.save()
        return True

    def list_profiles(self) -> list[TenantProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.name.lower())


def resolve_profile(
    profile_name: Optional[str] = None,
    path: Optional[Path] = None,
) -> Optional[TenantProfile]:
    """The named profile, or the default one when no name is given."""
    store = ProfileStore.load(path)
    if profile_name:
        return store.get(profile_name)
    return store.get_default()
