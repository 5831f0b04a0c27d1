"""
Scope Audit Engine — Main Orchestrator

Usage:
    python -m scope_audit_engine --root contoso-root              # default profile
    python -m scope_audit_engine --profile contoso-prod           # profile roots
    python -m scope_audit_engine --config config.json             # JSON config file
    python -m scope_audit_engine --root mg1 --root mg2 --include-subscriptions
    python -m scope_audit_engine --root mg1 --policy-only --timeout 600

Profile management:
    python -m scope_audit_engine profile add <name> --tenant-id ... --client-id ... --root <mg>
    python -m scope_audit_engine profile list
    python -m scope_audit_engine profile remove <name>
    python -m scope_audit_engine profile set-default <name>

Exit codes: 0 complete report, 2 incomplete report, 1 configuration or
authentication failure.

This tool is STRICTLY READ-ONLY. It will NEVER modify the tenant.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from . import __version__
from .arm.client import ArmClient
from .auth.authenticator import AuthenticationError, Authenticator
from .config import (
    ARM_SCOPE,
    GRAPH_BASE_URL,
    GRAPH_SCOPE,
    CertificateAuth,
    ConfigurationError,
    DelegatedAuth,
    EngineConfig,
)
from .directory.arm import ArmScopeDirectory, to_scope_id
from .engine import AuditEngine
from .models import Report
from .profiles import ProfileStore, TenantProfile, resolve_profile
from .reporting import export_csv, export_json
from .safety.guardian import SafetyGuardian

EXIT_COMPLETE = 0
EXIT_FAILURE = 1
EXIT_INCOMPLETE = 2

logger = logging.getLogger("scope_audit_engine")


# ---------------------------------------------------------------------------
# Profile management sub-commands
# ---------------------------------------------------------------------------

def _cmd_profile(args: argparse.Namespace) -> int:
    """Handle `profile add|list|remove|set-default` sub-commands."""
    action = args.profile_action

    if action == "list":
        return _profile_list()
    elif action == "add":
        return _profile_add(args)
    elif action == "remove":
        return _profile_remove(args)
    elif action == "set-default":
        return _profile_set_default(args)
    return 0


def _profile_list() -> int:
    store = ProfileStore.load()
    profiles = store.list_profiles()
    if not profiles:
        print("No profiles configured. Add one with:\n")
        print("  python -m scope_audit_engine profile add <name> \\")
        print("    --tenant-id <GUID> --client-id <GUID> --root <management-group>")
        return 0

    print(f"\n  {'Name':<20s} {'Tenant ID':<38s} {'Client ID':<38s} {'Roots':<30s} {'Default'}")
    print(f"  {'─'*20} {'─'*38} {'─'*38} {'─'*30} {'─'*7}")
    for p in profiles:
        default_marker = "  ✓" if p.name == store.default_profile else ""
        display = p.tenant_display_name or ""
        name_col = f"{p.name}" + (f" ({display})" if display else "")
        roots = ", ".join(p.roots) or "-"
        print(f"  {name_col:<20s} {p.tenant_id:<38s} {p.client_id:<38s} {roots:<30s}{default_marker}")
    print()
    return 0


def _profile_add(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    name = args.profile_name
    if store.get(name):
        print(f"  Profile '{name}' already exists. It will be overwritten.")

    profile = TenantProfile(
        name=name,
        tenant_id=args.tenant_id,
        client_id=args.client_id,
        cert_path=args.cert_path or "./base64.txt",
        tenant_display_name=args.display_name or "",
        roots=list(args.root or []),
    )
    set_as_default = args.set_default or not store.profiles
    try:
        store.add(profile, set_default=set_as_default)
    except ConfigurationError as e:
        print(f"  ❌ {e}")
        return EXIT_FAILURE
    print(f"  ✅ Profile '{name}' saved.")
    if set_as_default:
        print("  ✅ Set as default profile.")
    return 0


def _profile_remove(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.remove(args.profile_name):
        print(f"  ✅ Profile '{args.profile_name}' removed.")
        return 0
    print(f"  ❌ Profile '{args.profile_name}' not found.")
    return EXIT_FAILURE


def _profile_set_default(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.set_default(args.profile_name):
        print(f"  ✅ Default profile set to '{args.profile_name}'.")
        return 0
    print(f"  ❌ Profile '{args.profile_name}' not found.")
    return EXIT_FAILURE


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="scope_audit_engine",
        description="Azure scope and assignment audit (READ-ONLY)",
    )

    # --- Sub-commands: profile management ---
    subparsers = parser.add_subparsers(dest="command", help="Management commands")

    prof_parser = subparsers.add_parser("profile", help="Manage tenant profiles")
    prof_sub = prof_parser.add_subparsers(dest="profile_action", help="Profile actions")

    # profile add
    add_p = prof_sub.add_parser("add", help="Add or update a tenant profile")
    add_p.add_argument("profile_name", help="Short name for the profile (e.g. 'contoso-prod')")
    add_p.add_argument("--tenant-id", required=True, help="Entra tenant ID (GUID)")
    add_p.add_argument("--client-id", required=True, help="App registration client ID (GUID)")
    add_p.add_argument("--cert-path", default="./base64.txt", help="Path to base64-encoded PFX (default: ./base64.txt)")
    add_p.add_argument("--root", action="append", help="Default root scope (repeatable)")
    add_p.add_argument("--display-name", help="Friendly tenant display name for reports")
    add_p.add_argument("--set-default", action="store_true", help="Set as default profile")

    # profile list
    prof_sub.add_parser("list", help="List all configured profiles")

    # profile remove
    rm_p = prof_sub.add_parser("remove", help="Remove a profile")
    rm_p.add_argument("profile_name", help="Name of the profile to remove")

    # profile set-default
    sd_p = prof_sub.add_parser("set-default", help="Set the default profile")
    sd_p.add_argument("profile_name", help="Name of the profile to set as default")

    # --- Audit scope ---
    parser.add_argument(
        "--root", "-r",
        action="append",
        default=None,
        help="Root scope: management group name or full ARM scope path (repeatable)",
    )
    parser.add_argument("--include-subscriptions", action="store_true",
                        help="Expand subscriptions into resource groups")
    parser.add_argument("--include-resource-groups", action="store_true",
                        help="Expand resource groups into resources (needs --include-subscriptions)")
    parser.add_argument("--include-eligible", action="store_true",
                        help="Collect PIM eligible grants")
    parser.add_argument("--include-policy", action="store_true",
                        help="Collect policy assignments")
    parser.add_argument("--policy-only", action="store_true",
                        help="Collect policy assignments only (no RBAC)")

    # --- Execution ---
    parser.add_argument("--max-workers", type=int, default=None,
                        help="Scopes collected concurrently")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Whole-run deadline in seconds; partial report on expiry")
    parser.add_argument("--resolve-principals", action="store_true",
                        help="Resolve principal display names through Microsoft Graph")

    # --- Tenant / auth ---
    parser.add_argument(
        "--profile", "-p",
        type=str,
        default=None,
        help="Tenant profile name to use (run 'profile list' to see available)",
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        help="Path to JSON configuration file",
    )
    parser.add_argument(
        "--delegated",
        action="store_true",
        help="Use delegated (device-code) authentication instead of certificate",
    )
    parser.add_argument(
        "--cert-path",
        type=Path,
        help="Path to base64-encoded certificate file (overrides profile)",
    )
    parser.add_argument(
        "--tenant-id",
        type=str,
        default=None,
        help="Tenant ID (overrides profile; use with --client-id for ad-hoc audits)",
    )
    parser.add_argument(
        "--client-id",
        type=str,
        default=None,
        help="Client ID (overrides profile; use with --tenant-id for ad-hoc audits)",
    )

    # --- Output ---
    parser.add_argument(
        "--output-dir", "-o",
        type=Path,
        default=None,
        help="Output directory for reports (default: ./scope_audit_<timestamp>)",
    )
    parser.add_argument(
        "--formats",
        nargs="+",
        choices=["json", "csv"],
        default=None,
        help="Output formats to generate",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def _select_profile(args: argparse.Namespace) -> Optional[TenantProfile]:
    if args.profile:
        profile = resolve_profile(args.profile)
        if not profile:
            raise ConfigurationError(
                f"Profile '{args.profile}' not found. Use 'profile list' to see available profiles."
            )
        return profile
    if not args.config and not args.tenant_id:
        return resolve_profile()
    return None


def build_config(
    args: argparse.Namespace,
    profile: Optional[TenantProfile] = None,
) -> EngineConfig:
    """
    Build engine configuration from profile, CLI args, or config file.
    CLI flags override profile values, which override the config file.
    """
    if args.config:
        if not args.config.exists():
            raise ConfigurationError(f"Config file not found: {args.config}")
        config = EngineConfig.from_file(str(args.config))
    else:
        config = EngineConfig()

    if args.delegated:
        config.auth.mode = "delegated"

    # --- Resolve tenant identity from profile or CLI flags ---
    if profile:
        tenant_id = args.tenant_id or profile.tenant_id
        client_id = args.client_id or profile.client_id
        cert_path = str(args.cert_path) if args.cert_path else profile.resolve_cert_path()
    elif args.tenant_id and args.client_id:
        tenant_id = args.tenant_id
        client_id = args.client_id
        cert_path = str(args.cert_path) if args.cert_path else "./base64.txt"
    elif config.auth.certificate:
        tenant_id = config.auth.certificate.tenant_id
        client_id = config.auth.certificate.client_id
        cert_path = str(args.cert_path) if args.cert_path else config.auth.certificate.certificate_path
    elif config.auth.delegated:
        tenant_id = config.auth.delegated.tenant_id
        client_id = config.auth.delegated.client_id
        cert_path = ""
    else:
        raise ConfigurationError(
            "No tenant credentials found. Use --profile <name>, "
            "--tenant-id X --client-id Y, or --config config.json"
        )

    if config.auth.mode == "certificate":
        password = config.auth.certificate.certificate_password if config.auth.certificate else ""
        config.auth.certificate = CertificateAuth(
            tenant_id=tenant_id,
            client_id=client_id,
            certificate_path=cert_path,
            certificate_password=password,
        )
    else:
        config.auth.delegated = DelegatedAuth(tenant_id=tenant_id, client_id=client_id)

    # --- Roots: CLI > config file > profile ---
    if args.root:
        config.roots = list(args.root)
    elif not config.roots and profile:
        config.roots = list(profile.roots)
    config.roots = [to_scope_id(r) if isinstance(r, str) and r.strip() else r for r in config.roots]

    # --- Audit options ---
    options = config.options
    options.include_subscriptions = options.include_subscriptions or args.include_subscriptions
    options.include_resource_groups = options.include_resource_groups or args.include_resource_groups
    options.include_eligible_grants = options.include_eligible_grants or args.include_eligible
    options.include_policy_domain = options.include_policy_domain or args.include_policy
    if args.policy_only:
        options.include_rbac = False
        options.include_policy_domain = True

    if args.max_workers is not None:
        config.collection.max_workers = args.max_workers
    if args.timeout is not None:
        config.collection.timeout_seconds = args.timeout
    if args.resolve_principals:
        config.collection.resolve_principals = True

    if args.output_dir:
        config.output.base_dir = str(args.output_dir)
    if args.formats:
        config.output.formats = list(args.formats)
    config.verbose = config.verbose or args.verbose

    return config


def configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def generate_reports(
    report: Report,
    output_dir: Path,
    run_id: str,
    roots: list[str],
    formats: list[str],
) -> list[Path]:
    """Generate all requested report formats."""
    created = []

    if "json" in formats:
        path = export_json(report, output_dir, run_id, roots)
        created.append(path)
        print(f"  📄 JSON:       {path}")

    if "csv" in formats:
        paths = export_csv(report, output_dir, run_id)
        created.extend(paths)
        for p in paths:
            print(f"  📊 CSV:        {p}")

    return created


def print_summary(report: Report):
    print(f"  Scopes:           {len(report.nodes)}")
    print(f"  Records:          {len(report.records)}")
    print(f"  Dropped records:  {report.dropped_records}")
    print(f"  Complete:         {'yes' if not report.incomplete else 'NO'}")
    for dimension in ("scopes_by_kind", "by_category", "by_lifecycle_state",
                      "by_identity_kind", "by_inheritance"):
        counts = report.summaries.get(dimension) or {}
        if counts:
            print(f"    {dimension:22s} " + ", ".join(f"{k}={v}" for k, v in counts.items()))
    for reason, count in report.skip_counts.items():
        print(f"  ⚠  Skipped ({reason}): {count}")


async def run_audit(config: EngineConfig, authenticator: Authenticator) -> Report:
    """Authenticate, then walk, collect and aggregate over ARM."""
    guardian = SafetyGuardian()

    print("\n🔐 Authenticating...")
    arm_token = await authenticator.acquire_token(ARM_SCOPE)
    graph_token = None
    if config.collection.resolve_principals:
        graph_token = await authenticator.acquire_token(GRAPH_SCOPE)
    print("✅ Authentication successful.")

    print("\n" + "=" * 70)
    print(" PHASE 1: HIERARCHY WALK & ASSIGNMENT COLLECTION")
    print("=" * 70 + "\n")

    async with ArmClient(arm_token, guardian) as arm:
        if graph_token:
            async with ArmClient(graph_token, guardian, base_url=GRAPH_BASE_URL) as graph:
                directory = ArmScopeDirectory(arm, graph)
                report = await AuditEngine(directory, config.options, config.collection).run(config.roots)
        else:
            directory = ArmScopeDirectory(arm)
            report = await AuditEngine(directory, config.options, config.collection).run(config.roots)
        stats = arm.get_stats()

    print(f"  ARM requests: {stats['total_requests']} ({stats['throttle_events']} throttled)")
    return report


async def main_async(argv: Optional[list[str]] = None) -> int:
    """Async entry point. Returns the process exit code."""
    args = parse_args(argv)

    # --- Handle profile management sub-commands ---
    if getattr(args, "command", None) == "profile":
        if not getattr(args, "profile_action", None):
            print("Usage: python -m scope_audit_engine profile {add|list|remove|set-default}")
            return 0
        return _cmd_profile(args)

    # --- Safety banner ---
    SafetyGuardian.print_banner()

    print("=" * 70)
    print(f" Scope Audit Engine v{__version__}")
    print(" Mode: READ-ONLY — No tenant modifications will be made")
    print("=" * 70)

    # --- Configuration ---
    try:
        profile = _select_profile(args)
        config = build_config(args, profile)
        configure_logging(config.verbose)
        config.options.validate()
        config.collection.validate()
    except ConfigurationError as e:
        print(f"\n❌ Configuration error: {e}")
        return EXIT_FAILURE

    run_id = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S") + "_" + uuid.uuid4().hex[:8]
    output_dir = config.output.scan_dir

    profile_label = f" (profile: {profile.name})" if profile else ""
    print(f"\n📋 Run ID:  {run_id}")
    print(f"📂 Output:  {output_dir.resolve()}")
    print(f"🌳 Roots:   {', '.join(config.roots) or '-'}{profile_label}")

    # --- Audit ---
    try:
        report = await run_audit(config, Authenticator(config.auth))
    except ConfigurationError as e:
        print(f"\n❌ Configuration error: {e}")
        return EXIT_FAILURE
    except AuthenticationError as e:
        print(f"\n❌ Authentication failed: {e}")
        return EXIT_FAILURE

    # --- Summary ---
    print("\n" + "=" * 70)
    print(" PHASE 2: SUMMARY")
    print("=" * 70 + "\n")
    print_summary(report)

    # --- Reporting ---
    print("\n" + "=" * 70)
    print(" PHASE 3: REPORT GENERATION")
    print("=" * 70 + "\n")
    created_files = generate_reports(
        report=report,
        output_dir=output_dir,
        run_id=run_id,
        roots=config.roots,
        formats=config.output.formats,
    )

    print("\n" + "=" * 70)
    print(" AUDIT COMPLETE" if not report.incomplete else " AUDIT INCOMPLETE")
    print("=" * 70)
    print(f"\n  Files: {len(created_files)} reports generated")
    print(f"  Path:  {output_dir.resolve()}")
    print()

    return EXIT_INCOMPLETE if report.incomplete else EXIT_COMPLETE


def main():
    """Synchronous entry point for `python -m scope_audit_engine` and `scope-audit`."""
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
