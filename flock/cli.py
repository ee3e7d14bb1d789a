"""Operator CLI for flock.

Usage::

    # Add any missing worksheet columns
    flock init-store

    # Create system roles, plus the roles, tags and rules in seed.yaml
    flock seed --file seed.yaml

    # Re-tag one member, or everyone
    flock apply-tags <member-id>
    flock recompute-tags --as-of 2024-06-01

    # Authorization checks
    flock can <user-id> members:delete
    flock permissions <user-id> --explain
"""

import argparse
import json
import sys
from datetime import date
from pathlib import Path
from typing import Any, List, Optional

from flock.common.config import load_seed_config
from flock.common.logger import setup_logger
from flock.core.config import get_settings
from flock.core.errors import FlockError
from flock.core.rbac import AuthorizationGate, PermissionResolver, RoleStore
from flock.core.tagging import TaggingService, TagStore
from flock.db.seed import seed_from_config
from flock.store import TableService, get_shared_table_service


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _as_of(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def cmd_init_store(args: argparse.Namespace, tables: TableService) -> int:
    _print_json(tables.ensure_schema())
    return 0


def cmd_seed(args: argparse.Namespace, tables: TableService) -> int:
    seed_path = args.file or get_settings().seed_file
    seed_config = None
    if Path(seed_path).exists():
        seed_config = load_seed_config(seed_path)
    elif args.file:
        print(f"Seed file not found: {seed_path}", file=sys.stderr)
        return 1

    result = seed_from_config(RoleStore(tables), TagStore(tables), seed_config)
    _print_json(result.to_dict())
    return 0


def cmd_apply_tags(args: argparse.Namespace, tables: TableService) -> int:
    service = TaggingService(tables, workers=get_settings().tag_workers)
    _print_json(service.apply_to_member(args.member_id, _as_of(args.as_of)).to_dict())
    return 0


def cmd_recompute_tags(args: argparse.Namespace, tables: TableService) -> int:
    workers = args.workers or get_settings().tag_workers
    summary = TaggingService(tables, workers=workers).recompute_all(_as_of(args.as_of))
    _print_json(summary.to_dict())
    return 1 if summary.failed else 0


def cmd_can(args: argparse.Namespace, tables: TableService) -> int:
    gate = AuthorizationGate(PermissionResolver(RoleStore(tables)))
    allowed = gate.can(args.user_id, args.permission)
    print("allowed" if allowed else "denied")
    return 0 if allowed else 1


def cmd_permissions(args: argparse.Namespace, tables: TableService) -> int:
    resolver = PermissionResolver(RoleStore(tables))
    grant = resolver.explain(args.user_id)
    if args.explain:
        _print_json(grant.to_dict())
    else:
        for perm in sorted(str(p) for p in grant.permissions):
            print(perm)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flock",
        description="Access control and member tagging tools for flock.",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # --- init-store ---
    init_parser = sub.add_parser("init-store", help="Create or extend worksheet header rows.")
    init_parser.set_defaults(func=cmd_init_store)

    # --- seed ---
    seed_parser = sub.add_parser("seed", help="Create system roles and seed-file records.")
    seed_parser.add_argument(
        "--file", default=None,
        help="Seed file (default: FLOCK_SEED_FILE, skipped if missing).",
    )
    seed_parser.set_defaults(func=cmd_seed)

    # --- apply-tags ---
    apply_parser = sub.add_parser("apply-tags", help="Re-tag one member.")
    apply_parser.add_argument("member_id")
    apply_parser.add_argument("--as-of", default=None, help="Evaluation date (YYYY-MM-DD).")
    apply_parser.set_defaults(func=cmd_apply_tags)

    # --- recompute-tags ---
    recompute_parser = sub.add_parser("recompute-tags", help="Re-tag every member.")
    recompute_parser.add_argument("--as-of", default=None, help="Evaluation date (YYYY-MM-DD).")
    recompute_parser.add_argument("--workers", type=int, default=None, help="Thread pool size.")
    recompute_parser.set_defaults(func=cmd_recompute_tags)

    # --- can ---
    can_parser = sub.add_parser("can", help="Check one permission for a user.")
    can_parser.add_argument("user_id")
    can_parser.add_argument("permission", help="resource:action, e.g. members:read")
    can_parser.set_defaults(func=cmd_can)

    # --- permissions ---
    perms_parser = sub.add_parser("permissions", help="List a user's effective permissions.")
    perms_parser.add_argument("user_id")
    perms_parser.add_argument(
        "--explain", action="store_true",
        help="Show which role, assignment or override grants each permission.",
    )
    perms_parser.set_defaults(func=cmd_permissions)

    return parser


def main(argv: Optional[List[str]] = None, tables: Optional[TableService] = None) -> int:
    """CLI entry point.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])
        tables: Record store to use (defaults to the configured backend)

    Returns:
        Exit code (0 = success or allowed, 1 = failure or denied, 2 = bad input)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logger(
        "flock",
        log_dir=settings.log_dir,
        level="DEBUG" if args.verbose else settings.log_level,
        file_logging=settings.log_to_file,
    )

    try:
        return args.func(args, tables or get_shared_table_service())
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except FlockError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
