"""
calmesh.cli - Command-Line Interface

Read-only inspection of configured accounts and their merged data.

Usage:
    python -m calmesh accounts --config accounts.json
    python -m calmesh events --config accounts.json --days 7
    python -m calmesh emails --config accounts.json --account work --unread
    python -m calmesh contacts --config accounts.json --query ada
    python -m calmesh digest --config accounts.json --topics "invoice, budget"

Bearer tokens for hosted accounts are read from a JSON object
(``{"work": "<token>"}``) given by ``--tokens`` or CALMESH_TOKENS_PATH.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from calmesh.accounts.registry import AccountRegistry
from calmesh.accounts.source import JsonFileConfigurationSource
from calmesh.errors import CalmeshError
from calmesh.integrations.auth import StaticTokenProvider
from calmesh.integrations.resolver import ProviderResolver
from calmesh.orchestration.fanout import FanoutResult
from calmesh.orchestration.service import CalendarMeshService
from calmesh.settings import get_settings

logger = logging.getLogger(__name__)


def load_tokens(path: Path | None) -> dict[str, str]:
    """Read an account id -> token mapping, or return {} when no path is set."""
    if path is None:
        return {}
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Token file {path} must contain a JSON object")
    return {str(k): str(v) for k, v in data.items()}


def build_service(args: argparse.Namespace) -> CalendarMeshService:
    """Wire registry, token provider and resolver from CLI arguments."""
    settings = get_settings()
    config_path = args.config or settings.config_path
    if config_path is None:
        raise ValueError("No accounts configuration given (use --config or CALMESH_CONFIG_PATH)")

    registry = AccountRegistry(JsonFileConfigurationSource(config_path))
    tokens = StaticTokenProvider(load_tokens(args.tokens or settings.tokens_path))
    resolver = ProviderResolver.default(
        tokens, account_lookup=registry.get_by_id, settings=settings
    )
    return CalendarMeshService(registry, resolver, settings=settings)


def _dump_fanout(result: FanoutResult[Any]) -> dict[str, Any]:
    return {
        "items": [item.model_dump(mode="json") for item in result.items],
        "warnings": [
            {"accountId": w.account_id, "error": w.error, "kind": str(w.kind)}
            for w in result.warnings
        ],
        "accountsQueried": result.accounts_queried,
    }


async def _accounts(service: CalendarMeshService, _args: argparse.Namespace) -> Any:
    """List configured accounts."""
    return [account.model_dump(mode="json", by_alias=True) for account in service.list_accounts()]


async def _events(service: CalendarMeshService, args: argparse.Namespace) -> Any:
    """Merged calendar events for the next --days days."""
    start = datetime.now(UTC)
    result = await service.get_calendar_events(
        args.account,
        start=start,
        end=start + timedelta(days=args.days),
        count=args.count,
    )
    return _dump_fanout(result)


async def _emails(service: CalendarMeshService, args: argparse.Namespace) -> Any:
    """Recent (or matching) emails across accounts."""
    if args.query:
        result = await service.search_emails(args.query, args.account, count=args.count)
    else:
        result = await service.get_emails(args.account, count=args.count, unread_only=args.unread)
    return _dump_fanout(result)


async def _contacts(service: CalendarMeshService, args: argparse.Namespace) -> Any:
    if args.query:
        result = await service.search_contacts(args.query, args.account, count=args.count)
    else:
        result = await service.get_contacts(args.account, count=args.count)
    return _dump_fanout(result)


async def _digest(service: CalendarMeshService, args: argparse.Namespace) -> Any:
    """Topic-clustered summary of recent mail across accounts."""
    summary = await service.get_contextual_email_summary(
        args.topics,
        count_per_account=args.count,
        unread_only=args.unread,
        include_body_preview=args.preview,
    )
    return dataclasses.asdict(summary)


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="calmesh",
        description="calmesh - Unified email, calendar and contacts across accounts",
    )
    parser.add_argument("--config", type=Path, help="Accounts JSON file")
    parser.add_argument("--tokens", type=Path, help="JSON file of account id -> bearer token")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: CALMESH_LOG_LEVEL or INFO)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    accounts_p = subparsers.add_parser("accounts", help="List configured accounts")
    accounts_p.set_defaults(func=_accounts)

    events_p = subparsers.add_parser("events", help="List upcoming events")
    events_p.add_argument("--account", help="Limit to one account id")
    events_p.add_argument("--days", type=int, default=7, help="Window length (default: 7)")
    events_p.add_argument("--count", type=int, default=50, help="Max events per account")
    events_p.set_defaults(func=_events)

    emails_p = subparsers.add_parser("emails", help="List or search emails")
    emails_p.add_argument("--account", help="Limit to one account id")
    emails_p.add_argument("--count", type=int, default=20, help="Max emails per account")
    emails_p.add_argument("--unread", action="store_true", help="Only unread emails")
    emails_p.add_argument("--query", help="Search query instead of listing the inbox")
    emails_p.set_defaults(func=_emails)

    contacts_p = subparsers.add_parser("contacts", help="List or search contacts")
    contacts_p.add_argument("--account", help="Limit to one account id")
    contacts_p.add_argument("--count", type=int, default=50, help="Max contacts per account")
    contacts_p.add_argument("--query", help="Search by name or email")
    contacts_p.set_defaults(func=_contacts)

    digest_p = subparsers.add_parser("digest", help="Summarize recent emails by topic")
    digest_p.add_argument("--topics", help="Comma-separated keywords to search for")
    digest_p.add_argument("--count", type=int, default=50, help="Emails per account")
    digest_p.add_argument("--unread", action="store_true", help="Only unread emails")
    digest_p.add_argument("--preview", action="store_true", help="Include body previews")
    digest_p.set_defaults(func=_digest)

    return parser


async def run(args: argparse.Namespace) -> Any:
    """Execute the selected command and return its JSON-serialisable output."""
    service = build_service(args)
    try:
        return await args.func(service, args)
    finally:
        await service.aclose()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, args.log_level or get_settings().log_level, logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    try:
        output = asyncio.run(run(args))
    except (CalmeshError, ValueError, OSError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(json.dumps({"error": str(e)}, indent=2))
        sys.exit(2)
    except KeyboardInterrupt:
        sys.exit(0)

    print(json.dumps(output, indent=2, default=str))


if __name__ == "__main__":
    main()
