#!/usr/bin/env python3
"""Command-line interface for merchant sync runs.

Usage:
    python -m merchant_sync.sync.cli transactions --merchant 1000123 --count 250
    python -m merchant_sync.sync.cli invoices --merchant 1000123
    python -m merchant_sync.sync.cli logs --limit 10
    python -m merchant_sync.sync.cli set-credentials --merchant 1000123 --key ck --secret cs --webhook-secret wh
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from ..database import create_async_engine, create_tables, get_async_session_factory, get_database_url
from .engine import ClientFactory
from .models import SyncResult
from .service import SyncService

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_FATAL = 2


def exit_code_for(result: SyncResult) -> int:
    """0 when the run completed cleanly, 1 when some records failed, 2 when nothing was done."""
    if result.success:
        return EXIT_OK
    if result.records_processed > 0:
        return EXIT_PARTIAL
    return EXIT_FATAL


async def run_command_async(
    parsed_args: argparse.Namespace,
    client_factory: Optional[ClientFactory] = None,
) -> int:
    """Run one CLI command against the configured database.

    Args:
        parsed_args: Parsed command-line arguments.
        client_factory: Optional API client factory (for testing).

    Returns:
        Exit code.
    """
    engine = create_async_engine(database_url=get_database_url())
    await create_tables(engine)
    service = SyncService(get_async_session_factory(engine), client_factory=client_factory)

    try:
        if parsed_args.command == "transactions":
            result = await service.engine.sync_transactions(
                parsed_args.merchant,
                count=parsed_args.count,
                date_filter=parsed_args.date_filter,
            )
            print(json.dumps(result.to_summary_dict(), indent=2))
            return exit_code_for(result)

        if parsed_args.command == "invoices":
            result = await service.engine.sync_invoices(parsed_args.merchant, page_size=parsed_args.page_size)
            print(json.dumps(result.to_summary_dict(), indent=2))
            return exit_code_for(result)

        if parsed_args.command == "logs":
            logs = await service.audit.recent(limit=parsed_args.limit, merchant_id=parsed_args.merchant)
            for log in logs:
                print(json.dumps(log.to_dict()))
            return EXIT_OK

        if parsed_args.command == "set-credentials":
            await service.save_merchant_config(
                merchant_id=parsed_args.merchant,
                consumer_key=parsed_args.key,
                consumer_secret=parsed_args.secret,
                webhook_secret=parsed_args.webhook_secret,
                environment=parsed_args.environment,
                is_active=not parsed_args.inactive,
            )
            logger.info(f"Credentials stored for merchant {parsed_args.merchant}")
            return EXIT_OK

        return EXIT_PARTIAL
    finally:
        await engine.dispose()


def count_arg(value: str) -> int:
    count = int(value)
    if not 1 <= count <= 1000:
        raise argparse.ArgumentTypeError("count must be between 1 and 1000")
    return count


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="merchant-sync",
        description="Synchronize MX Merchant transactions and invoices into the local database.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    tx_parser = subparsers.add_parser("transactions", help="Sync the latest transactions")
    tx_parser.add_argument("--merchant", "-m", required=True, help="Merchant ID")
    tx_parser.add_argument("--count", "-n", type=count_arg, default=100, help="Transactions to fetch (1-1000, default: 100)")
    tx_parser.add_argument("--date-filter", help="Value for the API's created filter")

    inv_parser = subparsers.add_parser("invoices", help="Pull every invoice")
    inv_parser.add_argument("--merchant", "-m", required=True, help="Merchant ID")
    inv_parser.add_argument("--page-size", type=int, default=100, choices=range(1, 101), metavar="1-100",
                            help="Invoices per request (default: 100)")

    logs_parser = subparsers.add_parser("logs", help="Show recent sync runs")
    logs_parser.add_argument("--limit", "-l", type=int, default=20, help="Number of runs (default: 20)")
    logs_parser.add_argument("--merchant", "-m", help="Only runs for this merchant")

    cred_parser = subparsers.add_parser("set-credentials", help="Store API credentials for a merchant")
    cred_parser.add_argument("--merchant", "-m", required=True, help="Merchant ID")
    cred_parser.add_argument("--key", required=True, help="Consumer key")
    cred_parser.add_argument("--secret", required=True, help="Consumer secret")
    cred_parser.add_argument("--webhook-secret", help="Shared secret for webhook signatures")
    cred_parser.add_argument("--environment", choices=["production", "sandbox"], default="production")
    cred_parser.add_argument("--inactive", action="store_true", help="Store the merchant as inactive")

    return parser


def main(args: Optional[list] = None, client_factory: Optional[ClientFactory] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).
        client_factory: Optional API client factory (for testing).

    Returns:
        Exit code.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return EXIT_PARTIAL

    return asyncio.run(run_command_async(parsed_args, client_factory=client_factory))


if __name__ == "__main__":
    sys.exit(main())
