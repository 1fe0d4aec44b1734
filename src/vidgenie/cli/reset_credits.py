"""CLI command for the monthly credit reset.

Usage:
    python -m vidgenie.cli reset-credits [OPTIONS]

Examples:
    # Reset every account to its plan allowance
    python -m vidgenie.cli reset-credits

    # Dry run (no database writes)
    python -m vidgenie.cli reset-credits --dry-run

    # Verbose logging
    python -m vidgenie.cli reset-credits -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from vidgenie.core import timezone  # noqa: F401
from vidgenie.core.config import Settings, configure_logging
from vidgenie.core.database import setup_db_session
from vidgenie.services.credits.ledger import CreditsLedger
from vidgenie.services.exceptions import ServiceError
from vidgenie.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        prog="python -m vidgenie.cli reset-credits",
        description="Reset every credit account to its plan's monthly allowance",
        epilog="Each reset is recorded as a monthly_reset ledger entry carrying the delta",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would change without database writes",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    logger.info("cli.started", command="reset-credits", dry_run=args.dry_run)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)
    ledger = CreditsLedger(settings)

    try:
        async with await uow_factory() as uow:
            result = await ledger.reset_monthly_credits(uow, dry_run=args.dry_run)

        print("\n" + "=" * 60)
        print("Monthly Credit Reset Summary")
        print("=" * 60)
        print(f"Accounts reset: {result.processed}")
        print(f"Accounts skipped (already at allowance): {result.skipped}")
        print(f"Net credits granted: {result.total_credits_granted}")
        if args.dry_run:
            print("\n[DRY RUN] No changes were persisted to database")
        print("=" * 60 + "\n")
        return 0

    except ServiceError as e:
        logger.error("cli.reset_error", error=str(e), error_type=type(e).__name__)
        print(f"\nError: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nReset interrupted by user", file=sys.stderr)
        return 130  # Standard exit code for SIGINT

    except Exception as e:
        logger.error("cli.unexpected_error", error=str(e), error_type=type(e).__name__)
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1


def main(argv: list[str] | None = None) -> int:
    """Synchronous entry point for CLI."""
    return asyncio.run(async_main(argv))


if __name__ == "__main__":
    sys.exit(main())
