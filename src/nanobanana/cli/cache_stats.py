"""CLI command for printing generation cache statistics.

Usage:
    python -m nanobanana.cli.cache_stats [OPTIONS]

Examples:
    # Statistics for every provider
    python -m nanobanana.cli.cache_stats

    # One provider only, as JSON
    python -m nanobanana.cli.cache_stats --provider nanobanana --json

    # Verbose logging
    python -m nanobanana.cli.cache_stats -v
"""

import asyncio
import json
import sys
from argparse import ArgumentParser, Namespace
from dataclasses import asdict

import structlog
from sqlalchemy.exc import SQLAlchemyError

from nanobanana.core.config import Settings, configure_logging
from nanobanana.core.database import setup_db_session
from nanobanana.repositories.image_generation import ProviderStats
from nanobanana.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Print generation cache statistics per provider",
    )

    parser.add_argument(
        "--provider",
        help="Only report this provider tag (e.g. nanobanana)",
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON instead of a table",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


def format_table(rows: list[ProviderStats]) -> str:
    """Render statistics as a fixed-width table."""
    header = f"{'provider':<20} {'total':>8} {'success':>8} {'failed':>8} {'unique':>8}"
    lines = [header, "-" * len(header)]
    for row in rows:
        lines.append(
            f"{row.provider:<20} {row.total_generations:>8} {row.successful_generations:>8} "
            f"{row.failed_generations:>8} {row.unique_fingerprints:>8}"
        )
    if not rows:
        lines.append("(no generations recorded)")
    return "\n".join(lines)


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings(REQUIRE_GEMINI_KEY=False)  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, pool_size=1)
    uow_factory = create_uow_factory(session_factory)

    try:
        async with await uow_factory() as uow:
            result = await uow.generations.stats(args.provider)
    except SQLAlchemyError as e:
        logger.error("cli.database_error", error=str(e), error_type=type(e).__name__)
        print(f"\nError: could not read cache statistics: {e}", file=sys.stderr)
        return 1
    finally:
        await session_factory.kw["bind"].dispose()

    if result is None:
        rows = []
    elif isinstance(result, list):
        rows = result
    else:
        rows = [result]

    if args.json:
        print(json.dumps([asdict(row) for row in rows], indent=2))
    else:
        print(format_table(rows))

    logger.debug("cli.success", providers=len(rows))
    return 0


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
