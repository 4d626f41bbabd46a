"""
Main entry point for panlink.
"""

import argparse
import asyncio
import json
import sys

from panlink.extractor.patterns import get_provider_table
from panlink.search.orchestrator import SearchOrchestrator
from panlink.search.registry import get_registered_sources, load_configured_sources
from panlink.utils.config import get_settings
from panlink.utils.errors import PanlinkError
from panlink.utils.logging import configure_logging, get_logger
from panlink.utils.schemas import ProviderType, SearchOptions


def initialize(console_log: bool = False) -> None:
    """Initialize the application."""
    settings = get_settings()
    configure_logging(
        log_level=settings.general.log_level,
        json_format=not console_log,
    )

    logger = get_logger(__name__)
    logger.info(
        "panlink initializing",
        version=settings.general.version,
        log_level=settings.general.log_level,
    )

    load_configured_sources()


async def run_search(keyword: str, options: SearchOptions) -> int:
    """Run one search and print the JSON response.

    Args:
        keyword: Search keyword.
        options: Query options.

    Returns:
        Process exit code.
    """
    logger = get_logger(__name__)

    async with SearchOrchestrator() as orchestrator:
        try:
            response = await orchestrator.search(keyword, options)
        except PanlinkError as e:
            logger.error("Search failed", error_code=e.code.value, error=e.message)
            print(json.dumps(e.to_dict(), ensure_ascii=False, indent=2))
            return 1

    print(response.model_dump_json(indent=2))
    return 0


def show_providers() -> int:
    """Print the provider table and registered sources."""
    table = get_provider_table()
    data = {
        "providers": [
            {
                "type": rule.type.value,
                "enabled": rule.enabled and table.is_allowed(rule.type),
                "requires_hint": rule.requires_hint,
            }
            for rule in table.rules
        ],
        "sources": get_registered_sources(),
    }
    print(json.dumps(data, ensure_ascii=False, indent=2))
    return 0


def _int_in_range(minimum: int, maximum: int | None = None):
    """argparse type for an integer within [minimum, maximum]."""

    def parse(value: str) -> int:
        try:
            number = int(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from None
        if number < minimum or (maximum is not None and number > maximum):
            bounds = f"{minimum}..{maximum}" if maximum is not None else f">= {minimum}"
            raise argparse.ArgumentTypeError(f"must be {bounds}, got {number}")
        return number

    return parse


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="panlink - cloud-storage share link search aggregator"
    )
    parser.add_argument(
        "command",
        choices=["search", "providers"],
        help="Command to run",
    )
    parser.add_argument("keyword", nargs="?", help="Search keyword (for 'search')")
    parser.add_argument(
        "--pages", type=_int_in_range(1, 20), default=None, help="Pages per source (1-20)"
    )
    parser.add_argument(
        "--source",
        action="append",
        dest="sources",
        help="Query only this source (repeatable)",
    )
    parser.add_argument(
        "--disable-provider",
        action="append",
        default=[],
        choices=[p.value for p in ProviderType],
        help="Drop links of this provider type (repeatable)",
    )
    parser.add_argument(
        "--limit", type=_int_in_range(1), default=None, help="Maximum results"
    )
    parser.add_argument(
        "--no-keyword-filter",
        action="store_true",
        help="Keep results that do not mention every keyword term",
    )
    parser.add_argument("--refresh", action="store_true", help="Ignore cached results")
    parser.add_argument(
        "--console-log",
        action="store_true",
        help="Human-readable logs instead of JSON",
    )

    args = parser.parse_args()
    initialize(console_log=args.console_log)

    if args.command == "providers":
        sys.exit(show_providers())

    if not args.keyword:
        parser.error("keyword is required for search")

    options = SearchOptions(
        pages=args.pages,
        sources=args.sources,
        disabled_providers=[ProviderType(p) for p in args.disable_provider],
        limit=args.limit,
        filter_by_keyword=False if args.no_keyword_filter else None,
        force_refresh=args.refresh,
    )
    sys.exit(asyncio.run(run_search(args.keyword, options)))


if __name__ == "__main__":
    main()
