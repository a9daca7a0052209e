"""CLI entry point for phunks_indexer.cli module.

Enables execution via: python -m phunks_indexer.cli <command> [OPTIONS]

Commands:
    reindex               Re-index a block range (see cli/reindex.py)
    import-ethscriptions  Seed provenance records (see cli/import_ethscriptions.py)
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from phunks_indexer.cli import import_ethscriptions, reindex
from phunks_indexer.core import timezone  # noqa: F401
from phunks_indexer.core.config import Settings, configure_logging
from phunks_indexer.core.database import setup_db_session
from phunks_indexer.uow import create_uow_factory

logger = structlog.get_logger()

COMMANDS = {
    "reindex": reindex,
    "import-ethscriptions": import_ethscriptions,
}


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(prog="phunks_indexer.cli", description="Phunks indexer operations")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    for name, module in COMMANDS.items():
        module.configure_parser(subparsers.add_parser(name, help=module.__doc__.splitlines()[0]))

    return parser.parse_args(argv)


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code reported by the command
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    session_factory = setup_db_session(
        settings.database_url, settings.db_pool_size, schema=settings.data_partition
    )
    uow_factory = create_uow_factory(session_factory)

    try:
        return await COMMANDS[args.command].run(args, settings, uow_factory)
    except KeyboardInterrupt:
        logger.warning("cli.interrupted", command=args.command)
        return 2
    except Exception as e:
        logger.error("cli.fatal_error", command=args.command, error=str(e), exc_info=True)
        return 1


def main() -> int:
    """Synchronous wrapper for async main."""
    return asyncio.run(async_main())


if __name__ == "__main__":
    sys.exit(main())
