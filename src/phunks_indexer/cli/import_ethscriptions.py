"""CLI command for seeding ethscription provenance records.

Usage:
    python -m phunks_indexer.cli import-ethscriptions PATH [--dry-run]

The file is a JSON list of items (or ``{"collection_items": [...]}``) with
``hash_id``/``hashId``, ``sha`` and optional ``token_id``, ``slug``,
``creator`` and ``owner``.
"""

import json
from argparse import ArgumentParser, Namespace
from pathlib import Path

import structlog
from pydantic import ValidationError

from phunks_indexer.services.ethscription_import import import_records, parse_records

logger = structlog.get_logger()


def configure_parser(parser: ArgumentParser) -> None:
    parser.add_argument("path", type=Path, help="JSON file with collection items")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate the file without database writes",
    )


async def run(args: Namespace, settings, uow_factory) -> int:
    """Execute the import command.

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    try:
        records = parse_records(json.loads(args.path.read_text()))
    except (OSError, ValueError, ValidationError) as e:
        logger.error("import_ethscriptions.invalid_file", path=str(args.path), error=str(e))
        return 1

    logger.info("import_ethscriptions.parsed", path=str(args.path), count=len(records))
    if args.dry_run:
        logger.info("import_ethscriptions.dry_run_complete", message="No changes made")
        return 0

    async with await uow_factory() as uow:
        created, updated = await import_records(uow, records)

    logger.info("import_ethscriptions.complete", created=created, updated=updated)
    return 0
