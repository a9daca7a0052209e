"""CLI command for re-indexing a block range.

Usage:
    python -m phunks_indexer.cli reindex --chain l1 --from-block N [--to-block M] [--now]

Examples:
    # Queue one block for the running indexer
    python -m phunks_indexer.cli reindex --chain l1 --from-block 19000000

    # Queue a range on L2
    python -m phunks_indexer.cli reindex --chain l2 --from-block 100 --to-block 200

    # Process the range in this process (RPC access required)
    python -m phunks_indexer.cli reindex --chain l1 --from-block 19000000 --now
"""

from argparse import ArgumentParser, Namespace

import structlog

from phunks_indexer.indexer import build_indexer
from phunks_indexer.models.enums import Chain
from phunks_indexer.workers.block_queue import request_reindex

logger = structlog.get_logger()


def configure_parser(parser: ArgumentParser) -> None:
    parser.add_argument(
        "--chain",
        type=Chain,
        choices=list(Chain),
        metavar="{l1,l2}",
        default=Chain.L1,
        help="Chain of the blocks (default: l1)",
    )
    parser.add_argument("--from-block", type=int, required=True, help="First block to re-index")
    parser.add_argument(
        "--to-block",
        type=int,
        help="Last block to re-index, inclusive (default: --from-block)",
    )
    parser.add_argument(
        "--now",
        action="store_true",
        help="Process the blocks in this process instead of queueing them",
    )


async def queue_range(uow_factory, chain: Chain, from_block: int, to_block: int) -> int:
    """Re-enqueue blocks through the job table; a running indexer picks them up.

    Returns:
        Number of blocks queued
    """
    async with await uow_factory() as uow:
        for block_number in range(from_block, to_block + 1):
            await request_reindex(uow, chain, block_number)
    return to_block - from_block + 1


async def process_range(
    processor, queue, from_block: int, to_block: int, done: list[int]
) -> list[int]:
    """Process blocks in ascending order, stopping at the first failure.

    Block numbers processed successfully are appended to ``done``.
    """
    for block_number in range(from_block, to_block + 1):
        await processor.process_block(block_number, is_reindex=True)
        await queue.resolve_dead(processor.chain, block_number, "reindexed via cli")
        done.append(block_number)
    return done


async def run(args: Namespace, settings, uow_factory) -> int:
    """Execute the reindex command.

    Returns:
        Exit code: 0 (success), 1 (error), 2 (partial success)
    """
    to_block = args.to_block if args.to_block is not None else args.from_block
    if to_block < args.from_block:
        logger.error("reindex.invalid_range", from_block=args.from_block, to_block=to_block)
        return 1

    log = logger.bind(chain=args.chain.value, from_block=args.from_block, to_block=to_block)

    if not args.now:
        queued = await queue_range(uow_factory, args.chain, args.from_block, to_block)
        log.info("reindex.queued", count=queued)
        return 0

    indexer = build_indexer(settings, uow_factory)
    done: list[int] = []
    try:
        await process_range(
            indexer.processors[args.chain], indexer.queue, args.from_block, to_block, done
        )
    except Exception as e:
        log.error(
            "reindex.failed",
            processed=len(done),
            error=str(e),
            error_type=type(e).__name__,
        )
        return 2 if done else 1

    log.info("reindex.complete", processed=len(done))
    return 0
