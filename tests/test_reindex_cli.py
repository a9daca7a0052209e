"""Reindex CLI tests (queue mode and in-process range processing)."""

from argparse import ArgumentParser

import pytest

from phunks_indexer.cli import reindex
from phunks_indexer.models.block_job import BlockJob, BlockJobStatus
from phunks_indexer.models.enums import Chain
from phunks_indexer.services.exceptions import TransientError
from phunks_indexer.workers.block_queue import BlockProcessingQueue


def parse(*argv: str):
    parser = ArgumentParser()
    reindex.configure_parser(parser)
    return parser.parse_args(list(argv))


class StubProcessor:
    chain = Chain.L2

    def __init__(self, fail_at: int | None = None):
        self.fail_at = fail_at
        self.calls = []

    async def process_block(self, block_number: int, is_reindex: bool = False):
        if block_number == self.fail_at:
            raise TransientError("rpc down")
        self.calls.append((block_number, is_reindex))


def test_parser_defaults():
    args = parse("--from-block", "5")

    assert args.chain == Chain.L1
    assert args.to_block is None
    assert args.now is False
    assert parse("--chain", "l2", "--from-block", "1").chain == Chain.L2


@pytest.mark.asyncio
async def test_queue_mode_revives_range(uow_factory):
    async with await uow_factory() as uow:
        await uow.block_jobs.add(
            BlockJob(chain=Chain.L2, block_number=11, status=BlockJobStatus.DONE, attempts=1)
        )

    code = await reindex.run(
        parse("--chain", "l2", "--from-block", "10", "--to-block", "12"), None, uow_factory
    )

    assert code == 0
    async with await uow_factory() as uow:
        jobs = [await uow.block_jobs.get(Chain.L2, n) for n in (10, 11, 12)]
    assert [job.status for job in jobs] == [BlockJobStatus.PENDING] * 3
    assert all(job.is_reindex for job in jobs)
    assert jobs[1].attempts == 0


@pytest.mark.asyncio
async def test_invalid_range_is_rejected(uow_factory):
    args = parse("--from-block", "10", "--to-block", "9")

    assert await reindex.run(args, None, uow_factory) == 1


@pytest.mark.asyncio
async def test_process_range_stops_at_first_failure(uow_factory):
    processor = StubProcessor(fail_at=22)
    queue = BlockProcessingQueue(uow_factory, {Chain.L2: processor})
    done: list[int] = []

    with pytest.raises(TransientError):
        await reindex.process_range(processor, queue, 20, 24, done)

    assert done == [20, 21]
    assert processor.calls == [(20, True), (21, True)]
