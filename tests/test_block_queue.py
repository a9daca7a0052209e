"""Block processing queue tests.

Tests focus on queue semantics:
- Strict ascending order per chain
- Pause/resume (an active job always finishes)
- Retry with backoff, dead-lettering and head-of-line blocking per chain
- Operator skip and re-index
- Restart recovery of jobs left active
"""

import asyncio
import inspect

import pytest
from sqlalchemy.exc import OperationalError

from phunks_indexer.models.block_job import BlockJob, BlockJobStatus
from phunks_indexer.models.enums import Chain, InvalidStateTransition
from phunks_indexer.services.exceptions import TransientError
from phunks_indexer.workers.block_queue import BlockProcessingQueue


class FakeProcessor:
    """Records processed blocks; scripted failures and gates per block."""

    def __init__(self):
        self.failures: dict[int, int] = {}  # block -> remaining failures (-1 = always)
        self.gates: dict[int, asyncio.Event] = {}
        self.started: list[int] = []
        self.processed: list[tuple[int, bool]] = []

    @property
    def blocks(self) -> list[int]:
        return [block for block, _ in self.processed]

    async def process_block(self, block_number: int, is_reindex: bool = False):
        self.started.append(block_number)
        gate = self.gates.get(block_number)
        if gate is not None:
            await gate.wait()
        remaining = self.failures.get(block_number, 0)
        if remaining:
            self.failures[block_number] = remaining - 1 if remaining > 0 else remaining
            raise TransientError(f"rpc down at {block_number}")
        self.processed.append((block_number, is_reindex))


async def wait_until(predicate, timeout: float = 5.0):
    """Poll ``predicate`` (sync or async) until truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if inspect.isawaitable(result):
            result = await result
        if result:
            return
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


async def job_status(uow_factory, chain: Chain, block_number: int):
    async with await uow_factory() as uow:
        job = await uow.block_jobs.get(chain, block_number)
        return job.status if job else None


def make_queue(uow_factory, processors: dict, max_attempts: int = 3) -> BlockProcessingQueue:
    return BlockProcessingQueue(
        uow_factory,
        processors,
        max_attempts=max_attempts,
        backoff_seconds=0.01,
        max_backoff_seconds=0.05,
        idle_interval=0.02,
    )


@pytest.mark.asyncio
async def test_blocks_processed_in_ascending_order(uow_factory):
    processor = FakeProcessor()
    queue = make_queue(uow_factory, {Chain.L1: processor})
    for block in (5, 3, 4):
        await queue.enqueue(Chain.L1, block)

    await queue.start()
    try:
        await wait_until(lambda: len(processor.processed) == 3)
    finally:
        await queue.stop()

    assert processor.blocks == [3, 4, 5]
    assert await queue.last_done_block(Chain.L1) == 5


@pytest.mark.asyncio
async def test_enqueue_known_block_returns_existing_job(uow_factory):
    processor = FakeProcessor()
    queue = make_queue(uow_factory, {Chain.L1: processor})

    first = await queue.enqueue(Chain.L1, 9)
    second = await queue.enqueue(Chain.L1, 9)

    assert (first.chain, first.block_number) == (second.chain, second.block_number)
    async with await uow_factory() as uow:
        counts = await uow.block_jobs.count_by_status(Chain.L1)
    assert counts["pending"] == 1


@pytest.mark.asyncio
async def test_pause_holds_pending_jobs_until_resume(uow_factory):
    processor = FakeProcessor()
    queue = make_queue(uow_factory, {Chain.L1: processor})
    await queue.start()
    try:
        await queue.pause_queue(Chain.L1)
        for block in range(1, 6):
            await queue.enqueue(Chain.L1, block)

        await asyncio.sleep(0.1)
        assert processor.started == []
        status = await queue.status()
        assert status["l1"]["paused"] is True
        assert status["l1"]["counts"]["pending"] == 5

        await queue.resume_queue(Chain.L1)
        await wait_until(lambda: len(processor.processed) == 5)
    finally:
        await queue.stop()

    assert processor.blocks == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_pause_lets_active_job_finish(uow_factory):
    processor = FakeProcessor()
    processor.gates[1] = asyncio.Event()
    queue = make_queue(uow_factory, {Chain.L1: processor})
    await queue.enqueue(Chain.L1, 1)
    await queue.enqueue(Chain.L1, 2)
    await queue.start()
    try:
        await wait_until(lambda: processor.started == [1])
        await queue.pause_queue(Chain.L1)
        processor.gates[1].set()

        async def block_1_done():
            return await job_status(uow_factory, Chain.L1, 1) == BlockJobStatus.DONE

        await wait_until(block_1_done)
        await asyncio.sleep(0.1)
        assert processor.blocks == [1]
        assert (await queue.status())["l1"]["active_block"] is None

        await queue.resume_queue()
        await wait_until(lambda: processor.blocks == [1, 2])
    finally:
        await queue.stop()


@pytest.mark.asyncio
async def test_transient_failure_is_retried_until_success(uow_factory):
    processor = FakeProcessor()
    processor.failures[4] = 2
    queue = make_queue(uow_factory, {Chain.L1: processor}, max_attempts=5)
    await queue.enqueue(Chain.L1, 4)
    await queue.enqueue(Chain.L1, 5)
    await queue.start()
    try:
        await wait_until(lambda: processor.blocks == [4, 5])
    finally:
        await queue.stop()

    assert processor.started == [4, 4, 4, 5]
    async with await uow_factory() as uow:
        job = await uow.block_jobs.get(Chain.L1, 4)
    assert job.status == BlockJobStatus.DONE
    assert job.attempts == 3
    assert job.last_error is None


@pytest.mark.asyncio
async def test_dead_job_halts_only_its_chain(uow_factory):
    l1 = FakeProcessor()
    l1.failures[10] = -1
    l2 = FakeProcessor()
    queue = make_queue(uow_factory, {Chain.L1: l1, Chain.L2: l2}, max_attempts=3)
    await queue.enqueue(Chain.L1, 10)
    await queue.enqueue(Chain.L1, 11)
    await queue.enqueue(Chain.L2, 20)
    await queue.start()
    try:

        async def block_10_dead():
            return await job_status(uow_factory, Chain.L1, 10) == BlockJobStatus.DEAD

        await wait_until(block_10_dead)
        await wait_until(lambda: l2.blocks == [20])
        await asyncio.sleep(0.1)

        # Head-of-line: 11 never started while 10 is dead
        assert l1.started == [10, 10, 10]
        status = await queue.status()
        assert status["l1"]["head_block"] == 10
        assert status["l1"]["head_status"] == "dead"
        assert "rpc down at 10" in status["l1"]["head_error"]

        await queue.skip(Chain.L1, 10)
        await wait_until(lambda: l1.blocks == [11])
    finally:
        await queue.stop()

    async with await uow_factory() as uow:
        job = await uow.block_jobs.get(Chain.L1, 10)
    assert job.status == BlockJobStatus.DONE
    assert job.last_error == "skipped by operator"


@pytest.mark.asyncio
async def test_skip_rejects_non_dead_block(uow_factory):
    queue = make_queue(uow_factory, {Chain.L1: FakeProcessor()})
    await queue.enqueue(Chain.L1, 3)

    with pytest.raises(InvalidStateTransition):
        await queue.skip(Chain.L1, 3)
    with pytest.raises(InvalidStateTransition):
        await queue.skip(Chain.L1, 99)


@pytest.mark.asyncio
async def test_reindex_reprocesses_done_and_dead_blocks(uow_factory):
    processor = FakeProcessor()
    processor.failures[8] = -1
    queue = make_queue(uow_factory, {Chain.L1: processor}, max_attempts=1)
    await queue.enqueue(Chain.L1, 7)
    await queue.enqueue(Chain.L1, 8)
    await queue.start()
    try:

        async def block_8_dead():
            return await job_status(uow_factory, Chain.L1, 8) == BlockJobStatus.DEAD

        await wait_until(block_8_dead)

        # Underlying failure fixed; re-index the dead block and a done one
        processor.failures.clear()
        await queue.pause_queue(Chain.L1)
        await queue.reindex(Chain.L1, 8)
        await queue.reindex(Chain.L1, 7)
        await queue.resume_queue(Chain.L1)
        await wait_until(lambda: len(processor.processed) == 3)
    finally:
        await queue.stop()

    assert processor.processed == [(7, False), (7, True), (8, True)]
    async with await uow_factory() as uow:
        job = await uow.block_jobs.get(Chain.L1, 8)
    assert job.status == BlockJobStatus.DONE
    assert job.attempts == 1


@pytest.mark.asyncio
async def test_start_resets_jobs_left_active(uow_factory):
    """A job active when the previous process died is run again."""
    async with await uow_factory() as uow:
        await uow.block_jobs.add(
            BlockJob(chain=Chain.L1, block_number=12, status=BlockJobStatus.ACTIVE, attempts=1)
        )

    processor = FakeProcessor()
    queue = make_queue(uow_factory, {Chain.L1: processor})
    await queue.start()
    try:
        await wait_until(lambda: processor.blocks == [12])
    finally:
        await queue.stop()

    assert await job_status(uow_factory, Chain.L1, 12) == BlockJobStatus.DONE


@pytest.mark.asyncio
async def test_status_snapshot_lists_every_chain(uow_factory):
    queue = make_queue(uow_factory, {Chain.L1: FakeProcessor(), Chain.L2: FakeProcessor()})
    await queue.enqueue(Chain.L2, 1)

    status = await queue.status()

    assert set(status) == {"l1", "l2"}
    assert status["l1"]["head_block"] is None
    assert status["l1"]["running"] is False
    assert status["l2"]["head_block"] == 1
    assert status["l2"]["head_status"] == "pending"
    assert status["l2"]["last_done_block"] is None


@pytest.mark.asyncio
async def test_unknown_chain_is_rejected(uow_factory):
    queue = make_queue(uow_factory, {Chain.L1: FakeProcessor()})

    with pytest.raises(ValueError):
        await queue.enqueue(Chain.L2, 1)


class FlakyUowFactory:
    """Wraps a UoW factory; the next ``failures`` calls raise a store error."""

    def __init__(self, uow_factory):
        self.uow_factory = uow_factory
        self.failures = 0

    async def __call__(self):
        if self.failures:
            self.failures -= 1
            raise OperationalError("SELECT 1", {}, Exception("connection reset"))
        return await self.uow_factory()


@pytest.mark.asyncio
async def test_store_error_while_claiming_does_not_stop_worker(uow_factory):
    flaky = FlakyUowFactory(uow_factory)
    processor = FakeProcessor()
    queue = make_queue(flaky, {Chain.L1: processor})
    await queue.enqueue(Chain.L1, 1)
    await queue.enqueue(Chain.L1, 2)
    await queue.start()
    flaky.failures = 1
    try:
        await wait_until(lambda: processor.blocks == [1, 2])
        assert (await queue.status())["l1"]["running"] is True
    finally:
        await queue.stop()


@pytest.mark.asyncio
async def test_store_error_after_processing_reruns_block(uow_factory):
    """A job left active by a failed completion write is re-run, then later blocks follow."""
    flaky = FlakyUowFactory(uow_factory)

    class FailingCompletion(FakeProcessor):
        async def process_block(self, block_number: int, is_reindex: bool = False):
            await super().process_block(block_number, is_reindex)
            if len(self.processed) == 1:
                flaky.failures = 1

    processor = FailingCompletion()
    queue = make_queue(flaky, {Chain.L1: processor})
    await queue.enqueue(Chain.L1, 1)
    await queue.enqueue(Chain.L1, 2)
    await queue.start()
    try:
        await wait_until(lambda: processor.blocks == [1, 1, 2])
    finally:
        await queue.stop()

    assert await job_status(uow_factory, Chain.L1, 1) == BlockJobStatus.DONE
    assert await job_status(uow_factory, Chain.L1, 2) == BlockJobStatus.DONE
