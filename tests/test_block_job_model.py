"""State transition tests for the BlockJob model.

Tests focus on the queue lifecycle:
- pending -> active -> done
- Failed attempts back off exponentially, capped, then dead-letter
- Revive and resolve are the only ways out of dead
"""

from datetime import timedelta

import pytest

from phunks_indexer.core.timezone import utcnow
from phunks_indexer.models.block_job import BlockJob, BlockJobStatus
from phunks_indexer.models.enums import Chain, InvalidStateTransition


def _failed(job: BlockJob, max_attempts: int = 5) -> BlockJobStatus:
    job.mark_active()
    return job.mark_attempt_failed("boom", max_attempts, 1.0, 60.0)


def test_happy_path():
    job = BlockJob(chain=Chain.L1, block_number=10)
    assert job.status == BlockJobStatus.PENDING
    assert job.is_due(utcnow())

    job.mark_active()
    assert job.status == BlockJobStatus.ACTIVE
    assert job.attempts == 1

    job.mark_done()
    assert job.status == BlockJobStatus.DONE
    assert job.completed_at is not None
    assert not job.is_due(utcnow())


def test_backoff_doubles_and_is_capped():
    """Retry delays follow base * 2**(n-1), capped at the maximum."""
    job = BlockJob(chain=Chain.L1, block_number=10)
    delays = []
    for _ in range(4):
        before = utcnow()
        assert _failed(job, max_attempts=10) == BlockJobStatus.RETRYING
        delays.append((job.next_attempt_at - before).total_seconds())

    assert [round(d) for d in delays] == [1, 2, 4, 8]

    job.attempts = 9
    job.status = BlockJobStatus.RETRYING
    before = utcnow()
    job.mark_active()
    job.mark_attempt_failed("boom", 20, 1.0, 60.0)
    assert round((job.next_attempt_at - before).total_seconds()) == 60


def test_retrying_job_is_not_due_before_next_attempt():
    job = BlockJob(chain=Chain.L1, block_number=10)
    _failed(job)

    assert not job.is_due(utcnow())
    assert job.is_due(utcnow() + timedelta(seconds=5))


def test_dead_after_max_attempts():
    job = BlockJob(chain=Chain.L2, block_number=7)
    statuses = [_failed(job, max_attempts=3) for _ in range(3)]

    assert statuses == [BlockJobStatus.RETRYING, BlockJobStatus.RETRYING, BlockJobStatus.DEAD]
    assert job.next_attempt_at is None
    assert job.last_error == "boom"
    assert not job.is_due(utcnow())


def test_invalid_transitions_raise():
    job = BlockJob(chain=Chain.L1, block_number=1)

    with pytest.raises(InvalidStateTransition, match="Job must be active"):
        job.mark_done()
    with pytest.raises(InvalidStateTransition, match="Job must be active"):
        job.mark_attempt_failed("x", 5, 1.0, 60.0)
    with pytest.raises(InvalidStateTransition, match="Job must be dead"):
        job.resolve("note")

    job.mark_active()
    with pytest.raises(InvalidStateTransition, match="pending or retrying"):
        job.mark_active()
    with pytest.raises(InvalidStateTransition, match="active job"):
        job.revive()


def test_revive_gives_fresh_budget():
    job = BlockJob(chain=Chain.L1, block_number=1)
    for _ in range(2):
        _failed(job, max_attempts=2)
    assert job.status == BlockJobStatus.DEAD

    job.revive(is_reindex=True)

    assert job.status == BlockJobStatus.PENDING
    assert job.attempts == 0
    assert job.is_reindex is True


def test_resolve_closes_dead_job_with_note():
    job = BlockJob(chain=Chain.L1, block_number=1)
    _failed(job, max_attempts=1)

    job.resolve("skipped by operator")

    assert job.status == BlockJobStatus.DONE
    assert job.last_error == "skipped by operator"
