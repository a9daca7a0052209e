"""BlockJob entity - one row per (chain, block) in the processing queue."""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from phunks_indexer.core.timezone import utcnow
from phunks_indexer.models.enums import Chain, InvalidStateTransition


class BlockJobStatus(str, Enum):
    """Block job lifecycle status."""

    PENDING = "pending"
    ACTIVE = "active"
    RETRYING = "retrying"
    DEAD = "dead"
    DONE = "done"


class BlockJob(SQLModel, table=True):
    """Queue entry for a block; retained after completion for re-indexing."""

    __tablename__ = "block_jobs"  # type: ignore[assignment]

    chain: Chain = Field(primary_key=True)
    block_number: int = Field(primary_key=True, ge=0)
    status: BlockJobStatus = Field(default=BlockJobStatus.PENDING, index=True)
    attempts: int = Field(default=0, ge=0)
    is_reindex: bool = Field(default=False)
    last_error: Optional[str] = Field(default=None, max_length=1000)
    next_attempt_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = Field(default=None)

    def is_due(self, now: datetime) -> bool:
        """Whether a pending/retrying job may run at ``now``."""
        if self.status == BlockJobStatus.PENDING:
            return True
        if self.status == BlockJobStatus.RETRYING:
            return self.next_attempt_at is None or self.next_attempt_at <= now
        return False

    def mark_active(self) -> None:
        """Transition from pending/retrying to active.

        Raises:
            InvalidStateTransition: If the job is not waiting to run
        """
        if self.status not in (BlockJobStatus.PENDING, BlockJobStatus.RETRYING):
            raise InvalidStateTransition(
                f"Cannot mark active from {self.status.value}. "
                "Job must be pending or retrying."
            )
        self.status = BlockJobStatus.ACTIVE
        self.attempts += 1
        self.updated_at = utcnow()

    def mark_done(self) -> None:
        """Transition from active to done.

        Raises:
            InvalidStateTransition: If the job is not active
        """
        if self.status != BlockJobStatus.ACTIVE:
            raise InvalidStateTransition(
                f"Cannot mark done from {self.status.value}. Job must be active."
            )
        self.status = BlockJobStatus.DONE
        self.last_error = None
        self.next_attempt_at = None
        self.completed_at = self.updated_at = utcnow()

    def mark_attempt_failed(
        self,
        error_message: str,
        max_attempts: int,
        backoff_seconds: float,
        max_backoff_seconds: float,
    ) -> BlockJobStatus:
        """Record a failed attempt: schedule a retry or dead-letter the job.

        Backoff doubles per attempt: base, 2*base, 4*base, ... capped at max.

        Returns:
            New status (retrying or dead)

        Raises:
            InvalidStateTransition: If the job is not active
        """
        if self.status != BlockJobStatus.ACTIVE:
            raise InvalidStateTransition(
                f"Cannot record failure from {self.status.value}. Job must be active."
            )
        now = utcnow()
        self.last_error = error_message[:1000]
        self.updated_at = now

        if self.attempts >= max_attempts:
            self.status = BlockJobStatus.DEAD
            self.next_attempt_at = None
        else:
            delay = min(backoff_seconds * 2 ** (self.attempts - 1), max_backoff_seconds)
            self.status = BlockJobStatus.RETRYING
            self.next_attempt_at = now + timedelta(seconds=delay)
        return self.status

    def revive(self, is_reindex: bool = True) -> None:
        """Put a dead or completed job back to pending with a fresh retry budget."""
        if self.status == BlockJobStatus.ACTIVE:
            raise InvalidStateTransition("Cannot revive an active job.")
        self.status = BlockJobStatus.PENDING
        self.attempts = 0
        self.is_reindex = is_reindex
        self.next_attempt_at = None
        self.updated_at = utcnow()

    def resolve(self, note: str) -> None:
        """Close a dead job without (re)processing it through the queue."""
        if self.status != BlockJobStatus.DEAD:
            raise InvalidStateTransition(
                f"Cannot resolve from {self.status.value}. Job must be dead."
            )
        self.status = BlockJobStatus.DONE
        self.last_error = note[:1000]
        self.completed_at = self.updated_at = utcnow()
