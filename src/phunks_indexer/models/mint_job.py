"""MintJob entity - one L2 mint attempt for a locked L1 ethscription."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from phunks_indexer.core.timezone import utcnow
from phunks_indexer.models.enums import InvalidStateTransition


class MintJobStatus(str, Enum):
    """Mint job lifecycle status."""

    VERIFYING = "verifying"
    NONCING = "noncing"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


TERMINAL_STATUSES = (MintJobStatus.CONFIRMED, MintJobStatus.FAILED)


class MintJob(SQLModel, table=True):
    """MintJob tracks verify -> nonce -> submit -> confirm for one deposit."""

    __tablename__ = "mint_jobs"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("hash_id", "l1_tx_hash", name="uq_mint_jobs_deposit"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    hash_id: str = Field(max_length=66, index=True)
    l1_tx_hash: str = Field(max_length=66)
    origin_owner: str = Field(max_length=42)
    locked_content_hash: Optional[str] = Field(default=None, max_length=64)
    status: MintJobStatus = Field(default=MintJobStatus.VERIFYING, index=True)
    signer: Optional[str] = Field(default=None, max_length=42)
    nonce: Optional[int] = Field(default=None, ge=0)
    l2_tx_hash: Optional[str] = Field(default=None, max_length=66)
    tx_hashes: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    submit_attempts: int = Field(default=0, ge=0)
    status_history: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    error_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    confirmed_at: Optional[datetime] = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _transition(self, status: MintJobStatus) -> None:
        self.status = status
        # Reassign so SQLAlchemy notices the JSON change
        self.status_history = [*(self.status_history or []), status.value]
        self.updated_at = utcnow()

    def mark_noncing(self) -> None:
        """Transition from verifying to noncing.

        Raises:
            InvalidStateTransition: If current status is not verifying
        """
        if self.status != MintJobStatus.VERIFYING:
            raise InvalidStateTransition(
                f"Cannot mark noncing from {self.status.value}. Job must be verifying."
            )
        self._transition(MintJobStatus.NONCING)

    def assign_nonce(self, signer: str, nonce: int) -> None:
        if self.status != MintJobStatus.NONCING:
            raise InvalidStateTransition(
                f"Cannot assign nonce in {self.status.value}. Job must be noncing."
            )
        self.signer = signer
        self.nonce = nonce
        self.updated_at = utcnow()

    def mark_submitted(self, tx_hash: str) -> None:
        """Record a broadcast at the job's nonce (first submission or replacement).

        Raises:
            InvalidStateTransition: If the job is not noncing/submitted or has no nonce
            ValueError: If tx_hash is empty
        """
        if self.status not in (MintJobStatus.NONCING, MintJobStatus.SUBMITTED):
            raise InvalidStateTransition(
                f"Cannot mark submitted from {self.status.value}. "
                "Job must be noncing or submitted."
            )
        if self.nonce is None:
            raise InvalidStateTransition("Cannot submit without an allocated nonce.")
        if not tx_hash:
            raise ValueError("tx_hash is required")
        self.l2_tx_hash = tx_hash
        if tx_hash not in (self.tx_hashes or []):
            self.tx_hashes = [*(self.tx_hashes or []), tx_hash]
        self.submit_attempts += 1
        self._transition(MintJobStatus.SUBMITTED)

    def mark_confirmed(self, tx_hash: str) -> None:
        """Transition from submitted to confirmed.

        Args:
            tx_hash: Hash of the transaction that landed (may be an earlier replacement)

        Raises:
            InvalidStateTransition: If current status is not submitted
        """
        if self.status != MintJobStatus.SUBMITTED:
            raise InvalidStateTransition(
                f"Cannot mark confirmed from {self.status.value}. Job must be submitted."
            )
        self.l2_tx_hash = tx_hash
        self.confirmed_at = utcnow()
        self._transition(MintJobStatus.CONFIRMED)

    def mark_failed(self, error_dict: dict) -> None:
        """Transition from any non-terminal state to failed.

        Raises:
            InvalidStateTransition: If current status is already terminal
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        self.error_data = error_dict
        self._transition(MintJobStatus.FAILED)

    def reset_nonce(self) -> None:
        """Drop a nonce that was allocated but never broadcast (resume after restart)."""
        if self.status != MintJobStatus.NONCING:
            raise InvalidStateTransition(
                f"Cannot reset nonce in {self.status.value}. Job must be noncing."
            )
        self.signer = None
        self.nonce = None
        self.updated_at = utcnow()
