"""Ethscription entity - inscribed token with its L1 and bridged L2 ownership."""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from phunks_indexer.core.timezone import utcnow


class Ethscription(SQLModel, table=True):
    """Ethscription is an inscribed token identified by its creation tx hash.

    ``sha`` is the recorded provenance hash of its content. Ownership changes
    carry the ordering key of the event that produced them so an older event
    replayed by a re-index cannot overwrite newer state.
    """

    __tablename__ = "ethscriptions"  # type: ignore[assignment]

    hash_id: str = Field(primary_key=True, max_length=66)
    sha: Optional[str] = Field(default=None, max_length=64, index=True)
    token_id: Optional[int] = Field(default=None, index=True)
    slug: Optional[str] = Field(default=None, max_length=255)
    creator: Optional[str] = Field(default=None, max_length=42)
    owner: Optional[str] = Field(default=None, max_length=42, index=True)
    prev_owner: Optional[str] = Field(default=None, max_length=42)
    locked: bool = Field(default=False)
    l2_owner: Optional[str] = Field(default=None, max_length=42)
    l2_tx_hash: Optional[str] = Field(default=None, max_length=66)
    last_event_block: int = Field(default=0)
    last_event_log_index: int = Field(default=-1)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def is_newer(self, block_number: int, log_index: int) -> bool:
        """Whether an event at (block_number, log_index) postdates the last applied one."""
        return (block_number, log_index) > (self.last_event_block, self.last_event_log_index)

    def apply_owner(
        self, new_owner: str, prev_owner: str | None, block_number: int, log_index: int
    ) -> bool:
        """Apply an ownership change if the event is newer than the current state.

        Returns:
            True if applied, False if the event is stale
        """
        if not self.is_newer(block_number, log_index):
            return False
        self.prev_owner = (prev_owner or self.owner or "").lower() or None
        self.owner = new_owner.lower()
        self.last_event_block = block_number
        self.last_event_log_index = log_index
        self.updated_at = utcnow()
        return True
