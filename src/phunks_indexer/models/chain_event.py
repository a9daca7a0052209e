"""ChainEvent entity - audit row of every applied contract event."""

from datetime import datetime
from typing import Optional

from pydantic import field_validator
from sqlmodel import Field, SQLModel

from phunks_indexer.core.timezone import utcnow
from phunks_indexer.models.enums import Chain, EventKind


class ChainEvent(SQLModel, table=True):
    """ChainEvent records an applied event; its tx_id makes application idempotent."""

    __tablename__ = "events"  # type: ignore[assignment]

    tx_id: str = Field(primary_key=True, max_length=80)  # "<tx_hash>-<log_index>"
    chain: Chain = Field(index=True)
    kind: EventKind = Field(index=True)
    name: str = Field(max_length=100)
    hash_id: Optional[str] = Field(default=None, max_length=66, index=True)
    from_address: Optional[str] = Field(default=None, max_length=42)
    to_address: Optional[str] = Field(default=None, max_length=42)
    value: Optional[str] = Field(default=None, max_length=78)  # uint256 as decimal string
    tx_hash: str = Field(max_length=66, index=True)
    log_index: int
    block_number: int = Field(index=True)
    block_hash: Optional[str] = Field(default=None, max_length=66)
    tx_index: Optional[int] = Field(default=None)
    block_timestamp: Optional[datetime] = Field(default=None)
    detected_at: datetime = Field(default_factory=utcnow)

    @field_validator("tx_hash")
    @classmethod
    def validate_tx_hash(cls, v: str) -> str:
        """Validate transaction hash format (0x + 64 hex characters)."""
        if not v.startswith("0x") or len(v) != 66:
            raise ValueError("Transaction hash must be in format 0x followed by 64 hex characters")
        try:
            int(v[2:], 16)
        except ValueError:
            raise ValueError("Transaction hash must contain valid hexadecimal characters")
        return v.lower()

    @field_validator("log_index")
    @classmethod
    def validate_log_index(cls, v: int) -> int:
        """Validate log index is non-negative."""
        if v < 0:
            raise ValueError("Log index must be non-negative")
        return v
