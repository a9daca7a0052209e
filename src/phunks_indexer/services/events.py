"""Decoded chain events and bridge deposits.

Both are immutable once decoded. Events are ordered per chain by
``(block_number, log_index)``; ``tx_id`` is the idempotency key of an applied event.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from phunks_indexer.models.enums import Chain, EventKind


@dataclass(frozen=True)
class DecodedEvent:
    """A contract log decoded against its ABI and classified into an EventKind."""

    chain: Chain
    block_number: int
    block_hash: Optional[str]
    block_timestamp: Optional[datetime]
    tx_hash: str
    tx_index: Optional[int]
    log_index: int
    contract: str  # contract name, e.g. "EtherPhunksBridgeL1"
    address: str
    name: str
    kind: EventKind
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def ordering_key(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)

    @property
    def tx_id(self) -> str:
        return f"{self.tx_hash}-{self.log_index}"

    @property
    def hash_id(self) -> Optional[str]:
        return self.payload.get("hash_id")


@dataclass(frozen=True)
class BridgeDeposit:
    """An ethscription locked on L1, to be minted on L2 exactly once."""

    hash_id: str
    locked_content_hash: Optional[str]
    origin_owner: str
    l1_tx_hash: str
    block_number: int
    log_index: int

    @classmethod
    def from_event(cls, event: DecodedEvent) -> "BridgeDeposit":
        if event.kind != EventKind.BRIDGE_DEPOSIT:
            raise ValueError(f"Not a bridge deposit event: {event.name}")
        return cls(
            hash_id=event.payload["hash_id"],
            locked_content_hash=event.payload.get("sha"),
            origin_owner=event.payload["from"],
            l1_tx_hash=event.tx_hash,
            block_number=event.block_number,
            log_index=event.log_index,
        )


@dataclass
class BlockProcessingResult:
    """Summary of one processed block."""

    chain: Chain
    block_number: int
    is_reindex: bool = False
    decoded: int = 0
    applied: int = 0
    skipped: int = 0
    deposits: int = 0
    mint_jobs: list[Any] = field(default_factory=list)
