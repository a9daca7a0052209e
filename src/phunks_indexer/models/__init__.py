"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from phunks_indexer.models.block_job import BlockJob, BlockJobStatus
from phunks_indexer.models.chain_event import ChainEvent
from phunks_indexer.models.enums import Chain, EventKind, InvalidStateTransition
from phunks_indexer.models.ethscription import Ethscription
from phunks_indexer.models.market import Bid, Listing, User
from phunks_indexer.models.mint_job import MintJob, MintJobStatus
from phunks_indexer.models.system_state import SystemState

__all__ = [
    "Chain",
    "EventKind",
    "InvalidStateTransition",
    "BlockJob",
    "BlockJobStatus",
    "MintJob",
    "MintJobStatus",
    "Ethscription",
    "ChainEvent",
    "Listing",
    "Bid",
    "User",
    "SystemState",
]
