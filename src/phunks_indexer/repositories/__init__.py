"""Repository layer.

Provides data access abstractions for all domain entities.
Each repository is self-contained.
"""

from phunks_indexer.repositories.block_job import BlockJobRepository
from phunks_indexer.repositories.chain_event import ChainEventRepository
from phunks_indexer.repositories.ethscription import EthscriptionRepository
from phunks_indexer.repositories.market import BidRepository, ListingRepository, UserRepository
from phunks_indexer.repositories.mint_job import MintJobRepository
from phunks_indexer.repositories.system_state import SystemStateRepository

__all__ = [
    "BlockJobRepository",
    "MintJobRepository",
    "EthscriptionRepository",
    "ChainEventRepository",
    "ListingRepository",
    "BidRepository",
    "UserRepository",
    "SystemStateRepository",
]
