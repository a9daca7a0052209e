"""Background workers: per-chain block queue and head followers."""

from phunks_indexer.workers.block_follower import BlockFollower
from phunks_indexer.workers.block_queue import BlockProcessingQueue

__all__ = ["BlockFollower", "BlockProcessingQueue"]
