"""Nonce allocation for the L2 minter account.

Allocation is a critical section guarded by one asyncio.Lock: callers observe
and advance the combined view of the confirmed on-chain nonce and the highest
local allocation together, so concurrent allocations never share a value.
"""

import asyncio
import heapq
from dataclasses import dataclass, field
from typing import Optional

import structlog

from phunks_indexer.services.exceptions import NonceReleaseError

logger = structlog.get_logger()


def baseline_key(signer: str) -> str:
    return f"nonce_baseline_{signer.lower()}"


@dataclass
class SignerNonceState:
    """Local nonce view of one signer.

    ``confirmed`` is the next nonce after every confirmed transaction and
    ``next`` the lowest nonce never handed out. Released nonces sit in a
    min-heap and are reused before ``next`` advances.
    """

    confirmed: int
    next: int
    allocated: set[int] = field(default_factory=set)
    broadcast: set[int] = field(default_factory=set)
    released: list[int] = field(default_factory=list)


class NonceService:
    """Serializes nonce allocation per signer address."""

    def __init__(
        self,
        chain_client,
        default_signer: Optional[str] = None,
        uow_factory=None,
        stuck_threshold: int = 5,
    ):
        """
        Args:
            chain_client: ChainClient of the chain the signer sends on
            default_signer: Address used when a call omits ``signer``
            uow_factory: Optional UnitOfWork factory for the persisted baseline
            stuck_threshold: Pending-minus-confirmed gap that triggers a warning
        """
        self.chain_client = chain_client
        self.default_signer = default_signer
        self.uow_factory = uow_factory
        self.stuck_threshold = stuck_threshold
        self._lock = asyncio.Lock()
        self._states: dict[str, SignerNonceState] = {}

    def _signer(self, signer: Optional[str]) -> str:
        address = signer or self.default_signer
        if not address:
            raise ValueError("No signer given and no default signer configured")
        return address.lower()

    async def _load_baseline(self, signer: str) -> int:
        if self.uow_factory is None:
            return 0
        async with await self.uow_factory() as uow:
            value = await uow.system_state.get_state(baseline_key(signer))
        return int(value["nonce"]) if value else 0

    async def _state(self, signer: str) -> SignerNonceState:
        """Return the signer's state, syncing from chain and store on first use.

        Must be called with the lock held.
        """
        state = self._states.get(signer)
        if state is not None:
            return state

        latest = await self.chain_client.get_transaction_count(signer, "latest")
        pending = await self.chain_client.get_transaction_count(signer, "pending")
        persisted = await self._load_baseline(signer)
        confirmed = max(latest, persisted)

        if pending - confirmed > self.stuck_threshold:
            logger.warning(
                "nonce.stuck_transactions",
                signer=signer,
                confirmed=confirmed,
                pending=pending,
                gap=pending - confirmed,
            )

        # Mempool transactions from a previous run keep their nonces
        state = SignerNonceState(confirmed=confirmed, next=max(confirmed, pending))
        self._states[signer] = state
        logger.info(
            "nonce.synced",
            signer=signer,
            latest=latest,
            pending=pending,
            persisted=persisted,
            next=state.next,
        )
        return state

    async def allocate(self, signer: Optional[str] = None) -> int:
        """Allocate the next nonce for a signer.

        Returns:
            Lowest released nonce if any, otherwise the next unused one
        """
        address = self._signer(signer)
        async with self._lock:
            state = await self._state(address)

            latest = await self.chain_client.get_transaction_count(address, "latest")
            if latest > state.confirmed:
                state.confirmed = latest
            while state.released and state.released[0] < state.confirmed:
                heapq.heappop(state.released)
            state.next = max(state.next, state.confirmed)

            if state.released:
                nonce = heapq.heappop(state.released)
            else:
                nonce = state.next
                state.next += 1
            state.allocated.add(nonce)

        logger.debug("nonce.allocated", signer=address, nonce=nonce)
        return nonce

    async def adopt(self, nonce: int, signer: Optional[str] = None) -> None:
        """Register a nonce already broadcast by a previous run (resumed mint)."""
        address = self._signer(signer)
        async with self._lock:
            state = await self._state(address)
            state.allocated.add(nonce)
            state.broadcast.add(nonce)
            if nonce in state.released:
                state.released.remove(nonce)
                heapq.heapify(state.released)
            state.next = max(state.next, nonce + 1)

    async def mark_broadcast(self, nonce: int, signer: Optional[str] = None) -> None:
        """Record that a transaction at ``nonce`` left the process."""
        address = self._signer(signer)
        async with self._lock:
            state = await self._state(address)
            state.allocated.add(nonce)
            state.broadcast.add(nonce)

    async def release(self, nonce: int, signer: Optional[str] = None) -> None:
        """Return a never-broadcast nonce for reuse by the next allocation.

        Raises:
            NonceReleaseError: If a transaction at ``nonce`` was broadcast
        """
        address = self._signer(signer)
        async with self._lock:
            state = await self._state(address)
            if nonce in state.broadcast:
                raise NonceReleaseError(
                    f"Nonce {nonce} of {address} was broadcast; replace it instead of releasing"
                )
            if nonce not in state.allocated:
                logger.warning("nonce.release_unknown", signer=address, nonce=nonce)
                return
            state.allocated.discard(nonce)
            if nonce >= state.confirmed:
                heapq.heappush(state.released, nonce)

        logger.info("nonce.released", signer=address, nonce=nonce)

    async def confirm(self, nonce: int, signer: Optional[str] = None) -> None:
        """Advance the confirmed baseline past ``nonce`` and persist it."""
        address = self._signer(signer)
        async with self._lock:
            state = await self._state(address)
            state.allocated.discard(nonce)
            state.broadcast.discard(nonce)
            state.confirmed = max(state.confirmed, nonce + 1)
            state.next = max(state.next, state.confirmed)
            baseline = state.confirmed

            if self.uow_factory is not None:
                async with await self.uow_factory() as uow:
                    await uow.system_state.set_state(baseline_key(address), {"nonce": baseline})

        logger.info("nonce.confirmed", signer=address, nonce=nonce, baseline=baseline)

    def snapshot(self, signer: Optional[str] = None) -> Optional[SignerNonceState]:
        return self._states.get(self._signer(signer))
