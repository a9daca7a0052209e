"""Reconciliation path: apply decoded market/ownership events to the store.

Every event is applied in its own unit of work and at most once: the
ChainEvent row keyed by ``tx_id`` is written in the same transaction as the
state change, and its presence makes a replay a no-op.
"""

import structlog

from phunks_indexer.models.chain_event import ChainEvent
from phunks_indexer.models.enums import Chain, EventKind
from phunks_indexer.models.ethscription import Ethscription
from phunks_indexer.models.market import Bid, Listing
from phunks_indexer.services.decoder import ZERO_ADDRESS
from phunks_indexer.services.events import DecodedEvent
from phunks_indexer.uow import UnitOfWork

logger = structlog.get_logger()

ESCROW_EVENTS = ("PhunkDeposited", "PhunkWithdrawn")


def _address(value) -> str | None:
    if not value or value == ZERO_ADDRESS:
        return None
    return str(value).lower()


class Reconciler:
    """Idempotent upserts for transfer, sale, listing, bid, bridge and points events."""

    def __init__(self, uow_factory):
        self.uow_factory = uow_factory
        self._handlers = {
            EventKind.TRANSFER: self._apply_transfer,
            EventKind.SALE: self._apply_sale,
            EventKind.LISTING: self._apply_listing,
            EventKind.BID: self._apply_bid,
            EventKind.BRIDGE_DEPOSIT: self._apply_bridge_deposit,
            EventKind.BRIDGE_WITHDRAW: self._apply_bridge_withdraw,
            EventKind.POINTS: self._apply_points,
        }

    async def apply(self, event: DecodedEvent) -> bool:
        """Apply one event.

        Returns:
            True if applied, False if it had already been applied
        """
        async with await self.uow_factory() as uow:
            if await uow.events.exists(event.tx_id):
                logger.debug("reconcile.already_applied", tx_id=event.tx_id)
                return False

            for key in ("from", "to", "owner"):
                address = _address(event.payload.get(key))
                if address and address != event.address:
                    await uow.users.get_or_create(address)

            await self._handlers[event.kind](uow, event)
            await uow.events.add(self._audit_row(event))

        logger.info(
            "reconcile.applied",
            chain=event.chain.value,
            block_number=event.block_number,
            tx_id=event.tx_id,
            event_name=event.name,
            hash_id=event.hash_id,
        )
        return True

    @staticmethod
    def _audit_row(event: DecodedEvent) -> ChainEvent:
        value = event.payload.get("value")
        return ChainEvent(
            tx_id=event.tx_id,
            chain=event.chain,
            kind=event.kind,
            name=event.name,
            hash_id=event.hash_id,
            from_address=_address(event.payload.get("from")),
            to_address=_address(event.payload.get("to") or event.payload.get("owner")),
            value=str(value) if value is not None else None,
            tx_hash=event.tx_hash,
            log_index=event.log_index,
            block_number=event.block_number,
            block_hash=event.block_hash,
            tx_index=event.tx_index,
            block_timestamp=event.block_timestamp,
        )

    @staticmethod
    async def _ethscription(uow: UnitOfWork, hash_id: str) -> Ethscription:
        ethscription = await uow.ethscriptions.get(hash_id)
        if ethscription is None:
            ethscription = await uow.ethscriptions.add(Ethscription(hash_id=hash_id))
        return ethscription

    async def _apply_transfer(self, uow: UnitOfWork, event: DecodedEvent) -> None:
        if event.name in ESCROW_EVENTS:
            # Market escrow keeps the depositor as owner
            return

        hash_id = event.hash_id
        new_owner = _address(event.payload.get("to"))
        ethscription = await self._ethscription(uow, hash_id)

        if event.chain == Chain.L2:
            ethscription.l2_owner = new_owner
            await uow.ethscriptions.save(ethscription)
        else:
            applied = ethscription.apply_owner(
                new_owner or ZERO_ADDRESS,
                _address(event.payload.get("from")),
                event.block_number,
                event.log_index,
            )
            if not applied:
                logger.info(
                    "reconcile.stale_transfer",
                    hash_id=hash_id,
                    tx_id=event.tx_id,
                    last_event_block=ethscription.last_event_block,
                )
                return
            await uow.ethscriptions.save(ethscription)

        await uow.listings.remove(event.chain, hash_id)
        if new_owner:
            await uow.bids.remove(event.chain, hash_id, from_address=new_owner)

    async def _apply_sale(self, uow: UnitOfWork, event: DecodedEvent) -> None:
        await uow.listings.remove(event.chain, event.hash_id)
        buyer = _address(event.payload.get("to"))
        if buyer:
            await uow.bids.remove(event.chain, event.hash_id, from_address=buyer)

    async def _apply_listing(self, uow: UnitOfWork, event: DecodedEvent) -> None:
        if event.name == "PhunkNoLongerForSale":
            await uow.listings.remove(event.chain, event.hash_id)
            return

        ethscription = await self._ethscription(uow, event.hash_id)
        seller = ethscription.l2_owner if event.chain == Chain.L2 else ethscription.owner
        await uow.listings.upsert(
            Listing(
                chain=event.chain,
                hash_id=event.hash_id,
                listed_by=seller or ZERO_ADDRESS,
                to_address=_address(event.payload.get("to")),
                min_value=str(event.payload.get("value", 0)),
                tx_hash=event.tx_hash,
            )
        )

    async def _apply_bid(self, uow: UnitOfWork, event: DecodedEvent) -> None:
        bidder = _address(event.payload.get("from")) or ZERO_ADDRESS
        if event.name == "PhunkBidWithdrawn":
            await uow.bids.remove(event.chain, event.hash_id, from_address=bidder)
            return

        await uow.bids.upsert(
            Bid(
                chain=event.chain,
                hash_id=event.hash_id,
                from_address=bidder,
                value=str(event.payload.get("value", 0)),
                tx_hash=event.tx_hash,
            )
        )

    async def _apply_bridge_deposit(self, uow: UnitOfWork, event: DecodedEvent) -> None:
        ethscription = await self._ethscription(uow, event.hash_id)
        origin_owner = _address(event.payload.get("from"))
        applied = ethscription.apply_owner(
            event.address, origin_owner, event.block_number, event.log_index
        )
        if applied:
            ethscription.locked = True
            await uow.ethscriptions.save(ethscription)
        else:
            logger.info("reconcile.stale_lock", hash_id=event.hash_id, tx_id=event.tx_id)

    async def _apply_bridge_withdraw(self, uow: UnitOfWork, event: DecodedEvent) -> None:
        ethscription = await self._ethscription(uow, event.hash_id)
        if event.chain == Chain.L2:
            # HashBurned: the wrapped token is gone
            ethscription.l2_owner = None
            ethscription.l2_tx_hash = None
            await uow.ethscriptions.save(ethscription)
            return

        owner = _address(event.payload.get("owner")) or ZERO_ADDRESS
        if ethscription.apply_owner(owner, event.address, event.block_number, event.log_index):
            ethscription.locked = False
            await uow.ethscriptions.save(ethscription)

    async def _apply_points(self, uow: UnitOfWork, event: DecodedEvent) -> None:
        user = _address(event.payload.get("to"))
        if user:
            await uow.users.add_points(user, int(event.payload.get("value", 0)))
