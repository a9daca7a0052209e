"""Listing, Bid and User repositories."""

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from phunks_indexer.models.enums import Chain
from phunks_indexer.models.market import Bid, Listing, User


class ListingRepository:
    """Repository for Listing entities (one active listing per chain and hash_id)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, chain: Chain, hash_id: str) -> Listing | None:
        return await self.session.get(Listing, (chain, hash_id.lower()))

    async def upsert(self, listing: Listing) -> Listing:
        """Insert a listing or replace the existing one for the same token.

        Args:
            listing: New listing state

        Returns:
            Persisted listing
        """
        listing.hash_id = listing.hash_id.lower()
        existing = await self.get(listing.chain, listing.hash_id)
        if existing is None:
            self.session.add(listing)
            await self.session.flush()
            return listing

        existing.listed_by = listing.listed_by
        existing.to_address = listing.to_address
        existing.min_value = listing.min_value
        existing.tx_hash = listing.tx_hash
        await self.session.flush()
        return existing

    async def remove(self, chain: Chain, hash_id: str) -> bool:
        """Remove the listing for a token (idempotent).

        Returns:
            True if a listing was removed
        """
        result = await self.session.execute(
            delete(Listing).where(
                Listing.chain == chain,  # type: ignore[arg-type]
                Listing.hash_id == hash_id.lower(),  # type: ignore[arg-type]
            )
        )
        await self.session.flush()
        return result.rowcount > 0  # type: ignore[attr-defined]


class BidRepository:
    """Repository for Bid entities (one open bid per chain and hash_id)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, chain: Chain, hash_id: str) -> Bid | None:
        return await self.session.get(Bid, (chain, hash_id.lower()))

    async def upsert(self, bid: Bid) -> Bid:
        bid.hash_id = bid.hash_id.lower()
        existing = await self.get(bid.chain, bid.hash_id)
        if existing is None:
            self.session.add(bid)
            await self.session.flush()
            return bid

        existing.from_address = bid.from_address
        existing.value = bid.value
        existing.tx_hash = bid.tx_hash
        await self.session.flush()
        return existing

    async def remove(self, chain: Chain, hash_id: str, from_address: str | None = None) -> bool:
        """Remove the bid for a token, optionally only if placed by from_address.

        Returns:
            True if a bid was removed
        """
        stmt = delete(Bid).where(
            Bid.chain == chain,  # type: ignore[arg-type]
            Bid.hash_id == hash_id.lower(),  # type: ignore[arg-type]
        )
        if from_address is not None:
            stmt = stmt.where(Bid.from_address == from_address.lower())  # type: ignore[arg-type]
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.rowcount > 0  # type: ignore[attr-defined]


class UserRepository:
    """Repository for User entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, address: str) -> User | None:
        return await self.session.get(User, address.lower())

    async def get_or_create(self, address: str) -> User:
        """Return the user for an address, creating it on first sight.

        Args:
            address: Account address (case-insensitive)

        Returns:
            Existing or newly created user
        """
        user = await self.get(address)
        if user is None:
            user = User(address=address.lower())
            self.session.add(user)
            await self.session.flush()
        return user

    async def add_points(self, address: str, points: int) -> User:
        user = await self.get_or_create(address)
        user.points += points
        await self.session.flush()
        return user
