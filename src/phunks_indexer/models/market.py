"""Marketplace entities - listings, bids and users."""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from phunks_indexer.core.timezone import utcnow
from phunks_indexer.models.enums import Chain


class Listing(SQLModel, table=True):
    """Active listing of an ethscription on one chain's market."""

    __tablename__ = "listings"  # type: ignore[assignment]

    chain: Chain = Field(primary_key=True)
    hash_id: str = Field(primary_key=True, max_length=66)
    listed_by: str = Field(max_length=42)
    to_address: Optional[str] = Field(default=None, max_length=42)
    min_value: str = Field(max_length=78)
    tx_hash: str = Field(max_length=66)
    created_at: datetime = Field(default_factory=utcnow)


class Bid(SQLModel, table=True):
    """Highest open bid for an ethscription on one chain's market."""

    __tablename__ = "bids"  # type: ignore[assignment]

    chain: Chain = Field(primary_key=True)
    hash_id: str = Field(primary_key=True, max_length=66)
    from_address: str = Field(max_length=42)
    value: str = Field(max_length=78)
    tx_hash: str = Field(max_length=66)
    created_at: datetime = Field(default_factory=utcnow)


class User(SQLModel, table=True):
    """Account seen in any applied event."""

    __tablename__ = "users"  # type: ignore[assignment]

    address: str = Field(primary_key=True, max_length=42)
    points: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
