"""Enumerations shared by models and services."""

from enum import Enum


class Chain(str, Enum):
    """Chains the indexer follows."""

    L1 = "l1"
    L2 = "l2"


class EventKind(str, Enum):
    """Classification of a decoded contract event."""

    TRANSFER = "transfer"
    SALE = "sale"
    LISTING = "listing"
    BID = "bid"
    BRIDGE_DEPOSIT = "bridge_deposit"
    BRIDGE_WITHDRAW = "bridge_withdraw"
    POINTS = "points"


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job state transition."""

    pass
