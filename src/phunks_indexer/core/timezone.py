"""UTC timezone enforcement.

Sets the TZ environment variable to UTC and provides the naive-UTC clock used
for every persisted timestamp.
"""

import os
from datetime import datetime, timezone

os.environ["TZ"] = "UTC"


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_block_timestamp(timestamp: int) -> datetime:
    """Convert a block timestamp (unix seconds) to naive UTC."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).replace(tzinfo=None)
