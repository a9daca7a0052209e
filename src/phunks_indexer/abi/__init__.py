"""Contract ABI utilities.

ABIs are stored as JSON files in this directory and loaded at runtime. Only the
events and functions the indexer decodes or calls are included.
"""

import json
from functools import lru_cache
from pathlib import Path

CONTRACT_NAMES = (
    "EtherPhunksMarketL1",
    "EtherPhunksMarketL2",
    "EtherPhunksBridgeL1",
    "EtherPhunksBridgeL2",
    "PointsL1",
)


@lru_cache(maxsize=None)
def get_contract_abi(contract_name: str) -> list[dict]:
    """Load contract ABI from package resources.

    Args:
        contract_name: Name of the contract (one of CONTRACT_NAMES)

    Returns:
        ABI as list of function/event descriptors

    Raises:
        FileNotFoundError: If ABI file doesn't exist for the specified contract

    Example:
        >>> abi = get_contract_abi("EtherPhunksBridgeL1")
        >>> events = [item for item in abi if item["type"] == "event"]
    """
    abi_path = Path(__file__).parent / f"{contract_name}.json"

    if not abi_path.exists():
        raise FileNotFoundError(f"ABI file not found: {abi_path}")

    with open(abi_path) as f:
        return json.load(f)


def get_event_abis(contract_name: str) -> list[dict]:
    """Return the non-anonymous event descriptors of a contract ABI."""
    return [
        item
        for item in get_contract_abi(contract_name)
        if item.get("type") == "event" and not item.get("anonymous")
    ]
