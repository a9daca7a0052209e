"""Event log decoder.

Maps raw logs of the known contracts to DecodedEvent objects:

1. Unknown contract address or unknown topic: ignored (returns None)
2. Known topic whose indexed layout does not match the ABI: logged and skipped
3. Known topic whose data cannot be ABI-decoded: FatalDecodeError
4. Removed (re-orged) logs: skipped
"""

from datetime import datetime
from typing import Any, Mapping, Optional

import structlog
from eth_abi.abi import default_codec
from eth_abi.exceptions import DecodingError
from eth_utils import event_abi_to_log_topic
from web3._utils.events import get_event_data
from web3.exceptions import LogTopicError, MismatchedABI

from phunks_indexer.abi import get_event_abis
from phunks_indexer.models.enums import Chain, EventKind
from phunks_indexer.services.events import DecodedEvent
from phunks_indexer.services.exceptions import FatalDecodeError, LogDecodeError

logger = structlog.get_logger()

EVENT_KINDS: dict[str, EventKind] = {
    "ethscriptions_protocol_TransferEthscriptionForPreviousOwner": EventKind.TRANSFER,
    "Transfer": EventKind.TRANSFER,
    "PhunkDeposited": EventKind.TRANSFER,
    "PhunkWithdrawn": EventKind.TRANSFER,
    "PhunkBought": EventKind.SALE,
    "PhunkOffered": EventKind.LISTING,
    "PhunkNoLongerForSale": EventKind.LISTING,
    "PhunkBidEntered": EventKind.BID,
    "PhunkBidWithdrawn": EventKind.BID,
    "HashLocked": EventKind.BRIDGE_DEPOSIT,
    "HashUnlocked": EventKind.BRIDGE_WITHDRAW,
    "HashBurned": EventKind.BRIDGE_WITHDRAW,
    "PointsAdded": EventKind.POINTS,
}

# ABI argument name -> payload key
PAYLOAD_KEYS = {
    "phunkId": "hash_id",
    "hashId": "hash_id",
    "id": "hash_id",
    "tokenId": "hash_id",
    "previousOwner": "from",
    "recipient": "to",
    "from": "from",
    "to": "to",
    "depositor": "from",
    "withdrawer": "to",
    "fromAddress": "from",
    "toAddress": "to",
    "prevOwner": "from",
    "owner": "owner",
    "user": "to",
    "amount": "value",
    "minValue": "value",
    "value": "value",
    "sha": "sha",
}

ZERO_ADDRESS = "0x" + "0" * 40


def to_hex(value: Any) -> str:
    """Render bytes-like values as lowercase 0x-prefixed hex."""
    if isinstance(value, str):
        return value.lower() if value.startswith("0x") else "0x" + value.lower()
    return "0x" + bytes(value).hex()


def _normalize(key: str, value: Any) -> Any:
    if key == "hash_id":
        return "0x%064x" % value if isinstance(value, int) else to_hex(value)
    if key == "sha":
        return bytes(value).hex()
    if isinstance(value, str):
        return value.lower()
    if isinstance(value, (bytes, bytearray)):
        return to_hex(value)
    return value


class EventDecoder:
    """Decode logs emitted by one chain's contracts."""

    def __init__(self, chain: Chain, contracts: Mapping[str, str], codec=default_codec):
        """
        Args:
            chain: Chain the logs come from
            contracts: Lowercase contract address -> ABI name
            codec: ABI codec used to decode topics and data
        """
        self.chain = chain
        self.contracts = {address.lower(): name for address, name in contracts.items()}
        self.codec = codec
        self.topics: dict[str, dict[str, dict]] = {}
        for address, name in self.contracts.items():
            self.topics[address] = {
                to_hex(event_abi_to_log_topic(event_abi)): event_abi
                for event_abi in get_event_abis(name)
            }

    @property
    def addresses(self) -> list[str]:
        return list(self.contracts)

    def decode(
        self, log: Mapping[str, Any], block_timestamp: Optional[datetime] = None
    ) -> Optional[DecodedEvent]:
        """Decode one log.

        Returns:
            DecodedEvent, or None when the log is ignored or skipped

        Raises:
            FatalDecodeError: A known event's data does not match its ABI
        """
        if log.get("removed"):
            logger.info("decoder.removed_log_skipped", tx_hash=to_hex(log["transactionHash"]))
            return None

        address = str(log["address"]).lower()
        topics = log.get("topics") or []
        if address not in self.topics or not topics:
            return None

        event_abi = self.topics[address].get(to_hex(topics[0]))
        if event_abi is None:
            return None

        try:
            args = self._decode_args(event_abi, log)
        except LogDecodeError as e:
            logger.warning(
                "decoder.log_skipped",
                chain=self.chain.value,
                event_name=event_abi["name"],
                tx_hash=to_hex(log["transactionHash"]),
                log_index=log["logIndex"],
                error=str(e),
            )
            return None

        payload = {}
        for name, value in args.items():
            key = PAYLOAD_KEYS.get(name, name)
            payload[key] = _normalize(key, value)

        return DecodedEvent(
            chain=self.chain,
            block_number=int(log["blockNumber"]),
            block_hash=to_hex(log["blockHash"]) if log.get("blockHash") is not None else None,
            block_timestamp=block_timestamp,
            tx_hash=to_hex(log["transactionHash"]),
            tx_index=log.get("transactionIndex"),
            log_index=int(log["logIndex"]),
            contract=self.contracts[address],
            address=address,
            name=event_abi["name"],
            kind=EVENT_KINDS[event_abi["name"]],
            payload=payload,
        )

    def _decode_args(self, event_abi: dict, log: Mapping[str, Any]) -> dict[str, Any]:
        try:
            event_data = get_event_data(self.codec, event_abi, log)
        except (MismatchedABI, LogTopicError) as e:
            raise LogDecodeError(f"Indexed layout mismatch for {event_abi['name']}: {e}") from e
        except DecodingError as e:
            raise FatalDecodeError(
                f"Cannot decode {event_abi['name']} at "
                f"{to_hex(log['transactionHash'])}-{log['logIndex']}: {e}"
            ) from e
        return dict(event_data["args"])
