"""Decoding of ethscription payloads into canonical content.

An ethscription's creation calldata is a UTF-8 ``data:`` URI. Its ``sha`` is the
SHA-256 of that URI text, which is what provenance records store.
"""

import base64
import binascii
import hashlib
import json
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import unquote_to_bytes

from phunks_indexer.services.exceptions import InvalidContentError

DEFAULT_MIMETYPE = "text/plain"


@dataclass(frozen=True)
class DecodedContent:
    content_bytes: bytes
    content_hash: str
    mimetype: str
    data_uri: str


def payload_to_text(raw_payload: bytes | str) -> str:
    """Turn calldata (bytes, 0x-hex or already-decoded text) into the URI text.

    Raises:
        InvalidContentError: If the payload is not valid hex or UTF-8
    """
    try:
        if isinstance(raw_payload, str):
            if not raw_payload.startswith("0x"):
                return raw_payload
            raw_payload = bytes.fromhex(raw_payload[2:])
        return bytes(raw_payload).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        raise InvalidContentError(f"Payload is not a UTF-8 data URI: {e}") from e


def content_hash(data_uri: str) -> str:
    return hashlib.sha256(data_uri.encode("utf-8")).hexdigest()


class ImageUriService:
    """Pure decoder: raw payload -> (content bytes, content hash).

    Decoded results are kept in a bounded LRU keyed by content hash.
    """

    def __init__(self, cache_size: int = 1024):
        self.cache_size = cache_size
        self._cache: OrderedDict[str, DecodedContent] = OrderedDict()

    def decode(self, raw_payload: bytes | str) -> DecodedContent:
        """Decode a raw payload into canonical content.

        Args:
            raw_payload: Calldata bytes, 0x-prefixed hex, or data URI text

        Returns:
            DecodedContent with the lowercase hex SHA-256 of the URI text

        Raises:
            InvalidContentError: If the payload is not a well-formed data URI
        """
        data_uri = payload_to_text(raw_payload)
        digest = content_hash(data_uri)

        cached = self._cache.get(digest)
        if cached is not None:
            self._cache.move_to_end(digest)
            return cached

        decoded = DecodedContent(
            content_bytes=self._parse(data_uri),
            content_hash=digest,
            mimetype=self._mimetype(data_uri),
            data_uri=data_uri,
        )
        self._cache[digest] = decoded
        if len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        return decoded

    @staticmethod
    def _split(data_uri: str) -> tuple[list[str], str]:
        if not data_uri.startswith("data:") or "," not in data_uri:
            raise InvalidContentError("Payload is not a data URI")
        header, data = data_uri[len("data:"):].split(",", 1)
        return header.split(";"), data

    def _mimetype(self, data_uri: str) -> str:
        params, _ = self._split(data_uri)
        return params[0].strip().lower() or DEFAULT_MIMETYPE

    def _parse(self, data_uri: str) -> bytes:
        params, data = self._split(data_uri)
        if "base64" in (param.strip().lower() for param in params[1:]):
            try:
                return base64.b64decode(data, validate=True)
            except (binascii.Error, ValueError) as e:
                raise InvalidContentError(f"Invalid base64 content: {e}") from e
        return unquote_to_bytes(data)

    def build_metadata(
        self, hash_id: str, content: DecodedContent, token_id: Optional[int] = None
    ) -> dict[str, Any]:
        """Build ERC721-style metadata for the wrapped token on L2."""
        name = f"EtherPhunk #{token_id}" if token_id is not None else f"Ethscription {hash_id[:10]}"
        return {
            "name": name,
            "description": "Bridged ethscription",
            "image": content.data_uri,
            "attributes": [
                {"trait_type": "hashId", "value": hash_id.lower()},
                {"trait_type": "sha", "value": content.content_hash},
                {"trait_type": "mimetype", "value": content.mimetype},
            ],
        }

    def metadata_uri(
        self, hash_id: str, content: DecodedContent, token_id: Optional[int] = None
    ) -> str:
        """Encode metadata as a ``data:application/json;base64,`` URI."""
        metadata = self.build_metadata(hash_id, content, token_id)
        encoded = base64.b64encode(
            json.dumps(metadata, separators=(",", ":"), sort_keys=True).encode("utf-8")
        ).decode("ascii")
        return f"data:application/json;base64,{encoded}"
