"""Content verification gate for bridge deposits."""

from dataclasses import dataclass
from typing import Optional

import structlog

from phunks_indexer.services.blockchain.provenance import ProvenanceClient
from phunks_indexer.services.bridge.image_uri import DecodedContent, ImageUriService
from phunks_indexer.services.exceptions import InvalidContentError

logger = structlog.get_logger()

UNKNOWN_TOKEN = "unknown_token"
NO_RECORDED_HASH = "no_recorded_hash"
MALFORMED_CONTENT = "malformed_content"
HASH_MISMATCH = "hash_mismatch"
PROVENANCE_NOT_FOUND = "provenance_not_found"


@dataclass(frozen=True)
class VerificationResult:
    ok: bool
    reason: Optional[str] = None
    content: Optional[DecodedContent] = None


class VerificationService:
    """Confirms locked content matches its recorded provenance before minting.

    Every rejection is permanent: a mismatch means a forged or non-canonical
    asset, not a transient fault.
    """

    def __init__(
        self,
        uow_factory,
        image_uri_service: ImageUriService,
        provenance_client: Optional[ProvenanceClient] = None,
    ):
        """
        Args:
            uow_factory: Factory producing UnitOfWork instances
            image_uri_service: Payload decoder
            provenance_client: Optional external lookup; when set, a token must
                also be known there (lookup errors count as not found)
        """
        self.uow_factory = uow_factory
        self.image_uri_service = image_uri_service
        self.provenance_client = provenance_client

    async def verify(
        self, hash_id: str, raw_content: bytes | str, expected_hash: Optional[str] = None
    ) -> VerificationResult:
        """Verify a token's content against its recorded hash.

        Args:
            hash_id: Ethscription id
            raw_content: Creation calldata of the ethscription
            expected_hash: Hash carried by the lock event, if any

        Returns:
            VerificationResult; ``reason`` is set when ``ok`` is False
        """
        async with await self.uow_factory() as uow:
            ethscription = await uow.ethscriptions.get(hash_id)
            recorded_hash = ethscription.sha if ethscription else None

        if ethscription is None:
            return self._reject(hash_id, UNKNOWN_TOKEN)
        if not recorded_hash:
            return self._reject(hash_id, NO_RECORDED_HASH)

        try:
            content = self.image_uri_service.decode(raw_content)
        except InvalidContentError as e:
            return self._reject(hash_id, MALFORMED_CONTENT, error=str(e))

        if content.content_hash != recorded_hash.lower():
            return self._reject(
                hash_id, HASH_MISMATCH, computed=content.content_hash, recorded=recorded_hash
            )
        if expected_hash and content.content_hash != expected_hash.lower():
            return self._reject(
                hash_id, HASH_MISMATCH, computed=content.content_hash, locked=expected_hash
            )

        if self.provenance_client is not None and not await self.provenance_client.exists(hash_id):
            return self._reject(hash_id, PROVENANCE_NOT_FOUND)

        logger.info("verification.passed", hash_id=hash_id, sha=content.content_hash)
        return VerificationResult(ok=True, content=content)

    @staticmethod
    def _reject(hash_id: str, reason: str, **context) -> VerificationResult:
        logger.warning("verification.rejected", hash_id=hash_id, reason=reason, **context)
        return VerificationResult(ok=False, reason=reason)
