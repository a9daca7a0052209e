"""Seed ethscription provenance records from a JSON export.

Bridge verification compares content against the recorded ``sha`` of an
ethscription, which chain events never carry. This module loads those records
(hash_id, sha, token_id, slug, creator, owner) from a collection export.
"""

from typing import Any, Optional

import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from phunks_indexer.models.ethscription import Ethscription

logger = structlog.get_logger()


class EthscriptionRecord(BaseModel):
    """One collection item; accepts snake_case and camelCase keys."""

    model_config = ConfigDict(extra="ignore")

    hash_id: str = Field(validation_alias=AliasChoices("hash_id", "hashId", "id"))
    sha: str
    token_id: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("token_id", "tokenId")
    )
    slug: Optional[str] = None
    creator: Optional[str] = None
    owner: Optional[str] = None

    @field_validator("hash_id")
    @classmethod
    def validate_hash_id(cls, v: str) -> str:
        v = v.lower()
        if not v.startswith("0x") or len(v) != 66:
            raise ValueError(f"Invalid hash_id: {v}")
        int(v, 16)
        return v

    @field_validator("sha")
    @classmethod
    def validate_sha(cls, v: str) -> str:
        v = v.lower().removeprefix("0x")
        if len(v) != 64:
            raise ValueError(f"Invalid sha (expected 64 hex chars): {v}")
        int(v, 16)
        return v

    @field_validator("creator", "owner")
    @classmethod
    def lowercase_address(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v


def parse_records(data: Any) -> list[EthscriptionRecord]:
    """Parse a list of items, or a ``{"collection_items": [...]}`` wrapper."""
    if isinstance(data, dict):
        data = data.get("collection_items", data.get("items", []))
    if not isinstance(data, list):
        raise ValueError("Expected a list of ethscription records")
    return [EthscriptionRecord.model_validate(item) for item in data]


async def import_records(uow, records: list[EthscriptionRecord]) -> tuple[int, int]:
    """Create missing ethscriptions and fill provenance fields of known ones.

    Ownership is only seeded on rows no event has touched yet; event-derived
    owners always win.

    Returns:
        Tuple of (created_count, updated_count)
    """
    created = 0
    updated = 0

    for record in records:
        ethscription = await uow.ethscriptions.get(record.hash_id)
        if ethscription is None:
            await uow.ethscriptions.add(
                Ethscription(
                    hash_id=record.hash_id,
                    sha=record.sha,
                    token_id=record.token_id,
                    slug=record.slug,
                    creator=record.creator,
                    owner=record.owner,
                )
            )
            created += 1
            continue

        if ethscription.sha and ethscription.sha != record.sha:
            logger.warning(
                "ethscription_import.sha_changed",
                hash_id=record.hash_id,
                recorded=ethscription.sha,
                imported=record.sha,
            )
        ethscription.sha = record.sha
        if record.token_id is not None:
            ethscription.token_id = record.token_id
        ethscription.slug = record.slug or ethscription.slug
        ethscription.creator = record.creator or ethscription.creator
        if ethscription.last_event_block == 0 and ethscription.owner is None:
            ethscription.owner = record.owner
        await uow.ethscriptions.save(ethscription)
        updated += 1

    return created, updated
