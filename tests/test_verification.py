"""Bridge content verification tests.

Every rejection reason is covered; the provenance lookup runs against an
httpx.MockTransport.
"""

import httpx
import pytest
from fakes import DATA_URI, DATA_URI_SHA

from phunks_indexer.models.ethscription import Ethscription
from phunks_indexer.services.blockchain.provenance import ProvenanceClient
from phunks_indexer.services.bridge.image_uri import ImageUriService
from phunks_indexer.services.bridge.verification import (
    HASH_MISMATCH,
    MALFORMED_CONTENT,
    NO_RECORDED_HASH,
    PROVENANCE_NOT_FOUND,
    UNKNOWN_TOKEN,
    VerificationService,
)

HASH_ID = "0x" + "ab" * 32


async def seed(uow_factory, sha: str | None = DATA_URI_SHA) -> None:
    async with await uow_factory() as uow:
        await uow.ethscriptions.add(Ethscription(hash_id=HASH_ID, sha=sha))


def provenance(handler) -> ProvenanceClient:
    transport = httpx.MockTransport(handler)
    return ProvenanceClient(base_url="https://indexer.test/api", transport=transport)


@pytest.mark.asyncio
async def test_matching_content_passes(uow_factory):
    await seed(uow_factory)
    service = VerificationService(uow_factory, ImageUriService())

    result = await service.verify(HASH_ID, DATA_URI, expected_hash=DATA_URI_SHA)

    assert result.ok is True
    assert result.reason is None
    assert result.content.content_hash == DATA_URI_SHA


@pytest.mark.asyncio
async def test_unknown_token_is_rejected(uow_factory):
    service = VerificationService(uow_factory, ImageUriService())

    result = await service.verify(HASH_ID, DATA_URI)

    assert result.ok is False
    assert result.reason == UNKNOWN_TOKEN


@pytest.mark.asyncio
async def test_token_without_recorded_hash_is_rejected(uow_factory):
    await seed(uow_factory, sha=None)
    service = VerificationService(uow_factory, ImageUriService())

    result = await service.verify(HASH_ID, DATA_URI)

    assert result.reason == NO_RECORDED_HASH


@pytest.mark.asyncio
async def test_malformed_content_is_rejected(uow_factory):
    await seed(uow_factory)
    service = VerificationService(uow_factory, ImageUriService())

    result = await service.verify(HASH_ID, "0xnot-hex")

    assert result.reason == MALFORMED_CONTENT


@pytest.mark.asyncio
async def test_content_differing_from_record_is_rejected(uow_factory):
    await seed(uow_factory)
    service = VerificationService(uow_factory, ImageUriService())

    result = await service.verify(HASH_ID, "data:,forged")

    assert result.ok is False
    assert result.reason == HASH_MISMATCH


@pytest.mark.asyncio
async def test_lock_event_hash_must_match_content(uow_factory):
    await seed(uow_factory)
    service = VerificationService(uow_factory, ImageUriService())

    result = await service.verify(HASH_ID, DATA_URI, expected_hash="00" * 32)

    assert result.reason == HASH_MISMATCH


@pytest.mark.asyncio
async def test_provenance_error_counts_as_not_found(uow_factory):
    await seed(uow_factory)
    client = provenance(lambda request: httpx.Response(500))
    service = VerificationService(uow_factory, ImageUriService(), client)

    result = await service.verify(HASH_ID, DATA_URI)

    assert result.ok is False
    assert result.reason == PROVENANCE_NOT_FOUND


@pytest.mark.asyncio
async def test_provenance_record_confirms_token(uow_factory):
    await seed(uow_factory)
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(request.url.path)
        return httpx.Response(200, json={"transaction_hash": "0x" + "AB" * 32})

    service = VerificationService(uow_factory, ImageUriService(), provenance(handler))

    result = await service.verify(HASH_ID, DATA_URI)

    assert result.ok is True
    assert requested == [f"/api/ethscriptions/{HASH_ID}"]
