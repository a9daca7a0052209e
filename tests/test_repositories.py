"""Repository layer tests.

Tests focus on logic beyond plain CRUD:
- Block queue head selection and resume point
- Mint job existence checks (confirmed, per-deposit, in-flight)
- Case-insensitive lookups
- System state upsert

Simple CRUD operations are not tested (trust SQLAlchemy).
"""

from datetime import datetime

import pytest

from phunks_indexer.models.block_job import BlockJob, BlockJobStatus
from phunks_indexer.models.chain_event import ChainEvent
from phunks_indexer.models.enums import Chain, EventKind
from phunks_indexer.models.ethscription import Ethscription
from phunks_indexer.models.market import Bid, Listing
from phunks_indexer.models.mint_job import MintJob, MintJobStatus
from phunks_indexer.repositories.block_job import BlockJobRepository
from phunks_indexer.repositories.chain_event import ChainEventRepository
from phunks_indexer.repositories.ethscription import EthscriptionRepository
from phunks_indexer.repositories.market import BidRepository, ListingRepository, UserRepository
from phunks_indexer.repositories.mint_job import MintJobRepository
from phunks_indexer.repositories.system_state import SystemStateRepository

HASH_ID = "0x" + "ab" * 32


def _block_job(chain: Chain, block_number: int, status: BlockJobStatus) -> BlockJob:
    return BlockJob(chain=chain, block_number=block_number, status=status)


@pytest.mark.asyncio
async def test_block_job_head_is_lowest_unfinished_per_chain(session):
    repo = BlockJobRepository(session)
    for job in (
        _block_job(Chain.L1, 10, BlockJobStatus.DONE),
        _block_job(Chain.L1, 11, BlockJobStatus.DONE),
        _block_job(Chain.L1, 12, BlockJobStatus.RETRYING),
        _block_job(Chain.L1, 13, BlockJobStatus.PENDING),
        _block_job(Chain.L2, 5, BlockJobStatus.PENDING),
    ):
        await repo.add(job)

    head = await repo.get_head(Chain.L1)
    assert head.block_number == 12
    assert (await repo.get_head(Chain.L2)).block_number == 5

    # Resume point: every job up to it is done
    assert await repo.last_done_block(Chain.L1) == 11
    assert await repo.last_done_block(Chain.L2) is None
    assert await repo.max_block(Chain.L1) == 13

    counts = await repo.count_by_status(Chain.L1)
    assert counts["done"] == 2
    assert counts["retrying"] == 1
    assert counts["pending"] == 1
    assert counts["dead"] == 0


@pytest.mark.asyncio
async def test_block_job_get_or_create_is_idempotent(session):
    repo = BlockJobRepository(session)

    job, created = await repo.get_or_create(Chain.L1, 42)
    again, created_again = await repo.get_or_create(Chain.L1, 42)

    assert created is True
    assert created_again is False
    assert again is job


@pytest.mark.asyncio
async def test_reset_active_returns_jobs_to_pending(session):
    repo = BlockJobRepository(session)
    await repo.add(_block_job(Chain.L1, 1, BlockJobStatus.ACTIVE))
    await repo.add(_block_job(Chain.L2, 1, BlockJobStatus.ACTIVE))
    await repo.add(_block_job(Chain.L1, 2, BlockJobStatus.PENDING))
    await session.commit()

    reset = await repo.reset_active()
    await session.commit()
    session.expire_all()

    assert reset == 2
    assert (await repo.get(Chain.L1, 1)).status == BlockJobStatus.PENDING
    assert (await repo.get(Chain.L2, 1)).status == BlockJobStatus.PENDING


@pytest.mark.asyncio
async def test_reset_active_limited_to_one_chain(session):
    repo = BlockJobRepository(session)
    await repo.add(_block_job(Chain.L1, 1, BlockJobStatus.ACTIVE))
    await repo.add(_block_job(Chain.L2, 1, BlockJobStatus.ACTIVE))
    await session.commit()

    reset = await repo.reset_active(Chain.L1)
    await session.commit()
    session.expire_all()

    assert reset == 1
    assert (await repo.get(Chain.L1, 1)).status == BlockJobStatus.PENDING
    assert (await repo.get(Chain.L2, 1)).status == BlockJobStatus.ACTIVE


@pytest.mark.asyncio
async def test_timestamps_stored_as_naive_utc(session):
    repo = BlockJobRepository(session)
    retry_at = datetime(2024, 5, 1, 12, 30)
    job = _block_job(Chain.L1, 3, BlockJobStatus.RETRYING)
    job.next_attempt_at = retry_at
    await repo.add(job)
    await session.commit()
    session.expire_all()

    stored = await repo.get(Chain.L1, 3)

    assert stored.next_attempt_at == retry_at
    assert stored.next_attempt_at.tzinfo is None
    assert stored.updated_at.tzinfo is None


@pytest.mark.asyncio
async def test_mint_job_existence_checks(session):
    repo = MintJobRepository(session)
    failed = MintJob(
        hash_id=HASH_ID,
        l1_tx_hash="0x" + "01" * 32,
        origin_owner="0x" + "11" * 20,
        status=MintJobStatus.FAILED,
    )
    in_flight = MintJob(
        hash_id=HASH_ID,
        l1_tx_hash="0x" + "02" * 32,
        origin_owner="0x" + "11" * 20,
        status=MintJobStatus.SUBMITTED,
    )
    await repo.add(failed)
    await repo.add(in_flight)

    assert await repo.get_confirmed(HASH_ID) is None
    assert (await repo.get_by_deposit("0x" + "AB" * 32, "0x" + "01" * 32)).id == failed.id
    assert [job.id for job in await repo.get_in_flight(HASH_ID)] == [in_flight.id]
    assert [job.id for job in await repo.list_unfinished()] == [in_flight.id]

    in_flight.status = MintJobStatus.CONFIRMED
    await repo.save(in_flight)

    assert (await repo.get_confirmed(HASH_ID)).id == in_flight.id
    assert await repo.get_in_flight(HASH_ID) == []


@pytest.mark.asyncio
async def test_ethscription_lookup_is_case_insensitive(session):
    repo = EthscriptionRepository(session)
    await repo.add(Ethscription(hash_id="0x" + "AB" * 32, sha="ff" * 32))

    found = await repo.get(HASH_ID)

    assert found is not None
    assert found.hash_id == HASH_ID
    assert (await repo.get_by_sha("FF" * 32)).hash_id == HASH_ID


@pytest.mark.asyncio
async def test_listing_and_bid_upsert_replace_in_place(session):
    listings = ListingRepository(session)
    bids = BidRepository(session)

    await listings.upsert(
        Listing(chain=Chain.L1, hash_id=HASH_ID, listed_by="0xa", min_value="1", tx_hash="0x1")
    )
    await listings.upsert(
        Listing(chain=Chain.L1, hash_id=HASH_ID, listed_by="0xa", min_value="5", tx_hash="0x2")
    )
    await bids.upsert(
        Bid(chain=Chain.L1, hash_id=HASH_ID, from_address="0xb", value="3", tx_hash="0x3")
    )

    listing = await listings.get(Chain.L1, HASH_ID)
    assert listing.min_value == "5"
    assert await listings.get(Chain.L2, HASH_ID) is None

    # Only the bidder's bid is removed
    assert await bids.remove(Chain.L1, HASH_ID, from_address="0xc") is False
    assert await bids.remove(Chain.L1, HASH_ID, from_address="0xB") is True
    assert await listings.remove(Chain.L1, HASH_ID) is True
    assert await listings.remove(Chain.L1, HASH_ID) is False


@pytest.mark.asyncio
async def test_user_points_accumulate(session):
    users = UserRepository(session)

    await users.add_points("0xABC", 10)
    await users.add_points("0xabc", 5)
    user = await users.get_or_create("0xAbC")

    assert user.address == "0xabc"
    assert user.points == 15


@pytest.mark.asyncio
async def test_chain_event_duplicate_detection(session):
    repo = ChainEventRepository(session)
    tx_hash = "0x" + "12" * 32
    await repo.add(
        ChainEvent(
            tx_id=f"{tx_hash}-3",
            chain=Chain.L1,
            kind=EventKind.TRANSFER,
            name="Transfer",
            hash_id=HASH_ID,
            tx_hash=tx_hash,
            log_index=3,
            block_number=100,
            block_timestamp=datetime(2024, 1, 1),
        )
    )

    assert await repo.exists(f"{tx_hash}-3") is True
    assert await repo.exists(f"{tx_hash}-4") is False
    assert len(await repo.get_by_block_range(Chain.L1, 100, 100)) == 1
    assert await repo.get_by_block_range(Chain.L2, 0, 1000) == []
    assert len(await repo.list_for_hash_id(HASH_ID)) == 1


@pytest.mark.asyncio
async def test_system_state_upsert(session):
    """set_state inserts, then updates in place."""
    state_repo = SystemStateRepository(session)

    await state_repo.set_state("follower_l1", {"block_number": 1})
    await session.commit()
    await state_repo.set_state("follower_l1", {"block_number": 2})
    await session.commit()

    assert await state_repo.get_state("follower_l1") == {"block_number": 2}
    assert await state_repo.list_all_keys() == ["follower_l1"]
    assert await state_repo.delete_state("follower_l1") is True
    assert await state_repo.get_state("follower_l1") is None
