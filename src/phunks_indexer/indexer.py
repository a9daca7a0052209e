"""Service wiring shared by the API process and the CLI."""

from dataclasses import dataclass, field
from typing import Optional

import structlog
from eth_account import Account

from phunks_indexer.models.enums import Chain
from phunks_indexer.services.blockchain.chain_client import ChainClient
from phunks_indexer.services.blockchain.provenance import ProvenanceClient
from phunks_indexer.services.bridge.image_uri import ImageUriService
from phunks_indexer.services.bridge.mint import MintService
from phunks_indexer.services.bridge.nonce import NonceService
from phunks_indexer.services.bridge.verification import VerificationService
from phunks_indexer.services.decoder import EventDecoder
from phunks_indexer.services.processing import ProcessingService
from phunks_indexer.services.reconciliation import Reconciler
from phunks_indexer.workers.block_follower import BlockFollower
from phunks_indexer.workers.block_queue import BlockProcessingQueue

logger = structlog.get_logger()


@dataclass
class Indexer:
    """Everything one indexer process runs."""

    clients: dict[Chain, ChainClient]
    processors: dict[Chain, ProcessingService]
    queue: BlockProcessingQueue
    followers: list[BlockFollower] = field(default_factory=list)
    mint_service: Optional[MintService] = None


def build_mint_service(settings, uow_factory, l1_client, l2_client) -> Optional[MintService]:
    """Create the mint pipeline, or None when no minter key or L2 bridge is configured."""
    if not settings.minter_private_key or not settings.bridge_address_l2:
        logger.warning("indexer.mint_disabled", reason="minter_not_configured")
        return None

    image_uri_service = ImageUriService()
    provenance_client = (
        ProvenanceClient(settings.provenance_api_url)
        if settings.verify_with_provenance_api
        else None
    )
    verification_service = VerificationService(uow_factory, image_uri_service, provenance_client)
    signer = Account.from_key(settings.minter_private_key).address
    nonce_service = NonceService(
        l2_client,
        default_signer=signer,
        uow_factory=uow_factory,
        stuck_threshold=settings.nonce_stuck_threshold,
    )
    return MintService(
        uow_factory=uow_factory,
        l1_client=l1_client,
        l2_client=l2_client,
        verification_service=verification_service,
        nonce_service=nonce_service,
        image_uri_service=image_uri_service,
        bridge_address_l2=settings.bridge_address_l2,
        minter_private_key=settings.minter_private_key,
        gas_buffer=settings.mint_gas_buffer,
        fee_bump=settings.mint_fee_bump,
        max_submit_attempts=settings.mint_max_submit_attempts,
        confirmation_attempts=settings.mint_confirmation_attempts,
        confirmation_backoff_seconds=settings.mint_confirmation_backoff_seconds,
    )


def build_indexer(settings, uow_factory) -> Indexer:
    """Wire chain clients, processors, the block queue and one follower per chain."""
    clients = {
        chain: ChainClient.from_url(
            chain, settings.rpc_url_for(chain), timeout=settings.rpc_timeout_seconds
        )
        for chain in Chain
    }
    mint_service = build_mint_service(settings, uow_factory, clients[Chain.L1], clients[Chain.L2])
    reconciler = Reconciler(uow_factory)

    processors = {
        chain: ProcessingService(
            chain,
            clients[chain],
            EventDecoder(chain, settings.contracts_for(chain)),
            reconciler,
            mint_service=mint_service if chain == Chain.L1 else None,
        )
        for chain in Chain
    }

    queue = BlockProcessingQueue(
        uow_factory,
        processors,
        max_attempts=settings.block_queue_max_attempts,
        backoff_seconds=settings.block_queue_backoff_seconds,
        max_backoff_seconds=settings.block_queue_max_backoff_seconds,
    )

    followers = [
        BlockFollower(
            chain,
            clients[chain],
            queue,
            uow_factory,
            start_block=settings.start_block_for(chain),
            poll_interval=settings.poll_interval_seconds,
        )
        for chain in Chain
    ]

    return Indexer(
        clients=clients,
        processors=processors,
        queue=queue,
        followers=followers,
        mint_service=mint_service,
    )
