"""Per-block processing: fetch logs, decode, order, reconcile, then mint."""

import asyncio

import structlog

from phunks_indexer.core.timezone import from_block_timestamp
from phunks_indexer.models.enums import Chain, EventKind
from phunks_indexer.services.decoder import EventDecoder
from phunks_indexer.services.events import BlockProcessingResult, BridgeDeposit, DecodedEvent
from phunks_indexer.services.exceptions import TransientError
from phunks_indexer.services.reconciliation import Reconciler

logger = structlog.get_logger()


class ProcessingService:
    """Processes blocks of one chain.

    Events are applied in ascending (block_number, log_index) order so that,
    within a transaction, a transfer emitted before a sale marker lands first.
    Bridge deposits run through MintService after every event of the block has
    been reconciled, concurrently with each other.
    """

    def __init__(
        self,
        chain: Chain,
        chain_client,
        decoder: EventDecoder,
        reconciler: Reconciler,
        mint_service=None,
    ):
        """
        Args:
            chain: Chain this instance processes
            chain_client: ChainClient for ``chain``
            decoder: EventDecoder configured with the chain's contracts
            reconciler: Reconciliation path for all non-mint effects
            mint_service: MintService for L1 bridge deposits (None on L2)
        """
        self.chain = chain
        self.chain_client = chain_client
        self.decoder = decoder
        self.reconciler = reconciler
        self.mint_service = mint_service

    async def process_block(
        self, block_number: int, is_reindex: bool = False
    ) -> BlockProcessingResult:
        """Fetch, decode and apply one block.

        Re-processing an applied block leaves the store unchanged: applied
        events are skipped, and deposits hit the mint existence check.

        Raises:
            TransientError: RPC failure or a mint that may still succeed
            FatalDecodeError: A known event could not be decoded
        """
        log = logger.bind(chain=self.chain.value, block_number=block_number, is_reindex=is_reindex)
        result = BlockProcessingResult(
            chain=self.chain, block_number=block_number, is_reindex=is_reindex
        )

        block = await self.chain_client.get_block(block_number)
        if block is None:
            raise TransientError(f"{self.chain.value} block {block_number} not available yet")
        timestamp = from_block_timestamp(block["timestamp"])

        logs = await self.chain_client.get_logs(block_number, self.decoder.addresses)
        events: list[DecodedEvent] = []
        for raw_log in logs:
            event = self.decoder.decode(raw_log, block_timestamp=timestamp)
            if event is not None:
                events.append(event)
        events.sort(key=lambda e: e.ordering_key)
        result.decoded = len(events)

        deposits: list[BridgeDeposit] = []
        for event in events:
            if await self.reconciler.apply(event):
                result.applied += 1
            else:
                result.skipped += 1
            if event.kind == EventKind.BRIDGE_DEPOSIT and self.chain == Chain.L1:
                deposits.append(BridgeDeposit.from_event(event))

        result.deposits = len(deposits)
        if deposits:
            result.mint_jobs = await self._mint(deposits, log)

        log.info(
            "processing.block_done",
            logs=len(logs),
            decoded=result.decoded,
            applied=result.applied,
            skipped=result.skipped,
            deposits=result.deposits,
        )
        return result

    async def _mint(self, deposits: list[BridgeDeposit], log) -> list:
        if self.mint_service is None:
            log.warning("processing.mint_disabled", deposits=len(deposits))
            return []

        outcomes = await asyncio.gather(
            *(self.mint_service.bridge_deposit(deposit) for deposit in deposits),
            return_exceptions=True,
        )

        jobs = []
        errors: list[BaseException] = []
        for deposit, outcome in zip(deposits, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                log.warning(
                    "processing.mint_error",
                    hash_id=deposit.hash_id,
                    l1_tx_hash=deposit.l1_tx_hash,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                errors.append(outcome)
            else:
                jobs.append(outcome)

        if errors:
            # Any failure fails the block; done deposits are no-ops on retry
            raise errors[0]
        return jobs
