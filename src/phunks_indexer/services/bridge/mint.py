"""Mint orchestration for bridge deposits: verify -> nonce -> submit -> confirm."""

import asyncio
import math
from typing import Any, Callable, Optional
from uuid import UUID

import structlog
from eth_abi import encode
from eth_account import Account
from eth_utils import function_signature_to_4byte_selector
from web3 import Web3

from phunks_indexer.core.timezone import utcnow
from phunks_indexer.models.chain_event import ChainEvent
from phunks_indexer.models.enums import Chain, EventKind
from phunks_indexer.models.mint_job import MintJob, MintJobStatus
from phunks_indexer.services.bridge.image_uri import DecodedContent, ImageUriService
from phunks_indexer.services.bridge.nonce import NonceService
from phunks_indexer.services.bridge.verification import UNKNOWN_TOKEN, VerificationService
from phunks_indexer.services.events import BridgeDeposit
from phunks_indexer.services.exceptions import (
    GasEstimationError,
    InvalidContentError,
    TransactionSubmissionError,
    TransientError,
)

logger = structlog.get_logger()

MINT_SIGNATURE = "mint(address,bytes32,bytes32,string)"
MINT_SELECTOR = function_signature_to_4byte_selector(MINT_SIGNATURE)

# Node responses that mean the transaction never entered the mempool
REJECTION_MARKERS = (
    "insufficient funds",
    "execution reverted",
    "intrinsic gas too low",
    "exceeds block gas limit",
    "invalid sender",
    "invalid transaction",
)


def build_mint_calldata(to: str, hash_id: str, sha: str, token_uri: str) -> bytes:
    """ABI-encode ``mint(address,bytes32,bytes32,string)``."""
    args = encode(
        ["address", "bytes32", "bytes32", "string"],
        [
            Web3.to_checksum_address(to),
            bytes.fromhex(hash_id.removeprefix("0x")),
            bytes.fromhex(sha.removeprefix("0x")),
            token_uri,
        ],
    )
    return MINT_SELECTOR + args


def _is_rejection(message: str) -> bool:
    return any(marker in message for marker in REJECTION_MARKERS)


class MintService:
    """Drives one bridge deposit to a confirmed L2 mint, at most once per hash_id.

    Work for a hash_id is single-flight inside the process; the store check
    covers repeats across blocks and restarts. Units of work are short and
    never span an RPC call. The tx hash is persisted before each broadcast so
    a crash can always resume by polling the recorded hashes.
    """

    def __init__(
        self,
        uow_factory,
        l1_client,
        l2_client,
        verification_service: VerificationService,
        nonce_service: NonceService,
        image_uri_service: ImageUriService,
        bridge_address_l2: str,
        minter_private_key: str,
        gas_buffer: float = 1.2,
        fee_bump: float = 1.125,
        max_submit_attempts: int = 5,
        confirmation_attempts: int = 6,
        confirmation_backoff_seconds: float = 2.0,
    ):
        """
        Args:
            uow_factory: Factory producing UnitOfWork instances
            l1_client: ChainClient for the settlement chain (origin calldata)
            l2_client: ChainClient for the L2 chain (mint transactions)
            verification_service: Content gate run before any nonce is taken
            nonce_service: Nonce allocator for the minter account
            image_uri_service: Payload decoder used to build token metadata
            bridge_address_l2: L2 bridge contract exposing ``mint``
            minter_private_key: Key of the minter account (0x-prefixed hex)
            gas_buffer: Multiplier applied to estimated gas
            fee_bump: Fee multiplier per replacement (>= 1.1)
            max_submit_attempts: Broadcasts per invocation before giving up
            confirmation_attempts: Receipt polls per broadcast
            confirmation_backoff_seconds: First poll delay, doubled each poll
        """
        if fee_bump < 1.1:
            raise ValueError("fee_bump must be at least 1.1 for replacement transactions")

        self.uow_factory = uow_factory
        self.l1_client = l1_client
        self.l2_client = l2_client
        self.verification_service = verification_service
        self.nonce_service = nonce_service
        self.image_uri_service = image_uri_service
        self.bridge_address = Web3.to_checksum_address(bridge_address_l2)
        self.account = Account.from_key(minter_private_key)
        self.signer = self.account.address
        self.gas_buffer = gas_buffer
        self.fee_bump = fee_bump
        self.max_submit_attempts = max_submit_attempts
        self.confirmation_attempts = confirmation_attempts
        self.confirmation_backoff_seconds = confirmation_backoff_seconds
        self._chain_id: Optional[int] = None
        self._in_flight: dict[str, asyncio.Task] = {}

        logger.info(
            "mint.initialized",
            signer=self.signer,
            bridge_address=self.bridge_address,
            fee_bump=fee_bump,
            max_submit_attempts=max_submit_attempts,
        )

    async def bridge_deposit(self, deposit: BridgeDeposit) -> MintJob:
        """Process one bridge deposit.

        A confirmed or in-flight job for the same hash_id is returned unchanged.
        A job for the same lock event is returned if terminal, resumed otherwise.

        Returns:
            The MintJob for this deposit's hash_id

        Raises:
            TransientError: Retry budget exhausted; the job stays resumable
        """
        hash_id = deposit.hash_id.lower()
        task = self._in_flight.get(hash_id)
        if task is not None:
            logger.info("mint.joined_in_flight", hash_id=hash_id, l1_tx_hash=deposit.l1_tx_hash)
            return await asyncio.shield(task)

        task = asyncio.ensure_future(self._run(deposit))
        self._in_flight[hash_id] = task
        try:
            return await task
        finally:
            if self._in_flight.get(hash_id) is task:
                del self._in_flight[hash_id]

    async def resume_unfinished(self) -> int:
        """Resume jobs left mid-pipeline by a previous run.

        Returns:
            Number of jobs resumed
        """
        async with await self.uow_factory() as uow:
            jobs = await uow.mint_jobs.list_unfinished()

        resumed = 0
        for job in jobs:
            deposit = BridgeDeposit(
                hash_id=job.hash_id,
                locked_content_hash=job.locked_content_hash,
                origin_owner=job.origin_owner,
                l1_tx_hash=job.l1_tx_hash,
                block_number=0,
                log_index=0,
            )
            try:
                await self.bridge_deposit(deposit)
                resumed += 1
            except TransientError as e:
                logger.warning("mint.resume_deferred", job_id=str(job.id), error=str(e))
        return resumed

    async def _run(self, deposit: BridgeDeposit) -> MintJob:
        job, resume = await self._admit(deposit)
        if not resume:
            return job

        content: Optional[DecodedContent] = None
        if job.status == MintJobStatus.VERIFYING:
            job, content = await self._verify(job)
            if job.status == MintJobStatus.FAILED:
                return job

        if job.status == MintJobStatus.NONCING:
            if job.nonce is not None:
                # Allocated but never broadcast by an earlier run
                job = await self._update(job.id, lambda j: j.reset_nonce())
            return await self._submit(job, content)

        if job.status == MintJobStatus.SUBMITTED:
            return await self._resume_submitted(job)

        return job

    async def _admit(self, deposit: BridgeDeposit) -> tuple[MintJob, bool]:
        """Pre-mint existence check and job creation.

        Returns:
            Tuple of (job, whether this call should drive it)
        """
        hash_id = deposit.hash_id.lower()
        l1_tx_hash = deposit.l1_tx_hash.lower()

        async with await self.uow_factory() as uow:
            confirmed = await uow.mint_jobs.get_confirmed(hash_id)
            if confirmed is not None:
                logger.info(
                    "mint.already_minted",
                    hash_id=hash_id,
                    job_id=str(confirmed.id),
                    l1_tx_hash=l1_tx_hash,
                )
                return confirmed, False

            existing = await uow.mint_jobs.get_by_deposit(hash_id, l1_tx_hash)
            if existing is not None:
                if existing.is_terminal:
                    return existing, False
                logger.info(
                    "mint.resuming", job_id=str(existing.id), status=existing.status.value
                )
                return existing, True

            in_flight = await uow.mint_jobs.get_in_flight(hash_id)
            if in_flight:
                logger.info(
                    "mint.duplicate_deposit_ignored",
                    hash_id=hash_id,
                    job_id=str(in_flight[0].id),
                    l1_tx_hash=l1_tx_hash,
                )
                return in_flight[0], False

            job = MintJob(
                hash_id=hash_id,
                l1_tx_hash=l1_tx_hash,
                origin_owner=deposit.origin_owner.lower(),
                locked_content_hash=deposit.locked_content_hash,
                status_history=[MintJobStatus.VERIFYING.value],
            )
            await uow.mint_jobs.add(job)

        logger.info("mint.job_created", job_id=str(job.id), hash_id=hash_id, l1_tx_hash=l1_tx_hash)
        return job, True

    async def _update(self, job_id: UUID, mutate: Callable[[MintJob], Any]) -> MintJob:
        async with await self.uow_factory() as uow:
            job = await uow.mint_jobs.get_by_id(job_id)
            if job is None:
                raise LookupError(f"Mint job {job_id} disappeared")
            mutate(job)
            await uow.mint_jobs.save(job)
        return job

    async def _origin_payload(self, hash_id: str) -> Optional[Any]:
        tx = await self.l1_client.get_transaction(hash_id)
        return tx["input"] if tx is not None else None

    async def _verify(self, job: MintJob) -> tuple[MintJob, Optional[DecodedContent]]:
        raw = await self._origin_payload(job.hash_id)
        if raw is None:
            reason, content = UNKNOWN_TOKEN, None
        else:
            result = await self.verification_service.verify(
                job.hash_id, raw, job.locked_content_hash
            )
            reason, content = result.reason, result.content

        if content is None:
            job = await self._update(
                job.id, lambda j: j.mark_failed({"stage": "verification", "reason": reason})
            )
            logger.warning("mint.verification_failed", job_id=str(job.id), reason=reason)
            return job, None

        job = await self._update(job.id, lambda j: j.mark_noncing())
        return job, content

    async def _load_content(self, hash_id: str) -> DecodedContent:
        raw = await self._origin_payload(hash_id)
        if raw is None:
            raise InvalidContentError(f"Origin transaction {hash_id} not found")
        return self.image_uri_service.decode(raw)

    async def _token_uri(self, job: MintJob, content: DecodedContent) -> str:
        async with await self.uow_factory() as uow:
            ethscription = await uow.ethscriptions.get(job.hash_id)
            token_id = ethscription.token_id if ethscription else None
        return self.image_uri_service.metadata_uri(job.hash_id, content, token_id)

    async def _chain_id_l2(self) -> int:
        if self._chain_id is None:
            self._chain_id = await self.l2_client.chain_id()
        return self._chain_id

    async def _base_tx(self, job: MintJob, content: Optional[DecodedContent]) -> dict:
        if content is None:
            content = await self._load_content(job.hash_id)
        token_uri = await self._token_uri(job, content)
        data = build_mint_calldata(job.origin_owner, job.hash_id, content.content_hash, token_uri)
        return {
            "from": self.signer,
            "to": self.bridge_address,
            "data": Web3.to_hex(data),
            "value": 0,
        }

    async def _submit(self, job: MintJob, content: Optional[DecodedContent]) -> MintJob:
        """Allocate a nonce, estimate gas and broadcast the first transaction."""
        nonce = await self.nonce_service.allocate(self.signer)
        job = await self._update(job.id, lambda j: j.assign_nonce(self.signer, nonce))
        logger.info("mint.nonce_allocated", job_id=str(job.id), nonce=nonce)

        try:
            base_tx = await self._base_tx(job, content)
            estimated = await self.l2_client.estimate_gas(base_tx)
        except (TransientError, InvalidContentError):
            await self._unwind_nonce(job)
            raise
        except Exception as e:
            message = str(e).lower()
            if not _is_rejection(message):
                await self._unwind_nonce(job)
                raise GasEstimationError(f"Gas estimation failed: {e}") from e
            await self.nonce_service.release(nonce, self.signer)
            error_data = {"stage": "estimate_gas", "reason": "rejected", "error": str(e)}
            job = await self._update(job.id, lambda j: j.mark_failed(error_data))
            logger.error("mint.rejected_before_broadcast", job_id=str(job.id), error=str(e))
            return job

        base_tx["gas"] = int(estimated * self.gas_buffer)
        return await self._broadcast_until_final(job, base_tx)

    async def _unwind_nonce(self, job: MintJob) -> None:
        """Give back a never-broadcast nonce; the job stays noncing for a retry."""
        if job.nonce is None:
            return
        await self.nonce_service.release(job.nonce, self.signer)
        await self._update(job.id, lambda j: j.reset_nonce())

    async def _resume_submitted(self, job: MintJob) -> MintJob:
        """Poll recorded hashes; resubmit at the same nonce if none landed."""
        await self.nonce_service.adopt(job.nonce, self.signer)  # type: ignore[arg-type]

        found = await self._await_receipt(job, self.confirmation_attempts)
        if found is not None:
            return await self._finalize(job, *found)

        base_tx = await self._base_tx(job, None)
        base_tx["gas"] = int(await self.l2_client.estimate_gas(base_tx) * self.gas_buffer)
        return await self._broadcast_until_final(job, base_tx)

    async def _fees(self, job: MintJob) -> tuple[int, int]:
        max_fee, priority_fee = await self.l2_client.fee_params()
        multiplier = self.fee_bump ** job.submit_attempts
        return math.ceil(max_fee * multiplier), math.ceil(priority_fee * multiplier)

    async def _broadcast_until_final(self, job: MintJob, base_tx: dict) -> MintJob:
        """Broadcast at the job's nonce, replacing with bumped fees until final.

        Raises:
            TransientError: Submit budget exhausted with no receipt
        """
        nonce: int = job.nonce  # type: ignore[assignment]
        sends = 0
        while True:
            if sends >= self.max_submit_attempts:
                logger.error(
                    "mint.submit_budget_exhausted",
                    job_id=str(job.id),
                    nonce=job.nonce,
                    tx_hashes=job.tx_hashes,
                )
                raise TransactionSubmissionError(
                    f"No receipt for mint job {job.id} after {sends} broadcasts at nonce {nonce}"
                )

            max_fee, priority_fee = await self._fees(job)
            signed = self.account.sign_transaction(
                {
                    **base_tx,
                    "nonce": nonce,
                    "maxFeePerGas": max_fee,
                    "maxPriorityFeePerGas": priority_fee,
                    "chainId": await self._chain_id_l2(),
                    "type": 2,
                }
            )
            tx_hash = Web3.to_hex(signed.hash)
            first_broadcast = not job.tx_hashes
            job = await self._update(job.id, lambda j: j.mark_submitted(tx_hash))
            sends += 1

            poll_attempts = self.confirmation_attempts
            try:
                await self.l2_client.send_raw_transaction(signed.raw_transaction)
                logger.info(
                    "mint.submitted",
                    job_id=str(job.id),
                    tx_hash=tx_hash,
                    nonce=nonce,
                    attempt=job.submit_attempts,
                    max_fee_per_gas=max_fee,
                )
            except TransientError as e:
                # May or may not have reached the node; check once, then replace
                logger.warning(
                    "mint.submit_transient", job_id=str(job.id), tx_hash=tx_hash, error=str(e)
                )
                poll_attempts = 1
            except Exception as e:
                error = str(e)
                message = error.lower()
                if "already known" in message:
                    logger.info("mint.already_known", job_id=str(job.id), tx_hash=tx_hash)
                elif "nonce too low" in message:
                    await self.nonce_service.mark_broadcast(nonce, self.signer)
                    return await self._nonce_consumed(job)
                elif "underpriced" in message:
                    logger.warning(
                        "mint.replacement_underpriced", job_id=str(job.id), tx_hash=tx_hash
                    )
                    poll_attempts = 1
                elif first_broadcast and _is_rejection(message):
                    await self.nonce_service.release(nonce, self.signer)
                    error_data = {
                        "stage": "submit",
                        "reason": "rejected",
                        "error": error,
                        "tx_hash": tx_hash,
                    }
                    job = await self._update(job.id, lambda j: j.mark_failed(error_data))
                    logger.error("mint.rejected_before_broadcast", job_id=str(job.id), error=error)
                    return job
                else:
                    logger.warning(
                        "mint.submit_failed", job_id=str(job.id), tx_hash=tx_hash, error=error
                    )
                    poll_attempts = 1

            await self.nonce_service.mark_broadcast(nonce, self.signer)

            found = await self._await_receipt(job, poll_attempts)
            if found is not None:
                return await self._finalize(job, *found)

    async def _await_receipt(self, job: MintJob, attempts: int) -> Optional[tuple[str, Any]]:
        """Poll receipts of every broadcast hash with exponential backoff.

        Returns:
            Tuple of (tx_hash, receipt) for the first hash found, or None
        """
        for attempt in range(attempts):
            for tx_hash in reversed(job.tx_hashes):
                try:
                    receipt = await self.l2_client.get_transaction_receipt(tx_hash)
                except TransientError as e:
                    logger.warning("mint.receipt_poll_failed", tx_hash=tx_hash, error=str(e))
                    continue
                if receipt is not None:
                    return tx_hash, receipt
            if attempt + 1 < attempts:
                await asyncio.sleep(self.confirmation_backoff_seconds * 2**attempt)
        return None

    async def _nonce_consumed(self, job: MintJob) -> MintJob:
        """Handle ``nonce too low``: one of our hashes landed, or the nonce is lost."""
        found = await self._await_receipt(job, self.confirmation_attempts)
        if found is not None:
            return await self._finalize(job, *found)

        await self.nonce_service.confirm(job.nonce, self.signer)  # type: ignore[arg-type]
        job = await self._update(
            job.id,
            lambda j: j.mark_failed(
                {"stage": "submit", "reason": "nonce_consumed", "nonce": j.nonce}
            ),
        )
        logger.error("mint.nonce_consumed", job_id=str(job.id), nonce=job.nonce)
        return job

    async def _finalize(self, job: MintJob, tx_hash: str, receipt: Any) -> MintJob:
        if receipt["status"] != 1:
            # The nonce is used on-chain by the reverted transaction
            await self.nonce_service.confirm(job.nonce, self.signer)  # type: ignore[arg-type]
            job = await self._update(
                job.id,
                lambda j: j.mark_failed(
                    {
                        "stage": "confirm",
                        "reason": "reverted",
                        "tx_hash": tx_hash,
                        "block_number": receipt["blockNumber"],
                    }
                ),
            )
            logger.error(
                "mint.reverted",
                job_id=str(job.id),
                tx_hash=tx_hash,
                block_number=receipt["blockNumber"],
            )
            return job

        async with await self.uow_factory() as uow:
            job = await uow.mint_jobs.get_by_id(job.id)  # type: ignore[assignment]
            job.mark_confirmed(tx_hash)
            await uow.mint_jobs.save(job)

            ethscription = await uow.ethscriptions.get(job.hash_id)
            if ethscription is not None:
                ethscription.l2_owner = job.origin_owner
                ethscription.l2_tx_hash = tx_hash
                ethscription.updated_at = utcnow()
                await uow.ethscriptions.save(ethscription)

            await uow.users.get_or_create(job.origin_owner)
            tx_id = f"{tx_hash}-mint"
            if not await uow.events.exists(tx_id):
                await uow.events.add(
                    ChainEvent(
                        tx_id=tx_id,
                        chain=Chain.L2,
                        kind=EventKind.BRIDGE_DEPOSIT,
                        name="BridgeMint",
                        hash_id=job.hash_id,
                        from_address=self.signer.lower(),
                        to_address=job.origin_owner,
                        tx_hash=tx_hash,
                        log_index=0,
                        block_number=receipt["blockNumber"],
                    )
                )

        await self.nonce_service.confirm(job.nonce, self.signer)  # type: ignore[arg-type]
        logger.info(
            "mint.confirmed",
            job_id=str(job.id),
            hash_id=job.hash_id,
            tx_hash=tx_hash,
            nonce=job.nonce,
            block_number=receipt["blockNumber"],
            submit_attempts=job.submit_attempts,
        )
        return job
