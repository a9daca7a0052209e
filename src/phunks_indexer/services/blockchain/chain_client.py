"""Chain access for one chain (L1 or L2) on top of web3's AsyncWeb3."""

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

import aiohttp
import structlog
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import BlockNotFound, TransactionNotFound

from phunks_indexer.models.enums import Chain
from phunks_indexer.services.exceptions import ChainConnectionError, RpcTimeoutError

logger = structlog.get_logger()

T = TypeVar("T")


class ChainClient:
    """Thin async RPC wrapper with bounded calls.

    Every call is bounded by ``timeout``. Timeouts raise RpcTimeoutError and
    connection failures raise ChainConnectionError (both transient). Read calls
    retry with exponential backoff (1, 2, 4 s by default); sends never retry here.
    """

    def __init__(
        self,
        chain: Chain,
        w3: AsyncWeb3,
        timeout: float = 30.0,
        read_retries: int = 3,
        backoff_seconds: float = 1.0,
    ):
        self.chain = chain
        self.w3 = w3
        self.timeout = timeout
        self.read_retries = read_retries
        self.backoff_seconds = backoff_seconds

    @classmethod
    def from_url(cls, chain: Chain, rpc_url: str, timeout: float = 30.0) -> "ChainClient":
        w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        return cls(chain, w3, timeout=timeout)

    async def _once(self, op: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(fn(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise RpcTimeoutError(f"{self.chain.value} {op} timed out after {self.timeout}s") from e
        except (aiohttp.ClientError, ConnectionError) as e:
            raise ChainConnectionError(f"{self.chain.value} {op} failed: {e}") from e

    async def _call(self, op: str, fn: Callable[[], Awaitable[T]], retry: bool = True) -> T:
        attempts = self.read_retries + 1 if retry else 1
        attempt = 0
        while True:
            try:
                return await self._once(op, fn)
            except (RpcTimeoutError, ChainConnectionError) as e:
                attempt += 1
                if attempt >= attempts:
                    raise
                delay = self.backoff_seconds * 2 ** (attempt - 1)
                logger.warning(
                    "chain.rpc_retry",
                    chain=self.chain.value,
                    op=op,
                    attempt=attempt,
                    delay=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)

    async def block_number(self) -> int:
        return await self._call("block_number", lambda: self.w3.eth.block_number)

    async def chain_id(self) -> int:
        return await self._call("chain_id", lambda: self.w3.eth.chain_id)

    async def get_block(self, block_number: int | str) -> Optional[Any]:
        """Fetch a block header; None when the node does not have it yet."""
        try:
            return await self._call("get_block", lambda: self.w3.eth.get_block(block_number))
        except BlockNotFound:
            return None

    async def get_logs(self, block_number: int, addresses: list[str]) -> list[Any]:
        """Fetch logs of one block emitted by the given contracts."""
        if not addresses:
            return []
        params = {
            "fromBlock": block_number,
            "toBlock": block_number,
            "address": [Web3.to_checksum_address(address) for address in addresses],
        }
        return list(await self._call("get_logs", lambda: self.w3.eth.get_logs(params)))  # type: ignore[arg-type]

    async def get_transaction(self, tx_hash: str) -> Optional[Any]:
        try:
            return await self._call(
                "get_transaction",
                lambda: self.w3.eth.get_transaction(tx_hash),  # type: ignore[arg-type]
            )
        except TransactionNotFound:
            return None

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Any]:
        """Fetch a receipt; None while the transaction is unknown or pending."""
        try:
            return await self._call(
                "get_transaction_receipt",
                lambda: self.w3.eth.get_transaction_receipt(tx_hash),  # type: ignore[arg-type]
            )
        except TransactionNotFound:
            return None

    async def get_transaction_count(self, address: str, block_identifier: str = "latest") -> int:
        return await self._call(
            "get_transaction_count",
            lambda: self.w3.eth.get_transaction_count(
                Web3.to_checksum_address(address), block_identifier  # type: ignore[arg-type]
            ),
        )

    async def estimate_gas(self, tx: dict) -> int:
        return await self._call("estimate_gas", lambda: self.w3.eth.estimate_gas(tx))  # type: ignore[arg-type]

    async def fee_params(self) -> tuple[int, int]:
        """EIP-1559 fee parameters.

        Returns:
            Tuple of (max_fee_per_gas, max_priority_fee_per_gas)
        """
        max_priority_fee = await self._call(
            "max_priority_fee", lambda: self.w3.eth.max_priority_fee
        )
        latest_block = await self._call("get_block", lambda: self.w3.eth.get_block("latest"))
        base_fee = latest_block.get("baseFeePerGas", 0)
        return int(base_fee * 2 + max_priority_fee), int(max_priority_fee)

    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        """Broadcast a signed transaction (never retried at this layer).

        Returns:
            Transaction hash (0x-prefixed hex)
        """
        tx_hash = await self._call(
            "send_raw_transaction",
            lambda: self.w3.eth.send_raw_transaction(raw_transaction),
            retry=False,
        )
        return Web3.to_hex(tx_hash)
