"""EVM chain client with multi-RPC failover support."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TransactionNotFound, Web3RPCError
from web3.middleware import ExtraDataToPOAMiddleware

from turbo_credits.core.config import EVMNetwork, get_settings

logger = logging.getLogger(__name__)


class ChainClient(ABC):
    """Abstract base class for EVM chain clients."""

    @abstractmethod
    async def get_block_number(self) -> int:
        """Get current block number."""
        ...

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        """Get transaction receipt, None while pending."""
        ...

    @abstractmethod
    async def send_raw_transaction(self, signed_tx: bytes) -> str:
        """Send a signed raw transaction once."""
        ...


class EVMClient(ChainClient):
    """EVM JSON-RPC client with multi-RPC failover."""

    def __init__(
        self,
        rpc_urls: list[str],
        chain_id: int,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        poa: bool = False,
    ):
        """Initialize EVM client.

        Args:
            rpc_urls: List of RPC endpoints (primary + backups)
            chain_id: Chain ID served by the endpoints
            max_retries: Maximum retry attempts per RPC
            retry_delay: Delay between retries in seconds
            poa: Inject the POA extraData middleware
        """
        if not rpc_urls:
            raise ValueError(f"No RPC endpoints configured for chain {chain_id}")

        settings = get_settings()
        self.rpc_urls = rpc_urls
        self.chain_id = chain_id
        self.max_retries = max_retries if max_retries is not None else settings.rpc_max_retries
        self.retry_delay = retry_delay if retry_delay is not None else settings.rpc_retry_delay
        self.poa = poa
        self._current_rpc_index = 0
        self._web3: AsyncWeb3 | None = None

    @classmethod
    def for_network(cls, network: EVMNetwork, **kwargs: Any) -> "EVMClient":
        """Create a client for a configured network."""
        return cls(rpc_urls=network.rpc_urls, chain_id=network.chain_id, **kwargs)

    @property
    def web3(self) -> AsyncWeb3:
        """Get or create Web3 instance."""
        if self._web3 is None:
            self._web3 = self._create_web3()
        return self._web3

    def _create_web3(self, rpc_index: int | None = None) -> AsyncWeb3:
        """Create Web3 instance for specified RPC."""
        index = rpc_index if rpc_index is not None else self._current_rpc_index
        w3 = AsyncWeb3(AsyncHTTPProvider(self.rpc_urls[index]))
        if self.poa:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return w3

    async def _execute_with_failover(
        self, method: str, *args: Any, **kwargs: Any
    ) -> Any:
        """Execute method with automatic RPC failover.

        Args:
            method: Web3 method name to call
            *args: Positional arguments for the method
            **kwargs: Keyword arguments for the method

        Returns:
            Result from the Web3 method

        Raises:
            Web3RPCError: If all RPCs fail
        """
        last_error: Exception | None = None

        for rpc_offset in range(len(self.rpc_urls)):
            rpc_index = (self._current_rpc_index + rpc_offset) % len(self.rpc_urls)
            web3 = self._create_web3(rpc_index)

            for attempt in range(self.max_retries):
                try:
                    web3_method = getattr(web3.eth, method)
                    result = await web3_method(*args, **kwargs)

                    # Stick to the endpoint that answered
                    self._current_rpc_index = rpc_index
                    self._web3 = web3

                    return result

                except TransactionNotFound:
                    raise

                except Exception as e:
                    last_error = e
                    logger.warning(
                        f"RPC {self.rpc_urls[rpc_index]} failed (attempt {attempt + 1}): {e}"
                    )
                    if attempt < self.max_retries - 1:
                        await asyncio.sleep(self.retry_delay * (attempt + 1))

            logger.warning(
                f"Switching from RPC {self.rpc_urls[rpc_index]} to next backup"
            )

        raise Web3RPCError(f"All RPCs failed. Last error: {last_error}")

    async def get_block_number(self) -> int:
        """Get current block number."""
        return await self._execute_with_failover("get_block_number")

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        """Get transaction receipt, None while the transaction is pending."""
        try:
            receipt = await self._execute_with_failover("get_transaction_receipt", tx_hash)
        except TransactionNotFound:
            return None
        return dict(receipt) if receipt else None

    async def send_raw_transaction(self, signed_tx: bytes) -> str:
        """Send signed raw transaction to the current RPC, without retries.

        Args:
            signed_tx: Signed transaction bytes

        Returns:
            Transaction hash as 0x-prefixed hex string
        """
        tx_hash = await self.web3.eth.send_raw_transaction(signed_tx)
        return AsyncWeb3.to_hex(tx_hash)
