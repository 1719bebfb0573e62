"""Chain adapters that submit purchase transactions and report their progress."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable

from web3.exceptions import Web3RPCError

from turbo_credits.core.config import EVMNetwork, Settings
from turbo_credits.core.errors import AdapterObservationError, AdapterSubmissionError
from turbo_credits.infrastructure.blockchain.client import ChainClient, EVMClient
from turbo_credits.infrastructure.blockchain.substrate import (
    SubstrateConnectionError,
    SubstrateRPC,
    SubstrateRPCError,
    Subscription,
    extrinsic_hash,
    hex_to_int,
)
from turbo_credits.services.transaction.schemas import (
    ChainType,
    PurchaseRequest,
    RawEvent,
    RawStage,
)

logger = logging.getLogger(__name__)

# Blocks before the first seen head searched for an already included extrinsic
INCLUSION_LOOKBACK_BLOCKS = 10

# Seconds after submission before a block search gives up
INCLUSION_TIMEOUT = 600.0

AVAIL_FAILURE_STATUSES = {
    "dropped": "Transaction dropped from the pool",
    "invalid": "Transaction is invalid",
    "usurped": "Transaction usurped by another with the same nonce",
}


@dataclass
class AdapterHandle:
    """Submitted transaction plus what has been observed so far.

    Observation resumes from this state when it is restarted.
    """

    chain_type: ChainType
    txn_hash: str
    chain_id: int | None = None
    last_stage: RawStage | None = None
    blockhash: str | None = None
    block_number: int | None = None
    confirmations: int = 0
    started_at: float | None = None
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)
    rpc: SubstrateRPC | None = None
    watch: Subscription | None = None

    @property
    def is_cancelled(self) -> bool:
        """Check if observation was cancelled."""
        return self.cancelled.is_set()


class ChainAdapter(ABC):
    """Submits a transaction to one chain family and streams its progress."""

    chain_type: ChainType

    @abstractmethod
    async def submit(self, request: PurchaseRequest) -> AdapterHandle:
        """Broadcast a signed transaction, or adopt one the wallet broadcast.

        Raises:
            AdapterSubmissionError: If the node rejects the transaction or is unreachable
        """
        ...

    @abstractmethod
    def observe(self, handle: AdapterHandle) -> AsyncIterator[RawEvent]:
        """Stream progress events until the transaction settles or is cancelled.

        Raises:
            AdapterObservationError: If the connection drops mid-observation
        """
        ...

    async def cancel(self, handle: AdapterHandle) -> None:
        """Stop observing and release connections held for the handle."""
        handle.cancelled.set()
        await self.release(handle)

    async def release(self, handle: AdapterHandle) -> None:
        """Release connections held for the handle."""

    def _event(self, handle: AdapterHandle, stage: RawStage, **kwargs: Any) -> RawEvent:
        """Build an event and remember the stage on the handle."""
        if stage != RawStage.FAILED:
            handle.last_stage = stage
        return RawEvent(stage=stage, txn_hash=handle.txn_hash, **kwargs)


def map_extrinsic_status(status: str | dict[str, Any]) -> tuple[RawStage | None, str | None]:
    """Map an ``author_extrinsicUpdate`` status onto a raw stage.

    Returns:
        Tuple of (stage, detail). Detail is the block hash for block stages and
        the failure reason for failures. Stage is None for informational statuses.
    """
    if isinstance(status, str):
        if status in ("ready", "future"):
            return RawStage.BROADCAST, None
        if status in AVAIL_FAILURE_STATUSES:
            return RawStage.FAILED, AVAIL_FAILURE_STATUSES[status]
        return None, None

    kind, value = next(iter(status.items()))
    if kind == "broadcast":
        return RawStage.BROADCAST, None
    if kind == "inBlock":
        return RawStage.INBLOCK, value
    if kind == "finalized":
        return RawStage.FINALITY, value
    if kind in AVAIL_FAILURE_STATUSES:
        return RawStage.FAILED, AVAIL_FAILURE_STATUSES[kind]
    return None, value


class AvailAdapter(ChainAdapter):
    """Avail adapter over substrate JSON-RPC websockets."""

    chain_type = ChainType.AVAIL

    def __init__(
        self,
        rpc_url: str,
        rpc_factory: Callable[[str], SubstrateRPC] = SubstrateRPC,
        lookback_blocks: int = INCLUSION_LOOKBACK_BLOCKS,
        inclusion_timeout: float = INCLUSION_TIMEOUT,
    ):
        """Initialize Avail adapter.

        Args:
            rpc_url: Avail websocket RPC endpoint
            rpc_factory: Creates an RPC client for an endpoint
            lookback_blocks: Blocks searched behind the first head on recovery
            inclusion_timeout: Seconds to search for the extrinsic before failing
        """
        self.rpc_url = rpc_url
        self.rpc_factory = rpc_factory
        self.lookback_blocks = lookback_blocks
        self.inclusion_timeout = inclusion_timeout

    async def submit(self, request: PurchaseRequest) -> AdapterHandle:
        """Submit a signed extrinsic and watch it."""
        started_at = asyncio.get_running_loop().time()
        if request.signed_payload is None:
            logger.info(f"Adopting broadcast extrinsic {request.txn_hash}")
            return AdapterHandle(
                chain_type=self.chain_type, txn_hash=request.txn_hash, started_at=started_at
            )

        try:
            txn_hash = extrinsic_hash(request.signed_payload)
        except ValueError as e:
            raise AdapterSubmissionError(
                f"Extrinsic is not hex encoded: {e}", status_code=422
            ) from e

        rpc = self.rpc_factory(self.rpc_url)
        try:
            await rpc.connect()
            watch = await rpc.subscribe(
                "author_submitAndWatchExtrinsic",
                [request.signed_payload],
                "author_unwatchExtrinsic",
            )
        except (SubstrateRPCError, SubstrateConnectionError) as e:
            await rpc.close()
            raise AdapterSubmissionError(f"Avail rejected extrinsic: {e}") from e

        logger.info(f"Submitted extrinsic {txn_hash} to {self.rpc_url}")
        return AdapterHandle(
            chain_type=self.chain_type,
            txn_hash=txn_hash,
            started_at=started_at,
            rpc=rpc,
            watch=watch,
        )

    async def observe(self, handle: AdapterHandle) -> AsyncIterator[RawEvent]:
        """Stream extrinsic progress, from the watch or by scanning blocks."""
        if handle.is_cancelled:
            return
        try:
            if handle.watch is not None:
                async for event in self._watch(handle):
                    yield event
            else:
                async for event in self._recover(handle):
                    yield event
        except (SubstrateConnectionError, SubstrateRPCError) as e:
            handle.watch = None
            raise AdapterObservationError(f"Avail subscription lost: {e}") from e

    async def release(self, handle: AdapterHandle) -> None:
        """Unwatch and close the websocket connection."""
        if handle.watch is not None:
            await handle.watch.unsubscribe()
            handle.watch = None
        if handle.rpc is not None:
            await handle.rpc.close()
            handle.rpc = None

    async def _watch(self, handle: AdapterHandle) -> AsyncIterator[RawEvent]:
        """Relay ``author_submitAndWatchExtrinsic`` updates."""
        async for status in handle.watch:
            if handle.is_cancelled:
                return

            stage, detail = map_extrinsic_status(status)
            if stage is None:
                logger.info(f"Extrinsic {handle.txn_hash} update: {status}")
                continue

            if stage == RawStage.FAILED:
                yield self._event(handle, stage, reason=detail)
                return

            if detail:
                handle.blockhash = detail
            yield self._event(handle, stage, blockhash=handle.blockhash)

            if stage == RawStage.FINALITY:
                return

    async def _connect(self, handle: AdapterHandle) -> SubstrateRPC:
        """Get a connected RPC client for the handle."""
        if handle.rpc is None or not handle.rpc.is_connected:
            if handle.rpc is not None:
                await handle.rpc.close()
            handle.rpc = self.rpc_factory(self.rpc_url)
            await handle.rpc.connect()
        return handle.rpc

    async def _recover(self, handle: AdapterHandle) -> AsyncIterator[RawEvent]:
        """Find the extrinsic on chain and wait until its block is finalized."""
        loop = asyncio.get_running_loop()
        if handle.started_at is None:
            handle.started_at = loop.time()
        rpc = await self._connect(handle)

        if handle.last_stage is None:
            yield self._event(handle, RawStage.BROADCAST)

        while not handle.is_cancelled:
            if handle.blockhash is None:
                remaining = self.inclusion_timeout - (loop.time() - handle.started_at)
                try:
                    found = await asyncio.wait_for(
                        self._scan_for_inclusion(handle, rpc), timeout=max(remaining, 0.0)
                    )
                except asyncio.TimeoutError:
                    logger.warning(
                        f"Extrinsic {handle.txn_hash} not included within "
                        f"{self.inclusion_timeout}s"
                    )
                    yield self._event(handle, RawStage.FAILED, reason="timeout")
                    return
                if not found:
                    return
                yield self._event(
                    handle,
                    RawStage.INBLOCK,
                    blockhash=handle.blockhash,
                    block_number=handle.block_number,
                )
            elif handle.block_number is None:
                header = await rpc.call("chain_getHeader", [handle.blockhash])
                if header is None:
                    logger.warning(
                        f"Block {handle.blockhash} unknown, searching for {handle.txn_hash} again"
                    )
                    handle.blockhash = None
                    continue
                handle.block_number = hex_to_int(header["number"])

            if await self._wait_finalized(handle, rpc):
                yield self._event(
                    handle,
                    RawStage.FINALITY,
                    blockhash=handle.blockhash,
                    block_number=handle.block_number,
                )
                return

    async def _scan_for_inclusion(self, handle: AdapterHandle, rpc: SubstrateRPC) -> bool:
        """Scan new heads for the extrinsic, recording the including block."""
        heads = await rpc.subscribe(
            "chain_subscribeNewHeads", [], "chain_unsubscribeNewHeads"
        )
        next_number: int | None = None
        try:
            async for header in heads:
                if handle.is_cancelled:
                    return False
                number = hex_to_int(header["number"])
                if next_number is None:
                    next_number = max(number - self.lookback_blocks, 0)

                while next_number <= number:
                    blockhash = await rpc.call("chain_getBlockHash", [next_number])
                    if await self._block_contains(rpc, blockhash, handle.txn_hash):
                        handle.blockhash = blockhash
                        handle.block_number = next_number
                        logger.info(
                            f"Found extrinsic {handle.txn_hash} in block {next_number}"
                        )
                        return True
                    next_number += 1
        finally:
            await heads.unsubscribe()
        return False

    async def _block_contains(self, rpc: SubstrateRPC, blockhash: str, txn_hash: str) -> bool:
        """Check if a block includes the extrinsic."""
        block = await rpc.call("chain_getBlock", [blockhash])
        extrinsics = (block or {}).get("block", {}).get("extrinsics", [])
        return any(extrinsic_hash(ext) == txn_hash for ext in extrinsics)

    async def _wait_finalized(self, handle: AdapterHandle, rpc: SubstrateRPC) -> bool:
        """Wait until the inclusion height is finalized.

        Returns:
            True when the inclusion block is canonical at that height, False when it
            was retracted and the extrinsic must be searched for again
        """
        heads = await rpc.subscribe(
            "chain_subscribeFinalizedHeads", [], "chain_unsubscribeFinalizedHeads"
        )
        try:
            async for header in heads:
                if handle.is_cancelled:
                    return False
                if hex_to_int(header["number"]) < handle.block_number:
                    continue

                canonical = await rpc.call("chain_getBlockHash", [handle.block_number])
                if canonical == handle.blockhash:
                    return True

                logger.warning(
                    f"Block {handle.blockhash} retracted, searching for {handle.txn_hash} again"
                )
                handle.blockhash = None
                handle.block_number = None
                return False
        finally:
            await heads.unsubscribe()
        return False


class EVMAdapter(ChainAdapter):
    """EVM adapter polling transaction receipts."""

    chain_type = ChainType.EVM

    def __init__(
        self,
        networks: dict[int, EVMNetwork],
        poll_interval: float = 2.0,
        receipt_timeout: float = 300.0,
        client_factory: Callable[[EVMNetwork], ChainClient] = EVMClient.for_network,
    ):
        """Initialize EVM adapter.

        Args:
            networks: Supported networks keyed by chain ID
            poll_interval: Seconds between receipt polls
            receipt_timeout: Seconds to wait for a receipt before failing
            client_factory: Creates a chain client for a network
        """
        self.networks = networks
        self.poll_interval = poll_interval
        self.receipt_timeout = receipt_timeout
        self.client_factory = client_factory
        self._clients: dict[int, ChainClient] = {}

    def client_for(self, chain_id: int) -> ChainClient:
        """Get or create the client for a chain."""
        if chain_id not in self._clients:
            network = self.networks.get(chain_id)
            if network is None:
                raise ValueError(f"Unsupported EVM chain {chain_id}")
            self._clients[chain_id] = self.client_factory(network)
        return self._clients[chain_id]

    def threshold_for(self, chain_id: int) -> int:
        """Confirmations treated as final on a chain."""
        network = self.networks.get(chain_id)
        return network.finalised_threshold if network else 1

    async def submit(self, request: PurchaseRequest) -> AdapterHandle:
        """Send a signed raw transaction once, or adopt a wallet broadcast hash."""
        try:
            client = self.client_for(request.chain_id)
        except ValueError as e:
            raise AdapterSubmissionError(str(e), status_code=422) from e

        loop = asyncio.get_running_loop()
        if request.signed_payload is None:
            logger.info(f"Adopting broadcast transaction {request.txn_hash}")
            return AdapterHandle(
                chain_type=self.chain_type,
                txn_hash=request.txn_hash,
                chain_id=request.chain_id,
                started_at=loop.time(),
            )

        try:
            raw = bytes.fromhex(request.signed_payload.removeprefix("0x"))
        except ValueError as e:
            raise AdapterSubmissionError(
                f"Transaction is not hex encoded: {e}", status_code=422
            ) from e

        try:
            txn_hash = await client.send_raw_transaction(raw)
        except Exception as e:
            raise AdapterSubmissionError(
                f"Chain {request.chain_id} rejected transaction: {e}"
            ) from e

        logger.info(f"Sent transaction {txn_hash} on chain {request.chain_id}")
        return AdapterHandle(
            chain_type=self.chain_type,
            txn_hash=txn_hash,
            chain_id=request.chain_id,
            started_at=loop.time(),
        )

    async def observe(self, handle: AdapterHandle) -> AsyncIterator[RawEvent]:
        """Poll the receipt until enough confirmations, a revert, or timeout."""
        if handle.is_cancelled:
            return
        client = self.client_for(handle.chain_id)
        threshold = self.threshold_for(handle.chain_id)
        loop = asyncio.get_running_loop()
        if handle.started_at is None:
            handle.started_at = loop.time()

        if handle.last_stage is None:
            yield self._event(handle, RawStage.BROADCAST)

        while not handle.is_cancelled:
            try:
                receipt = await client.get_transaction_receipt(handle.txn_hash)
                latest = await client.get_block_number() if receipt else None
            except Web3RPCError as e:
                raise AdapterObservationError(f"Receipt polling failed: {e}") from e

            if receipt is None:
                if loop.time() - handle.started_at >= self.receipt_timeout:
                    yield self._event(handle, RawStage.FAILED, reason="timeout")
                    return
            elif receipt.get("status") == 0:
                yield self._event(
                    handle,
                    RawStage.FAILED,
                    reason="Transaction reverted",
                    block_number=receipt.get("blockNumber"),
                )
                return
            else:
                block_number = receipt["blockNumber"]
                confirmations = max(latest - block_number + 1, 1)
                if confirmations >= threshold:
                    handle.confirmations = confirmations
                    yield self._event(
                        handle,
                        RawStage.COMPLETED,
                        block_number=block_number,
                        confirmations=confirmations,
                    )
                    return
                if confirmations > handle.confirmations:
                    handle.confirmations = confirmations
                    yield self._event(
                        handle,
                        RawStage.INBLOCK,
                        block_number=block_number,
                        confirmations=confirmations,
                    )

            if await self._sleep(handle, self.poll_interval):
                return

    async def _sleep(self, handle: AdapterHandle, seconds: float) -> bool:
        """Sleep between polls, returning True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(handle.cancelled.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False


def build_adapters(settings: Settings) -> dict[ChainType, ChainAdapter]:
    """Create one adapter per chain family from settings."""
    return {
        ChainType.AVAIL: AvailAdapter(
            settings.avail_rpc_url,
            lookback_blocks=settings.avail_lookback_blocks,
            inclusion_timeout=settings.avail_inclusion_timeout,
        ),
        ChainType.EVM: EVMAdapter(
            settings.evm_networks,
            poll_interval=settings.evm_poll_interval,
            receipt_timeout=settings.evm_receipt_timeout,
        ),
    }
