"""Substrate JSON-RPC client over websockets for the Avail chain."""

import asyncio
import hashlib
import itertools
import json
import logging
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

logger = logging.getLogger(__name__)

_CLOSED = object()


class SubstrateRPCError(Exception):
    """JSON-RPC error returned by the node."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class SubstrateConnectionError(Exception):
    """Websocket connection to the node failed or closed."""


def extrinsic_hash(encoded: str) -> str:
    """Hash of a SCALE encoded extrinsic (blake2b-256), 0x-prefixed."""
    payload = bytes.fromhex(encoded.removeprefix("0x"))
    return "0x" + hashlib.blake2b(payload, digest_size=32).hexdigest()


def hex_to_int(value: str | int) -> int:
    """Decode a hex quantity such as a header block number."""
    if isinstance(value, int):
        return value
    return int(value, 16)


class Subscription:
    """Stream of notifications for one RPC subscription."""

    def __init__(self, rpc: "SubstrateRPC", subscription_id: str, unsubscribe_method: str):
        """Initialize subscription.

        Args:
            rpc: Owning client
            subscription_id: Node assigned subscription ID
            unsubscribe_method: RPC method that ends the subscription
        """
        self.rpc = rpc
        self.id = subscription_id
        self.unsubscribe_method = unsubscribe_method
        self.queue: asyncio.Queue = asyncio.Queue()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Any:
        item = await self.queue.get()
        if item is _CLOSED:
            raise SubstrateConnectionError(f"Subscription {self.id} closed")
        return item

    async def unsubscribe(self) -> None:
        """End the subscription on the node."""
        self.rpc.forget(self.id)
        if not self.rpc.is_connected:
            return
        try:
            await self.rpc.call(self.unsubscribe_method, [self.id])
        except (SubstrateRPCError, SubstrateConnectionError) as e:
            logger.debug(f"Unsubscribe {self.id} failed: {e}")


class SubstrateRPC:
    """Minimal substrate JSON-RPC client with subscription support.

    Usage::

        rpc = SubstrateRPC("wss://turing-rpc.avail.so/ws")
        await rpc.connect()
        try:
            header = await rpc.call("chain_getHeader", [])
        finally:
            await rpc.close()
    """

    def __init__(self, url: str, request_timeout: float = 30.0):
        """Initialize client.

        Args:
            url: Websocket RPC endpoint
            request_timeout: Seconds to wait for a response
        """
        self.url = url
        self.request_timeout = request_timeout
        self._ws: Any = None
        self._reader: asyncio.Task | None = None
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        self._subscriptions: dict[str, Subscription] = {}
        # Notifications that arrive before the subscription is registered
        self._early: dict[str, list[Any]] = {}

    @property
    def is_connected(self) -> bool:
        """Check if the websocket is open."""
        return self._ws is not None and self._reader is not None and not self._reader.done()

    async def connect(self) -> None:
        """Open the websocket connection."""
        try:
            self._ws = await websockets.connect(self.url, max_size=None)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise SubstrateConnectionError(f"Cannot connect to {self.url}: {e}") from e
        self._reader = asyncio.create_task(self._read_loop())
        logger.debug(f"Connected to substrate RPC {self.url}")

    async def close(self) -> None:
        """Close the connection and release waiters."""
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        self._fail_all(SubstrateConnectionError("Connection closed"))

    async def call(self, method: str, params: list[Any] | None = None) -> Any:
        """Send a request and wait for its result.

        Raises:
            SubstrateRPCError: If the node returns an error
            SubstrateConnectionError: If the connection is not usable
        """
        if not self.is_connected:
            raise SubstrateConnectionError(f"Not connected to {self.url}")

        request_id = next(self._ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        message = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or []}

        try:
            await self._ws.send(json.dumps(message))
            return await asyncio.wait_for(future, timeout=self.request_timeout)
        except ConnectionClosed as e:
            raise SubstrateConnectionError(f"Connection closed during {method}: {e}") from e
        except asyncio.TimeoutError as e:
            raise SubstrateConnectionError(f"{method} timed out after {self.request_timeout}s") from e
        finally:
            self._pending.pop(request_id, None)

    async def subscribe(
        self, method: str, params: list[Any], unsubscribe_method: str
    ) -> Subscription:
        """Start a subscription and return its notification stream."""
        subscription_id = await self.call(method, params)
        subscription = Subscription(self, str(subscription_id), unsubscribe_method)
        self._subscriptions[subscription.id] = subscription
        for item in self._early.pop(subscription.id, []):
            subscription.queue.put_nowait(item)
        if not self.is_connected:
            subscription.queue.put_nowait(_CLOSED)
        return subscription

    def forget(self, subscription_id: str) -> None:
        """Stop routing notifications for a subscription."""
        self._subscriptions.pop(subscription_id, None)
        self._early.pop(subscription_id, None)

    async def _read_loop(self) -> None:
        """Route responses to callers and notifications to subscriptions."""
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except ValueError as e:
                    logger.warning(f"Ignoring malformed frame from {self.url}: {e}")
                    continue
                if not isinstance(message, dict):
                    logger.warning(f"Ignoring unexpected frame from {self.url}: {raw!r}")
                    continue
                self._dispatch(message)
        except ConnectionClosed as e:
            logger.warning(f"Substrate RPC connection closed: {e}")
        finally:
            self._fail_all(SubstrateConnectionError(f"Connection to {self.url} lost"))

    def _dispatch(self, message: dict[str, Any]) -> None:
        """Handle one decoded message."""
        request_id = message.get("id")
        if request_id is not None:
            future = self._pending.get(request_id)
            if future is None or future.done():
                return
            if "error" in message:
                error = message["error"]
                future.set_exception(
                    SubstrateRPCError(error.get("code", 0), error.get("message", ""), error.get("data"))
                )
            else:
                future.set_result(message.get("result"))
            return

        params = message.get("params") or {}
        subscription_id = params.get("subscription")
        if subscription_id is None:
            return
        subscription_id = str(subscription_id)
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            self._early.setdefault(subscription_id, []).append(params.get("result"))
        else:
            subscription.queue.put_nowait(params.get("result"))

    def _fail_all(self, error: Exception) -> None:
        """Fail pending requests and end open subscriptions."""
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        for subscription in self._subscriptions.values():
            subscription.queue.put_nowait(_CLOSED)
