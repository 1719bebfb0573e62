"""HTTP client for the credit backend."""

import logging
from typing import Any

import httpx

from turbo_credits.core.errors import BackendError, UnauthenticatedError

logger = logging.getLogger(__name__)


class CreditBackendClient:
    """Registers credit orders and reports purchase inclusion.

    Responses use the ``{"state": "SUCCESS" | "ERROR", "message", "data"}`` envelope.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize backend client.

        Args:
            base_url: Credit backend base URL
            timeout: Request timeout in seconds
            transport: Optional transport, used by tests
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._http_client

    async def register_credit_request(self, token: str | None, chain_id: int) -> int:
        """Register a credit order for a chain.

        Args:
            token: Bearer token of the user
            chain_id: Chain the order will be paid on

        Returns:
            ID of the created order
        """
        data = await self._post(token, "/v1/user/register_credit_request", {"chain": chain_id})
        try:
            order_id = int(data["id"])
        except (TypeError, KeyError, ValueError) as e:
            raise BackendError("Credit backend returned no order id") from e

        logger.info(f"Registered credit order {order_id} on chain {chain_id}")
        return order_id

    async def add_inclusion_details(
        self, token: str | None, order_id: int, txn_hash: str
    ) -> None:
        """Report the transaction that paid for an order."""
        await self._post(
            token,
            "/v1/user/add_inclusion_details",
            {"order_id": order_id, "tx_hash": txn_hash},
        )
        logger.info(f"Reported inclusion of {txn_hash} for order {order_id}")

    async def _post(self, token: str | None, path: str, payload: dict[str, Any]) -> Any:
        """POST with the bearer token and unwrap the response envelope.

        Raises:
            UnauthenticatedError: If there is no token or the backend refuses it
            BackendError: If the call fails or the envelope reports an error
        """
        if not token:
            raise UnauthenticatedError()

        client = await self._get_http_client()
        try:
            response = await client.post(
                path,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.warning(f"Credit backend request {path} failed: {e}")
            raise BackendError(f"Credit backend unreachable: {e}") from e

        if response.status_code == 401:
            raise UnauthenticatedError("Credit backend rejected the token")
        if response.is_error:
            raise BackendError(
                f"API call failed: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        body = response.json()
        if isinstance(body, dict) and body.get("state") == "ERROR":
            raise BackendError(body.get("message") or "Credit backend returned an error")
        return body.get("data") if isinstance(body, dict) else body

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
