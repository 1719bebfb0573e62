"""Tests for the purchase API endpoints."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from turbo_credits.core.errors import AdapterSubmissionError, BackendError
from turbo_credits.services.transaction.schemas import TransactionStatus, TxStatus

AVAIL_HASH = "0x" + "ab" * 32
PREFIX = "/api/v1/purchases"


@pytest.fixture
def fake_tracker(client: TestClient):
    """Tracker that only initialises the store."""
    store = client.app.state.store
    tracker = MagicMock()

    async def start(request, token=None):
        record = TransactionStatus(chain_type=request.chain_type, txn_hash=request.txn_hash)
        store.init(record)
        return record

    async def teardown():
        store.teardown()

    tracker.start_purchase = AsyncMock(side_effect=start)
    tracker.teardown = AsyncMock(side_effect=teardown)
    client.app.state.tracker = tracker
    return tracker


@pytest.fixture
def fake_backend(client: TestClient):
    """Mocked credit backend."""
    backend = MagicMock()
    backend.register_credit_request = AsyncMock(return_value=42)
    backend.close = AsyncMock()
    client.app.state.backend = backend
    return backend


class TestStartPurchase:
    """Tests for POST /purchases."""

    def test_start_avail_purchase(self, client: TestClient, fake_tracker):
        """Test a wallet broadcast Avail purchase is tracked."""
        response = client.post(PREFIX, json={"chain_type": "avail", "txn_hash": AVAIL_HASH})

        assert response.status_code == 202
        data = response.json()
        assert data["transaction"]["status"] == "initialised"
        assert data["transaction"]["txn_hash"] == AVAIL_HASH
        assert data["steps"] == [{"filled": False, "error": False}] * 3
        assert data["messages"]["headline"] == "Credit Buying Initiated"
        assert data["explorer_url"].endswith(f"/extrinsic/{AVAIL_HASH}")

    def test_forwards_bearer_token(self, client: TestClient, fake_tracker):
        """Test the bearer token is handed to the tracker."""
        client.post(
            PREFIX,
            json={"chain_type": "avail", "txn_hash": AVAIL_HASH, "order_id": 5},
            headers={"Authorization": "Bearer tok"},
        )

        assert fake_tracker.start_purchase.await_args.kwargs["token"] == "tok"

    def test_order_requires_token(self, client: TestClient, fake_tracker):
        """Test an order purchase without token is rejected."""
        response = client.post(
            PREFIX, json={"chain_type": "avail", "txn_hash": AVAIL_HASH, "order_id": 5}
        )

        assert response.status_code == 401
        fake_tracker.start_purchase.assert_not_called()

    def test_submission_error(self, client: TestClient, fake_tracker):
        """Test a rejected submission returns 502."""
        fake_tracker.start_purchase.side_effect = AdapterSubmissionError("rejected")

        response = client.post(PREFIX, json={"chain_type": "avail", "txn_hash": AVAIL_HASH})

        assert response.status_code == 502
        assert response.json()["detail"] == "rejected"

    def test_payload_and_hash_conflict(self, client: TestClient):
        """Test exactly one of signed payload and hash is accepted."""
        response = client.post(
            PREFIX,
            json={"chain_type": "avail", "txn_hash": AVAIL_HASH, "signed_payload": "0x00"},
        )

        assert response.status_code == 422

    def test_non_hex_payload(self, client: TestClient):
        """Test a signed payload must be hex encoded and nothing is tracked."""
        response = client.post(
            PREFIX, json={"chain_type": "evm", "chain_id": 84532, "signed_payload": "0xzz"}
        )

        assert response.status_code == 422
        assert client.get(f"{PREFIX}/active").status_code == 404

    def test_short_avail_hash(self, client: TestClient):
        """Test Avail hashes must be 66 characters."""
        response = client.post(PREFIX, json={"chain_type": "avail", "txn_hash": "0xabc"})

        assert response.status_code == 422

    def test_unsupported_evm_chain(self, client: TestClient):
        """Test an unknown EVM chain is rejected."""
        response = client.post(
            PREFIX, json={"chain_type": "evm", "chain_id": 56, "txn_hash": "0xdef"}
        )

        assert response.status_code == 422
        assert "Unsupported EVM chain 56" in response.json()["detail"]


class TestActivePurchase:
    """Tests for the active purchase and history endpoints."""

    def test_no_active_purchase(self, client: TestClient):
        """Test 404 when nothing is tracked."""
        response = client.get(f"{PREFIX}/active")

        assert response.status_code == 404

    def test_active_view(self, client: TestClient, fake_tracker):
        """Test the view of a started purchase."""
        client.post(PREFIX, json={"chain_type": "avail", "txn_hash": AVAIL_HASH})

        response = client.get(f"{PREFIX}/active")

        assert response.status_code == 200
        data = response.json()
        assert data["transaction"]["chain_type"] == "avail"
        assert data["finality_pending"] is False

    def test_history_and_clear(self, client: TestClient, fake_tracker):
        """Test clearing archives the purchase into history."""
        client.post(PREFIX, json={"chain_type": "avail", "txn_hash": AVAIL_HASH})

        response = client.delete(f"{PREFIX}/active")
        assert response.status_code == 204
        assert client.get(f"{PREFIX}/active").status_code == 404

        history = client.get(f"{PREFIX}/history").json()
        assert [record["txn_hash"] for record in history] == [AVAIL_HASH]
        assert history[0]["status"] == TxStatus.INITIALISED.value


class TestRegisterOrder:
    """Tests for POST /purchases/orders."""

    def test_register_order(self, client: TestClient, fake_backend):
        """Test an order id is returned."""
        response = client.post(
            f"{PREFIX}/orders",
            json={"chain_id": 84532},
            headers={"Authorization": "Bearer tok"},
        )

        assert response.status_code == 201
        assert response.json() == {"order_id": 42}
        fake_backend.register_credit_request.assert_awaited_once_with("tok", 84532)

    def test_register_order_without_token(self, client: TestClient):
        """Test the real backend client refuses without a token."""
        response = client.post(f"{PREFIX}/orders", json={"chain_id": 84532})

        assert response.status_code == 401

    def test_backend_error(self, client: TestClient, fake_backend):
        """Test backend failures return 502."""
        fake_backend.register_credit_request.side_effect = BackendError("down")

        response = client.post(
            f"{PREFIX}/orders",
            json={"chain_id": 84532},
            headers={"Authorization": "Bearer tok"},
        )

        assert response.status_code == 502


class TestPurchaseWebSocket:
    """Tests for the purchase update stream."""

    def test_streams_views(self, client: TestClient, fake_tracker):
        """Test the current view is sent on connect and after each update."""
        with client.websocket_connect(f"{PREFIX}/ws") as websocket:
            initial = websocket.receive_json()
            assert initial["transaction"] is None

            client.post(PREFIX, json={"chain_type": "avail", "txn_hash": AVAIL_HASH})

            update = websocket.receive_json()
            assert update["transaction"]["status"] == "initialised"
            assert update["messages"]["headline"] == "Credit Buying Initiated"
