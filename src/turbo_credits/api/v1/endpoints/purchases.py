"""Credit purchase API endpoints."""

import asyncio
import logging
from typing import Annotated

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from turbo_credits.core.config import Settings
from turbo_credits.core.errors import (
    AdapterSubmissionError,
    BackendError,
    UnauthenticatedError,
)
from turbo_credits.infrastructure.backend import CreditBackendClient
from turbo_credits.services.transaction import (
    PurchaseRequest,
    StatusTick,
    TransactionStatus,
    TransactionStatusStore,
    TransactionTracker,
    TransactionView,
    build_view,
)
from turbo_credits.services.transaction.schemas import OrderRequest, OrderResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/purchases", tags=["Purchases"])

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


def get_settings_state(request: Request) -> Settings:
    """Get application settings."""
    return request.app.state.settings


def get_store(request: Request) -> TransactionStatusStore:
    """Get the transaction status store."""
    return request.app.state.store


def get_tracker(request: Request) -> TransactionTracker:
    """Get the transaction tracker."""
    return request.app.state.tracker


def get_backend(request: Request) -> CreditBackendClient:
    """Get the credit backend client."""
    return request.app.state.backend


async def get_bearer_token(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
) -> str | None:
    """Get the bearer token forwarded to the credit backend, if any."""
    if credentials is None:
        return None
    return credentials.credentials


BearerToken = Annotated[str | None, Depends(get_bearer_token)]
AppSettings = Annotated[Settings, Depends(get_settings_state)]
Store = Annotated[TransactionStatusStore, Depends(get_store)]
Tracker = Annotated[TransactionTracker, Depends(get_tracker)]
Backend = Annotated[CreditBackendClient, Depends(get_backend)]


def _unauthenticated(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=message,
        headers={"WWW-Authenticate": "Bearer"},
    )


@router.post("/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def register_order(
    body: OrderRequest,
    token: BearerToken,
    backend: Backend,
) -> OrderResponse:
    """Register a credit order with the credit backend.

    Requires: bearer token
    """
    try:
        order_id = await backend.register_credit_request(token, body.chain_id)
    except UnauthenticatedError as e:
        raise _unauthenticated(e.message)
    except BackendError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    return OrderResponse(order_id=order_id)


@router.post("", response_model=TransactionView, status_code=status.HTTP_202_ACCEPTED)
async def start_purchase(
    body: PurchaseRequest,
    token: BearerToken,
    tracker: Tracker,
    store: Store,
    settings: AppSettings,
) -> TransactionView:
    """Submit a purchase transaction and start tracking it.

    A bearer token is required when an order ID is given, since inclusion
    details are reported for the order.
    """
    if body.order_id is not None and not token:
        raise _unauthenticated("No authentication token available")

    try:
        await tracker.start_purchase(body, token=token)
    except AdapterSubmissionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return build_view(store.tick, settings)


@router.get("/active", response_model=TransactionView)
async def get_active_purchase(store: Store, settings: AppSettings) -> TransactionView:
    """Get the active purchase with its progress, explorer link and status text."""
    if store.current is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active purchase",
        )
    return build_view(store.tick, settings)


@router.get("/history", response_model=list[TransactionStatus])
async def get_purchase_history(store: Store) -> list[TransactionStatus]:
    """Get purchases tracked earlier in this session, oldest first."""
    return store.history


@router.delete("/active", status_code=status.HTTP_204_NO_CONTENT)
async def clear_active_purchase(tracker: Tracker) -> None:
    """Stop tracking the active purchase and clear it."""
    await tracker.teardown()


@router.websocket("/ws")
async def purchase_updates(websocket: WebSocket):
    """Stream the active purchase view on every store update.

    The current view is sent right after connecting.
    """
    store: TransactionStatusStore = websocket.app.state.store
    settings: Settings = websocket.app.state.settings

    await websocket.accept()
    queue: asyncio.Queue[StatusTick] = asyncio.Queue()
    unsubscribe = store.subscribe(queue.put_nowait)
    sender = asyncio.create_task(_forward_views(websocket, queue, settings))

    try:
        while True:
            # Client messages are only used to detect disconnects
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Purchase update client disconnected")
    finally:
        unsubscribe()
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass


async def _forward_views(
    websocket: WebSocket, queue: "asyncio.Queue[StatusTick]", settings: Settings
) -> None:
    """Send a view for each queued tick."""
    while True:
        tick = await queue.get()
        try:
            await websocket.send_json(build_view(tick, settings).model_dump(mode="json"))
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Stopped sending purchase updates: {e}")
            return
