"""Credit purchase transaction tracking."""

from turbo_credits.services.transaction.adapters import (
    AdapterHandle,
    AvailAdapter,
    ChainAdapter,
    EVMAdapter,
    build_adapters,
)
from turbo_credits.services.transaction.explorer import resolve_explorer_url
from turbo_credits.services.transaction.messages import status_messages
from turbo_credits.services.transaction.normalizer import StatusNormalizer, normalize
from turbo_credits.services.transaction.progress import project_progress
from turbo_credits.services.transaction.schemas import (
    ChainType,
    PurchaseRequest,
    RawEvent,
    RawStage,
    StatusTick,
    TransactionStatus,
    TransactionView,
    TxStatus,
)
from turbo_credits.services.transaction.store import TransactionStatusStore
from turbo_credits.services.transaction.tracker import TransactionTracker
from turbo_credits.services.transaction.view import build_view

__all__ = [
    "AdapterHandle",
    "AvailAdapter",
    "ChainAdapter",
    "ChainType",
    "EVMAdapter",
    "PurchaseRequest",
    "RawEvent",
    "RawStage",
    "StatusNormalizer",
    "StatusTick",
    "TransactionStatus",
    "TransactionStatusStore",
    "TransactionTracker",
    "TransactionView",
    "TxStatus",
    "build_adapters",
    "build_view",
    "normalize",
    "project_progress",
    "resolve_explorer_url",
    "status_messages",
]
