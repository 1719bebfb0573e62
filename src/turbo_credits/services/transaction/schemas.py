"""Schemas for credit purchase transaction tracking."""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from turbo_credits.core.errors import FinalityTimeoutWarning


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


class TxStatus(str, Enum):
    """Canonical transaction status."""

    INITIALISED = "initialised"
    BROADCAST = "broadcast"
    INBLOCK = "inblock"
    FINALITY = "finality"
    COMPLETED = "completed"
    FAILED = "failed"


class ChainType(str, Enum):
    """Chain family a purchase was paid on."""

    AVAIL = "avail"
    EVM = "evm"


class RawStage(str, Enum):
    """Progress stage reported by a chain adapter."""

    BROADCAST = "broadcast"
    INBLOCK = "inblock"
    FINALITY = "finality"
    COMPLETED = "completed"
    FAILED = "failed"


# Ordered non-terminal stages
STATUS_FLOW: tuple[TxStatus, ...] = (
    TxStatus.BROADCAST,
    TxStatus.INBLOCK,
    TxStatus.FINALITY,
    TxStatus.COMPLETED,
)
INITIAL_STATUS = TxStatus.INITIALISED
TERMINAL_STATUSES = frozenset({TxStatus.COMPLETED, TxStatus.FAILED})

# Position of each status; failed has no position in the flow
STATUS_RANK: dict[TxStatus, int] = {
    INITIAL_STATUS: 0,
    **{status: index + 1 for index, status in enumerate(STATUS_FLOW)},
}

AVAIL_TXN_HASH_LENGTH = 66
HEX_PAYLOAD = re.compile(r"(0x)?([0-9a-fA-F]{2})+")


class TransactionStatus(BaseModel):
    """Canonical record of one credit purchase transaction.

    Records are immutable; every change produces a new value.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()), description="Record ID")
    status: TxStatus = Field(default=INITIAL_STATUS, description="Canonical status")
    chain_type: ChainType = Field(..., description="Chain family")
    txn_hash: str | None = Field(None, description="Transaction/extrinsic hash")
    blockhash: str | None = Field(None, description="Avail inclusion block hash")
    chain_id: int | None = Field(None, description="EVM chain ID")
    evm_chain_url: str | None = Field(None, description="EVM block explorer base URL")
    order_id: int | None = Field(None, description="Credit order ID")
    token_amount: float | None = Field(None, description="Token amount paid")
    failure_reason: str | None = Field(None, description="Reason for failure")
    failed_from: TxStatus | None = Field(
        None, description="Last status reached before failing"
    )
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _check_chain_fields(self) -> "TransactionStatus":
        """Keep chain specific fields on the right chain family."""
        if self.chain_type == ChainType.EVM and self.blockhash is not None:
            raise ValueError("blockhash is only tracked for Avail transactions")
        if self.chain_type == ChainType.AVAIL and (
            self.chain_id is not None or self.evm_chain_url is not None
        ):
            raise ValueError("chain_id/evm_chain_url are only set for EVM transactions")
        return self

    @property
    def is_terminal(self) -> bool:
        """Check if the record can no longer change."""
        return self.status in TERMINAL_STATUSES


class RawEvent(BaseModel):
    """Progress event emitted by a chain adapter."""

    model_config = ConfigDict(frozen=True)

    stage: RawStage
    txn_hash: str | None = None
    blockhash: str | None = None
    block_number: int | None = None
    confirmations: int = 0
    reason: str | None = None
    observed_at: datetime = Field(default_factory=utc_now)


class PurchaseRequest(BaseModel):
    """A purchase transaction handed over by the wallet.

    Carries either a signed payload the adapter broadcasts, or the hash of a
    transaction the wallet already broadcast.
    """

    chain_type: ChainType = Field(..., description="Chain family")
    chain_id: int | None = Field(None, description="EVM chain ID from the wallet")
    signed_payload: str | None = Field(
        None, description="Hex encoded signed extrinsic or raw EVM transaction"
    )
    txn_hash: str | None = Field(None, description="Hash of an already broadcast transaction")
    order_id: int | None = Field(None, description="Credit order ID")
    token_amount: float | None = Field(None, gt=0, description="Token amount paid")

    @model_validator(mode="after")
    def _check_payload(self) -> "PurchaseRequest":
        """Exactly one of signed_payload and txn_hash, and chain_id for EVM."""
        if (self.signed_payload is None) == (self.txn_hash is None):
            raise ValueError("provide exactly one of signed_payload or txn_hash")
        if self.signed_payload is not None and not HEX_PAYLOAD.fullmatch(self.signed_payload):
            raise ValueError("signed_payload must be an even length hex string")
        if self.chain_type == ChainType.EVM and self.chain_id is None:
            raise ValueError("chain_id is required for EVM purchases")
        if (
            self.chain_type == ChainType.AVAIL
            and self.txn_hash is not None
            and len(self.txn_hash) != AVAIL_TXN_HASH_LENGTH
        ):
            raise ValueError(
                f"Avail transaction hash must be {AVAIL_TXN_HASH_LENGTH} characters"
            )
        return self


@dataclass(frozen=True)
class StatusTick:
    """Value delivered to store subscribers."""

    status: TransactionStatus | None = None
    warning: FinalityTimeoutWarning | None = None

    @property
    def finality_pending(self) -> bool:
        """Check if the finality wait exceeded the timeout."""
        return self.warning is not None


class StepFill(BaseModel):
    """Fill state of one progress bar step."""

    model_config = ConfigDict(frozen=True)

    filled: bool
    error: bool = False


class StatusMessages(BaseModel):
    """Headline and description for a status."""

    headline: str
    description: str


class TransactionView(BaseModel):
    """Everything the UI renders for the active purchase."""

    transaction: TransactionStatus | None = Field(None, description="Active record")
    steps: list[StepFill] = Field(default_factory=list, description="Progress bar fill")
    explorer_url: str = Field("#", description="Block explorer link")
    messages: StatusMessages | None = Field(None, description="Status text")
    finality_pending: bool = Field(False, description="Finality wait exceeded the timeout")


class OrderRequest(BaseModel):
    """Credit order registration request."""

    chain_id: int = Field(..., description="Chain the order will be paid on")


class OrderResponse(BaseModel):
    """Registered credit order."""

    order_id: int = Field(..., description="Credit order ID")
