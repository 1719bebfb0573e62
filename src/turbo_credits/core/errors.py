"""Error taxonomy for purchase tracking and the credit backend."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from turbo_credits.services.transaction.schemas import TransactionStatus


class TrackerError(Exception):
    """Base error for credit purchase tracking.

    Attributes:
        message: Human-readable error description.
        status_code: Suggested HTTP status code.
        code: Machine-readable error code string.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 500,
        code: str = "tracker-error",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class AdapterSubmissionError(TrackerError):
    """Transaction rejected or RPC unreachable at submit time. Never retried."""

    def __init__(self, message: str, *, status_code: int = 502) -> None:
        super().__init__(message, status_code=status_code, code="submission-failed")


class AdapterObservationError(TrackerError):
    """Subscription dropped while observing a submitted transaction."""

    def __init__(self, message: str, *, status_code: int = 502) -> None:
        super().__init__(message, status_code=status_code, code="observation-failed")


class TerminalFailure(TrackerError):
    """The purchase ended in the ``failed`` status."""

    def __init__(self, record: TransactionStatus) -> None:
        reason = record.failure_reason or "Transaction failed"
        super().__init__(reason, status_code=422, code="transaction-failed")
        self.record = record


class UnauthenticatedError(TrackerError):
    """No bearer token, or the credit backend refused it."""

    def __init__(self, message: str = "No authentication token available") -> None:
        super().__init__(message, status_code=401, code="unauthenticated")


class BackendError(TrackerError):
    """Credit backend call failed."""

    def __init__(self, message: str, *, status_code: int = 502) -> None:
        super().__init__(message, status_code=status_code, code="backend-error")


class FinalityTimeoutWarning(UserWarning):
    """Inclusion observed but finality is taking longer than expected.

    UI hint only: it never changes the canonical status.
    """
