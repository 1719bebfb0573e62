"""In-memory store for the active purchase transaction."""

import asyncio
import logging
from collections import deque
from typing import Callable

from turbo_credits.core.errors import FinalityTimeoutWarning
from turbo_credits.services.transaction.schemas import (
    StatusTick,
    TransactionStatus,
    TxStatus,
)

logger = logging.getLogger(__name__)

# Store listener type
StatusListener = Callable[[StatusTick], None]

FINALITY_TIMEOUT = 2.0


class TransactionStatusStore:
    """Holds the active purchase record and notifies subscribers.

    One store is created per application and passed to whoever needs it.
    Every publish is a single replace-and-notify step.
    """

    def __init__(
        self,
        finality_timeout: float = FINALITY_TIMEOUT,
        history_size: int = 20,
    ):
        """Initialize store.

        Args:
            finality_timeout: Seconds in inblock before the finalizing hint
            history_size: Number of previous records kept
        """
        self.finality_timeout = finality_timeout
        self._current: TransactionStatus | None = None
        self._warning: FinalityTimeoutWarning | None = None
        self._listeners: list[StatusListener] = []
        self._history: deque[TransactionStatus] = deque(maxlen=history_size)
        self._finality_timer: asyncio.TimerHandle | None = None

    @property
    def current(self) -> TransactionStatus | None:
        """Get the active record."""
        return self._current

    @property
    def tick(self) -> StatusTick:
        """Get the current subscriber value."""
        return StatusTick(status=self._current, warning=self._warning)

    @property
    def history(self) -> list[TransactionStatus]:
        """Get previous records, oldest first."""
        return list(self._history)

    @property
    def subscriber_count(self) -> int:
        """Get number of subscribers."""
        return len(self._listeners)

    def init(self, record: TransactionStatus) -> None:
        """Make a new purchase record the active one.

        Args:
            record: Record of the purchase being started
        """
        self._archive_current()
        logger.info(f"Tracking purchase {record.id} on {record.chain_type.value}")
        self._replace(record)

    def publish(self, record: TransactionStatus) -> bool:
        """Replace the active record and notify subscribers.

        Args:
            record: New value of the active record

        Returns:
            False if the record does not belong to the active purchase
        """
        if self._current is None or record.id != self._current.id:
            logger.warning(f"Dropped update for inactive purchase {record.id}")
            return False

        self._replace(record)
        return True

    def teardown(self) -> None:
        """Clear the active purchase."""
        self._archive_current()
        self._cancel_finality_timer()
        self._current = None
        self._warning = None
        self._notify()

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Subscribe to store updates.

        The listener is called at once with the current value.

        Args:
            listener: Function called with each tick

        Returns:
            Function that removes the subscription
        """
        self._listeners.append(listener)
        self._call(listener, self.tick)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _replace(self, record: TransactionStatus) -> None:
        """Swap in a record, keeping the finality timer in step with it."""
        previous = self._current
        self._current = record

        if record.status == TxStatus.INBLOCK:
            if previous is None or previous.id != record.id or previous.status != TxStatus.INBLOCK:
                self._warning = None
                self._start_finality_timer(record.id)
        else:
            self._warning = None
            self._cancel_finality_timer()

        self._notify()

    def _archive_current(self) -> None:
        """Move the active record into history."""
        if self._current is not None:
            self._history.append(self._current)

    def _start_finality_timer(self, record_id: str) -> None:
        """Schedule the finalizing hint for a record entering inblock."""
        self._cancel_finality_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, finality timer not started")
            return
        self._finality_timer = loop.call_later(
            self.finality_timeout, self._on_finality_timeout, record_id
        )

    def _cancel_finality_timer(self) -> None:
        """Cancel a pending finality timer."""
        if self._finality_timer is not None:
            self._finality_timer.cancel()
            self._finality_timer = None

    def _on_finality_timeout(self, record_id: str) -> None:
        """Emit the finalizing hint if the record is still waiting."""
        self._finality_timer = None
        current = self._current
        if current is None or current.id != record_id or current.status != TxStatus.INBLOCK:
            return

        logger.info(f"Purchase {record_id} still finalizing after {self.finality_timeout}s")
        self._warning = FinalityTimeoutWarning(
            f"Transaction {current.txn_hash} is still being finalized"
        )
        self._notify()

    def _notify(self) -> None:
        """Deliver the current value to all subscribers."""
        tick = self.tick
        for listener in list(self._listeners):
            self._call(listener, tick)

    def _call(self, listener: StatusListener, tick: StatusTick) -> None:
        """Call one listener, isolating its failures."""
        try:
            listener(tick)
        except Exception as e:
            logger.error(f"Store listener error: {e}")
