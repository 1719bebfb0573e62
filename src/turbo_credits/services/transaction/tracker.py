"""Orchestration of one credit purchase from submission to completion."""

import asyncio
import logging
from dataclasses import dataclass

from turbo_credits.core.config import Settings, get_settings
from turbo_credits.core.errors import (
    AdapterObservationError,
    AdapterSubmissionError,
    BackendError,
    TerminalFailure,
    TrackerError,
    UnauthenticatedError,
)
from turbo_credits.infrastructure.backend import CreditBackendClient
from turbo_credits.services.transaction.adapters import AdapterHandle, ChainAdapter
from turbo_credits.services.transaction.normalizer import StatusNormalizer
from turbo_credits.services.transaction.schemas import (
    ChainType,
    PurchaseRequest,
    RawEvent,
    RawStage,
    TransactionStatus,
    TxStatus,
)
from turbo_credits.services.transaction.store import TransactionStatusStore

logger = logging.getLogger(__name__)


@dataclass
class PurchaseSession:
    """State of the purchase being tracked."""

    record: TransactionStatus
    adapter: ChainAdapter
    normalizer: StatusNormalizer
    token: str | None = None
    handle: AdapterHandle | None = None
    task: asyncio.Task | None = None
    cancelled: bool = False
    attempts: int = 0


class TransactionTracker:
    """Drives a purchase through its adapter and publishes every change to the store.

    Only one purchase is tracked at a time. Starting a new one cancels the
    previous session, and events from a cancelled session are dropped.
    """

    def __init__(
        self,
        store: TransactionStatusStore,
        adapters: dict[ChainType, ChainAdapter],
        backend: CreditBackendClient | None = None,
        settings: Settings | None = None,
    ):
        """Initialize tracker.

        Args:
            store: Store the active record is published to
            adapters: Chain adapter per chain family
            backend: Credit backend that receives inclusion details
            settings: Application settings
        """
        self.store = store
        self.adapters = adapters
        self.backend = backend
        self.settings = settings or get_settings()
        self._session: PurchaseSession | None = None

    @property
    def session(self) -> PurchaseSession | None:
        """Get the current session."""
        return self._session

    @property
    def is_running(self) -> bool:
        """Check if a purchase is being observed."""
        session = self._session
        return session is not None and session.task is not None and not session.task.done()

    async def start_purchase(
        self, request: PurchaseRequest, token: str | None = None
    ) -> TransactionStatus:
        """Submit a purchase transaction and start observing it.

        Args:
            request: Transaction handed over by the wallet
            token: Bearer token forwarded to the credit backend

        Returns:
            The active record after submission

        Raises:
            AdapterSubmissionError: If the transaction could not be submitted
            ValueError: If the chain is not supported
        """
        await self.cancel()

        adapter = self.adapters.get(request.chain_type)
        if adapter is None:
            raise ValueError(f"No adapter for chain type {request.chain_type.value}")

        record, required_confirmations = self._initial_record(request)
        self.store.init(record)

        session = PurchaseSession(
            record=record,
            adapter=adapter,
            normalizer=StatusNormalizer(required_confirmations),
            token=token,
        )
        self._session = session

        try:
            session.handle = await adapter.submit(request)
        except AdapterSubmissionError as e:
            logger.error(f"Submission failed for purchase {record.id}: {e.message}")
            self._apply(session, RawEvent(stage=RawStage.FAILED, reason=e.message))
            raise
        except Exception as e:
            logger.exception(f"Unexpected error submitting purchase {record.id}: {e}")
            self._apply(session, RawEvent(stage=RawStage.FAILED, reason=str(e)))
            raise

        session.task = asyncio.create_task(self._observe(session))
        return session.record

    def _initial_record(self, request: PurchaseRequest) -> tuple[TransactionStatus, int]:
        """Build the initialised record and the confirmations treated as final."""
        if request.chain_type == ChainType.EVM:
            network = self.settings.get_evm_network(request.chain_id)
            record = TransactionStatus(
                chain_type=ChainType.EVM,
                txn_hash=request.txn_hash,
                chain_id=network.chain_id,
                evm_chain_url=network.explorer_url,
                order_id=request.order_id,
                token_amount=request.token_amount,
            )
            return record, network.finalised_threshold

        record = TransactionStatus(
            chain_type=ChainType.AVAIL,
            txn_hash=request.txn_hash,
            order_id=request.order_id,
            token_amount=request.token_amount,
        )
        return record, 1

    async def _observe(self, session: PurchaseSession) -> None:
        """Feed adapter events into the store, resubscribing on dropped connections."""
        max_retries = self.settings.observation_max_retries
        try:
            while not session.cancelled:
                try:
                    async for event in session.adapter.observe(session.handle):
                        if session.cancelled:
                            return
                        if await self._handle_event(session, event):
                            return
                    return
                except AdapterObservationError as e:
                    session.attempts += 1
                    if session.attempts > max_retries:
                        logger.error(
                            f"Giving up on purchase {session.record.id} after "
                            f"{max_retries} resubscribe attempts: {e.message}"
                        )
                        self._apply(session, RawEvent(stage=RawStage.FAILED, reason=e.message))
                        return

                    delay = self.settings.observation_retry_delay * session.attempts
                    logger.warning(
                        f"Observation of {session.record.id} dropped, resubscribing in "
                        f"{delay}s (attempt {session.attempts}): {e.message}"
                    )
                    await asyncio.sleep(delay)
        except Exception as e:
            logger.exception(f"Observation of purchase {session.record.id} crashed: {e}")
            self._apply(session, RawEvent(stage=RawStage.FAILED, reason=str(e)))
        finally:
            await session.adapter.release(session.handle)
            stats = session.normalizer.stats
            logger.info(
                f"Purchase {session.record.id} observation ended at "
                f"{session.record.status.value} ({stats.events_applied} applied, "
                f"{stats.stale_events} stale)"
            )

    async def _handle_event(self, session: PurchaseSession, event: RawEvent) -> bool:
        """Apply one adapter event.

        Returns:
            True when the purchase reached a terminal status
        """
        updated = session.normalizer.apply(session.record, event)
        if updated is session.record:
            return False

        # EVM settles straight to completed; inclusion is reported before publishing it
        if updated.status == TxStatus.COMPLETED:
            await self._complete(session, updated)
            return True

        self._publish(session, updated)

        if updated.status == TxStatus.FAILED:
            logger.error(f"Purchase {updated.id} failed: {updated.failure_reason}")
            return True

        if updated.status == TxStatus.FINALITY:
            completed = session.normalizer.apply(
                updated, RawEvent(stage=RawStage.COMPLETED, txn_hash=updated.txn_hash)
            )
            await self._complete(session, completed)
            return True

        return False

    async def _complete(self, session: PurchaseSession, completed: TransactionStatus) -> None:
        """Report inclusion to the credit backend, then publish completion."""
        record = session.record
        if self.backend is not None and record.order_id is not None and session.token:
            try:
                await self.backend.add_inclusion_details(
                    session.token, record.order_id, completed.txn_hash
                )
            except (BackendError, UnauthenticatedError) as e:
                logger.error(f"Inclusion report failed for purchase {record.id}: {e.message}")
                self._apply(session, RawEvent(stage=RawStage.FAILED, reason=e.message))
                return

        self._publish(session, completed)
        logger.info(f"Purchase {completed.id} completed with {completed.txn_hash}")

    def _apply(self, session: PurchaseSession, event: RawEvent) -> None:
        """Normalize an event against the session record and publish the result."""
        updated = session.normalizer.apply(session.record, event)
        if updated is not session.record:
            self._publish(session, updated)

    def _publish(self, session: PurchaseSession, record: TransactionStatus) -> None:
        """Publish a record unless its session was cancelled."""
        if session.cancelled or session is not self._session:
            logger.debug(f"Dropped {record.status.value} for cancelled purchase {record.id}")
            return

        session.record = record
        if self.store.publish(record):
            logger.info(f"Purchase {record.id} is now {record.status.value}")

    async def cancel(self) -> None:
        """Cancel the current session. Later events are dropped."""
        session = self._session
        if session is None:
            return

        self._session = None
        session.cancelled = True
        if session.handle is not None:
            await session.adapter.cancel(session.handle)

        if session.task is not None and not session.task.done():
            session.task.cancel()
            try:
                await session.task
            except asyncio.CancelledError:
                pass
        logger.info(f"Cancelled tracking of purchase {session.record.id}")

    async def teardown(self) -> None:
        """Cancel the session and clear the store."""
        await self.cancel()
        self.store.teardown()

    async def wait(self) -> TransactionStatus:
        """Wait for the current purchase to settle.

        Returns:
            The completed record

        Raises:
            TerminalFailure: If the purchase failed
            TrackerError: If no purchase is active, or it stopped before completing
        """
        session = self._session
        if session is None:
            current = self.store.current
            if current is None:
                raise TrackerError("No active purchase", status_code=404, code="no-active-purchase")
            record = current
        else:
            if session.task is not None:
                try:
                    await asyncio.shield(session.task)
                except asyncio.CancelledError:
                    if not session.task.cancelled():
                        raise
                    raise TrackerError(
                        "Purchase tracking was cancelled", status_code=409, code="cancelled"
                    )
            record = session.record

        if record.status == TxStatus.FAILED:
            raise TerminalFailure(record)
        if record.status != TxStatus.COMPLETED:
            raise TrackerError(
                f"Purchase {record.id} stopped at {record.status.value}",
                status_code=409,
                code="not-settled",
            )
        return record
