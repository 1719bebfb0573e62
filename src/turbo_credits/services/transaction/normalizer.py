"""Normalization of chain adapter events into the canonical transaction status."""

import logging
from dataclasses import dataclass

from turbo_credits.services.transaction.schemas import (
    STATUS_RANK,
    ChainType,
    RawEvent,
    RawStage,
    TransactionStatus,
    TxStatus,
)

logger = logging.getLogger(__name__)


def effective_status(
    chain_type: ChainType,
    event: RawEvent,
    required_confirmations: int = 1,
) -> TxStatus:
    """Map a raw adapter stage onto the canonical status for a chain family.

    EVM chains have no finality stage: enough confirmations means completed.
    """
    if event.stage == RawStage.FAILED:
        return TxStatus.FAILED

    if chain_type == ChainType.EVM:
        if event.stage == RawStage.INBLOCK:
            if event.confirmations >= required_confirmations:
                return TxStatus.COMPLETED
            return TxStatus.INBLOCK
        if event.stage == RawStage.FINALITY:
            return TxStatus.COMPLETED
        if event.stage == RawStage.COMPLETED:
            if event.confirmations and event.confirmations < required_confirmations:
                return TxStatus.INBLOCK
            return TxStatus.COMPLETED

    return TxStatus(event.stage.value)


def normalize(
    previous: TransactionStatus,
    event: RawEvent,
    *,
    required_confirmations: int = 1,
) -> TransactionStatus:
    """Apply one adapter event to a record.

    Returns ``previous`` itself when the event is ignored: the record is terminal,
    or the event does not move strictly forward (duplicate or out of order).
    """
    if previous.is_terminal:
        return previous

    target = effective_status(previous.chain_type, event, required_confirmations)

    if target == TxStatus.FAILED:
        return previous.model_copy(
            update={
                "status": TxStatus.FAILED,
                "failure_reason": event.reason or "Transaction failed",
                "failed_from": previous.status,
                "updated_at": event.observed_at,
            }
        )

    if STATUS_RANK[target] <= STATUS_RANK[previous.status]:
        return previous

    update: dict = {"status": target, "updated_at": event.observed_at}
    if previous.txn_hash is None and event.txn_hash:
        update["txn_hash"] = event.txn_hash
    if previous.chain_type == ChainType.AVAIL and event.blockhash:
        update["blockhash"] = event.blockhash

    return previous.model_copy(update=update)


@dataclass
class NormalizerStats:
    """Counters for events seen by a normalizer."""

    events_applied: int = 0
    stale_events: int = 0
    failures: int = 0


class StatusNormalizer:
    """Stateless normalizer with diagnostics for ignored events."""

    def __init__(self, required_confirmations: int = 1):
        """Initialize normalizer.

        Args:
            required_confirmations: EVM confirmations treated as final
        """
        self.required_confirmations = required_confirmations
        self.stats = NormalizerStats()

    def apply(self, previous: TransactionStatus, event: RawEvent) -> TransactionStatus:
        """Normalize an event, recording whether it was applied."""
        updated = normalize(
            previous, event, required_confirmations=self.required_confirmations
        )

        if updated is previous:
            self.stats.stale_events += 1
            logger.debug(
                f"Ignored {event.stage.value} event for {previous.id} "
                f"at status {previous.status.value}"
            )
            return previous

        self.stats.events_applied += 1
        if updated.status == TxStatus.FAILED:
            self.stats.failures += 1
        if event.txn_hash and updated.txn_hash != event.txn_hash:
            logger.warning(
                f"Event hash {event.txn_hash} differs from {updated.txn_hash}, kept original"
            )
        return updated
