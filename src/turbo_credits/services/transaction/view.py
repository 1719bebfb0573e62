"""Render store ticks into what the purchase screen shows."""

from turbo_credits.core.config import Settings
from turbo_credits.services.transaction.explorer import resolve_explorer_url
from turbo_credits.services.transaction.messages import status_messages
from turbo_credits.services.transaction.progress import project_progress
from turbo_credits.services.transaction.schemas import (
    ChainType,
    StatusTick,
    TransactionStatus,
    TransactionView,
)


def chain_name(record: TransactionStatus, settings: Settings) -> str:
    """Display name of the chain a record was paid on."""
    if record.chain_type == ChainType.AVAIL:
        return "Avail"
    network = settings.evm_networks.get(record.chain_id)
    return network.name if network else f"chain {record.chain_id}"


def build_view(tick: StatusTick, settings: Settings) -> TransactionView:
    """Project a store tick into record, progress steps, explorer link and text."""
    record = tick.status
    if record is None:
        return TransactionView(steps=project_progress(None))

    return TransactionView(
        transaction=record,
        steps=project_progress(record),
        explorer_url=resolve_explorer_url(
            record,
            avail_network=settings.avail_network,
            avail_rpc_url=settings.avail_rpc_url,
        ),
        messages=status_messages(
            record.status, chain_name(record, settings), record.failure_reason
        ),
        finality_pending=tick.finality_pending,
    )
