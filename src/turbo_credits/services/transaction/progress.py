"""Progress bar projection of the canonical transaction status."""

from typing import Sequence

from turbo_credits.services.transaction.schemas import (
    STATUS_RANK,
    StepFill,
    TransactionStatus,
    TxStatus,
)

DEFAULT_STEP_ORDER: tuple[TxStatus, ...] = (
    TxStatus.BROADCAST,
    TxStatus.INBLOCK,
    TxStatus.FINALITY,
)
PROGRESS_STEPS = 3


def reached_index(status: TxStatus | None, step_order: Sequence[TxStatus]) -> int:
    """Index of the last step at or before ``status``, -1 when none is reached."""
    if status is None or status == TxStatus.FAILED:
        return -1
    rank = STATUS_RANK[status]
    reached = -1
    for index, step in enumerate(step_order):
        if STATUS_RANK[step] <= rank:
            reached = index
    return reached


def project_progress(
    status: TransactionStatus | TxStatus | None,
    step_order: Sequence[TxStatus] = DEFAULT_STEP_ORDER,
    total_steps: int = PROGRESS_STEPS,
) -> list[StepFill]:
    """Project a status onto a fixed number of progress bar steps.

    Step ``i`` is filled when the reached index is ``>= i``. A failed record keeps
    the fill it had reached and flags the step it failed on.
    """
    failed = False
    if isinstance(status, TransactionStatus):
        if status.status == TxStatus.FAILED:
            failed = True
            current = status.failed_from
        else:
            current = status.status
    else:
        current = status

    reached = reached_index(current, step_order)
    steps = [StepFill(filled=reached >= index) for index in range(total_steps)]

    if failed and steps:
        error_index = min(reached + 1, total_steps - 1)
        steps[error_index] = StepFill(filled=steps[error_index].filled, error=True)

    return steps
