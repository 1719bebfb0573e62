"""Status text shown while a credit purchase progresses."""

from turbo_credits.services.transaction.schemas import StatusMessages, TxStatus

HEADLINES: dict[TxStatus, str] = {
    TxStatus.INITIALISED: "Credit Buying Initiated",
    TxStatus.BROADCAST: "Credit Buying Initiated",
    TxStatus.INBLOCK: "Processing Transaction",
    TxStatus.FINALITY: "Almost Done",
    TxStatus.COMPLETED: "Credited Successfully",
    TxStatus.FAILED: "Transaction failed",
}

DESCRIPTIONS: dict[TxStatus, str] = {
    TxStatus.INITIALISED: "Processing transaction on {chain} chain",
    TxStatus.BROADCAST: "Processing transaction on {chain} chain",
    TxStatus.INBLOCK: "Transaction confirmed on {chain} chain",
    TxStatus.FINALITY: "Finalizing transaction on {chain} chain",
    TxStatus.COMPLETED: (
        "You can use these credits directly from the main balance "
        "or assign it to individual apps."
    ),
    TxStatus.FAILED: "{reason}",
}


def status_messages(
    status: TxStatus,
    chain_name: str = "Avail",
    reason: str | None = None,
) -> StatusMessages:
    """Headline and description for a status."""
    description = DESCRIPTIONS[status].format(
        chain=chain_name, reason=reason or "The purchase could not be completed."
    )
    return StatusMessages(headline=HEADLINES[status], description=description)
