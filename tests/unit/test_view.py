"""Tests for status messages and the purchase view."""

from turbo_credits.core.errors import FinalityTimeoutWarning
from turbo_credits.services.transaction.messages import status_messages
from turbo_credits.services.transaction.schemas import (
    ChainType,
    StatusTick,
    TransactionStatus,
    TxStatus,
)
from turbo_credits.services.transaction.view import build_view, chain_name


class TestStatusMessages:
    """Tests for status text."""

    def test_headlines(self):
        """Test the headline for each stage."""
        assert status_messages(TxStatus.BROADCAST).headline == "Credit Buying Initiated"
        assert status_messages(TxStatus.INBLOCK).headline == "Processing Transaction"
        assert status_messages(TxStatus.FINALITY).headline == "Almost Done"
        assert status_messages(TxStatus.COMPLETED).headline == "Credited Successfully"
        assert status_messages(TxStatus.FAILED).headline == "Transaction failed"

    def test_description_names_chain(self):
        """Test descriptions name the chain."""
        messages = status_messages(TxStatus.INBLOCK, "Base Sepolia")
        assert messages.description == "Transaction confirmed on Base Sepolia chain"

    def test_failed_description_is_reason(self):
        """Test the failure reason is shown verbatim."""
        messages = status_messages(TxStatus.FAILED, reason="Transaction reverted")
        assert messages.description == "Transaction reverted"


class TestBuildView:
    """Tests for build_view."""

    def test_empty_tick(self, settings):
        """Test the view without an active purchase."""
        view = build_view(StatusTick(), settings)

        assert view.transaction is None
        assert view.explorer_url == "#"
        assert [step.filled for step in view.steps] == [False, False, False]
        assert view.messages is None

    def test_evm_view(self, settings):
        """Test an EVM record in block."""
        record = TransactionStatus(
            chain_type=ChainType.EVM,
            status=TxStatus.INBLOCK,
            chain_id=84532,
            evm_chain_url="https://sepolia.basescan.org",
            txn_hash="0xdef",
        )
        view = build_view(StatusTick(status=record), settings)

        assert view.explorer_url == "https://sepolia.basescan.org/tx/0xdef"
        assert [step.filled for step in view.steps] == [True, True, False]
        assert view.messages.description == "Transaction confirmed on Base Sepolia chain"
        assert view.finality_pending is False

    def test_finality_pending_flag(self, settings):
        """Test the finality warning is exposed as a flag."""
        record = TransactionStatus(chain_type=ChainType.AVAIL, status=TxStatus.INBLOCK)
        tick = StatusTick(status=record, warning=FinalityTimeoutWarning("slow"))

        assert build_view(tick, settings).finality_pending is True

    def test_chain_name(self, settings):
        """Test display names per chain."""
        avail = TransactionStatus(chain_type=ChainType.AVAIL)
        unknown = TransactionStatus(chain_type=ChainType.EVM, chain_id=999)

        assert chain_name(avail, settings) == "Avail"
        assert chain_name(unknown, settings) == "chain 999"
