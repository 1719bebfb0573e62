"""Tests for block explorer links."""

import pytest

from turbo_credits.core.config import AvailNetwork
from turbo_credits.services.transaction.explorer import (
    NO_LINK,
    detect_avail_network,
    resolve_explorer_url,
)
from turbo_credits.services.transaction.schemas import ChainType, TransactionStatus


def avail(txn_hash=None, blockhash=None) -> TransactionStatus:
    return TransactionStatus(chain_type=ChainType.AVAIL, txn_hash=txn_hash, blockhash=blockhash)


class TestDetectAvailNetwork:
    """Tests for network detection from the RPC URL."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("wss://mainnet-rpc.avail.so/ws", AvailNetwork.MAINNET),
            ("wss://turing-rpc.avail.so/ws", AvailNetwork.TURING),
            ("wss://rpc-hex-devnet.avail.tools/ws", AvailNetwork.HEX),
            ("ws://127.0.0.1:9944", AvailNetwork.TURING),
        ],
    )
    def test_detection(self, url, expected):
        """Test substring detection with the Turing default."""
        assert detect_avail_network(url) == expected


class TestResolveExplorerUrl:
    """Tests for resolve_explorer_url."""

    def test_no_record(self):
        """Test no record gives no link."""
        assert resolve_explorer_url(None) == NO_LINK

    def test_avail_without_hash(self):
        """Test an Avail record without hash gives no link."""
        assert resolve_explorer_url(avail()) == "#"

    def test_avail_turing(self):
        """Test the Turing subscan link."""
        url = resolve_explorer_url(avail("0xabc"), avail_rpc_url="wss://turing-rpc.avail.so/ws")
        assert url == "https://avail-turing.subscan.io/extrinsic/0xabc"

    def test_avail_mainnet(self):
        """Test the mainnet subscan link."""
        url = resolve_explorer_url(avail("0xabc"), avail_rpc_url="wss://mainnet-rpc.avail.so/ws")
        assert url == "https://avail.subscan.io/extrinsic/0xabc"

    def test_explicit_network_wins(self):
        """Test the configured network takes precedence over the URL."""
        url = resolve_explorer_url(
            avail("0xabc"),
            avail_network=AvailNetwork.MAINNET,
            avail_rpc_url="wss://turing-rpc.avail.so/ws",
        )
        assert url == "https://avail.subscan.io/extrinsic/0xabc"

    def test_avail_hex_needs_blockhash(self):
        """Test the hex explorer links the block and waits for it."""
        assert resolve_explorer_url(avail("0xabc"), avail_network=AvailNetwork.HEX) == NO_LINK

        url = resolve_explorer_url(avail("0xabc", "0xb10c"), avail_network=AvailNetwork.HEX)
        assert url == (
            "https://explorer.avail.so/?rpc=wss://rpc-hex-devnet.avail.tools/ws"
            "#/explorer/query/0xb10c"
        )

    def test_evm_with_base_url(self):
        """Test the EVM link from an explicit base URL."""
        record = TransactionStatus(chain_type=ChainType.EVM, chain_id=8453, txn_hash="0xdef")
        assert resolve_explorer_url(record, "https://basescan.org") == "https://basescan.org/tx/0xdef"

    def test_evm_uses_record_url(self):
        """Test the record's explorer URL is used when none is passed."""
        record = TransactionStatus(
            chain_type=ChainType.EVM,
            chain_id=11155111,
            txn_hash="0xdef",
            evm_chain_url="https://sepolia.etherscan.io/",
        )
        assert resolve_explorer_url(record) == "https://sepolia.etherscan.io/tx/0xdef"

    def test_evm_without_base_url(self):
        """Test no link when the chain explorer is unknown."""
        record = TransactionStatus(chain_type=ChainType.EVM, chain_id=1, txn_hash="0xdef")
        assert resolve_explorer_url(record) == NO_LINK
