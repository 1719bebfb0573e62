"""Test cases for configuration management."""

import os
from unittest.mock import patch

import pytest

from turbo_credits.core.config import AvailNetwork, Settings


class TestSettings:
    """Test Settings class configuration loading."""

    def test_settings_loads_defaults(self):
        """Test that settings loads with default values."""
        settings = Settings(_env_file=None)

        assert settings.app_name == "turbo-credits"
        assert settings.debug is False
        assert settings.api_v1_prefix == "/api/v1"
        assert settings.finality_timeout_ms == 2000
        assert settings.avail_network is None
        assert settings.avail_inclusion_timeout == 600.0
        assert settings.avail_lookback_blocks == 10

    def test_settings_environment_override(self):
        """Test that environment variables override defaults."""
        with patch.dict(
            os.environ,
            {"DEBUG": "true", "APP_NAME": "test-app", "AVAIL_NETWORK": "mainnet"},
        ):
            settings = Settings(_env_file=None)

            assert settings.debug is True
            assert settings.app_name == "test-app"
            assert settings.avail_network == AvailNetwork.MAINNET

    def test_finality_timeout_in_seconds(self):
        """Test the timeout is exposed in seconds."""
        assert Settings(finality_timeout_ms=1500).finality_timeout == 1.5


class TestEVMNetworks:
    """Test EVM network selection."""

    def test_testnet_networks(self):
        """Test Sepolia and Base Sepolia on testnet."""
        networks = Settings(eth_network="testnet").evm_networks

        assert set(networks) == {11155111, 84532}
        assert networks[84532].explorer_url == "https://sepolia.basescan.org"
        assert networks[11155111].explorer_url == "https://sepolia.etherscan.io"

    def test_mainnet_networks(self):
        """Test Ethereum and Base on mainnet."""
        networks = Settings(eth_network="mainnet").evm_networks

        assert set(networks) == {1, 8453}
        assert networks[8453].name == "Base"
        assert networks[1].explorer_url == "https://etherscan.io"

    def test_backup_rpc_urls(self):
        """Test backup endpoints follow the primary one."""
        settings = Settings(
            eth_network="mainnet",
            base_rpc_url="https://mainnet.base.org",
            base_backup_rpc_urls=["https://base.llamarpc.com"],
        )

        assert settings.evm_networks[8453].rpc_urls == [
            "https://mainnet.base.org",
            "https://base.llamarpc.com",
        ]

    def test_finalised_threshold(self):
        """Test per chain confirmation thresholds."""
        settings = Settings(eth_network="testnet", ethereum_finalised_threshold=12)

        assert settings.evm_networks[11155111].finalised_threshold == 12
        assert settings.evm_networks[84532].finalised_threshold == 1

    def test_unsupported_chain(self):
        """Test lookup of a chain outside the selection."""
        settings = Settings(eth_network="testnet")

        with pytest.raises(ValueError, match="Unsupported EVM chain 8453"):
            settings.get_evm_network(8453)
