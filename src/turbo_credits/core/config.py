"""Application configuration management using pydantic-settings."""

from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Literal

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AvailNetwork(str, Enum):
    """Avail networks with a known block explorer."""

    MAINNET = "mainnet"
    TURING = "turing"
    HEX = "hex"


@dataclass(frozen=True)
class EVMNetwork:
    """An EVM chain the dashboard accepts payments on."""

    name: str
    chain_id: int
    rpc_urls: list[str] = field(default_factory=list)
    explorer_url: str = ""
    finalised_threshold: int = 1


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="turbo-credits", description="Application name")
    environment: Literal["development", "testing", "staging", "production"] = Field(
        default="development", description="Runtime environment"
    )
    debug: bool = Field(default=False, description="Debug mode flag")

    # API
    api_v1_prefix: str = Field(default="/api/v1", description="API v1 prefix")
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000"],
        description="CORS allowed origins",
    )

    # Credit backend
    api_url: str = Field(
        default="http://localhost:8000",
        description="Credit backend base URL",
    )

    # Avail
    avail_rpc_url: str = Field(
        default="wss://turing-rpc.avail.so/ws",
        description="Avail websocket RPC endpoint",
    )
    avail_network: AvailNetwork | None = Field(
        default=None,
        description="Explicit Avail network; detected from avail_rpc_url when unset",
    )
    avail_lookback_blocks: int = Field(
        default=10, ge=0, description="Blocks searched behind the first head on recovery"
    )
    avail_inclusion_timeout: float = Field(
        default=600.0, gt=0, description="Give up searching for an extrinsic after (seconds)"
    )

    # EVM
    eth_network: Literal["testnet", "mainnet"] = Field(
        default="testnet", description="EVM network selection"
    )
    ethereum_rpc_url: str = Field(
        default="https://ethereum-sepolia-rpc.publicnode.com",
        description="Ethereum RPC endpoint",
    )
    ethereum_backup_rpc_urls: list[str] = Field(
        default=[], description="Backup Ethereum RPC endpoints"
    )
    base_rpc_url: str = Field(
        default="https://sepolia.base.org",
        description="Base RPC endpoint",
    )
    base_backup_rpc_urls: list[str] = Field(
        default=[], description="Backup Base RPC endpoints"
    )
    ethereum_finalised_threshold: int = Field(
        default=1, ge=1, description="Confirmations before an Ethereum payment is final"
    )
    base_finalised_threshold: int = Field(
        default=1, ge=1, description="Confirmations before a Base payment is final"
    )

    # Transaction tracking
    finality_timeout_ms: int = Field(
        default=2000, ge=0, description="Wait in inblock before the finalizing hint"
    )
    evm_poll_interval: float = Field(
        default=2.0, gt=0, description="Receipt polling interval in seconds"
    )
    evm_receipt_timeout: float = Field(
        default=300.0, gt=0, description="Give up waiting for a receipt after (seconds)"
    )
    observation_max_retries: int = Field(
        default=3, ge=0, description="Resubscribe attempts after a dropped subscription"
    )
    observation_retry_delay: float = Field(
        default=1.0, ge=0, description="Base delay between resubscribe attempts"
    )
    rpc_max_retries: int = Field(default=3, ge=1, description="Attempts per RPC endpoint")
    rpc_retry_delay: float = Field(default=1.0, ge=0, description="Delay between RPC attempts")
    history_size: int = Field(
        default=20, ge=0, description="Finished purchases kept for the session"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    @computed_field
    @property
    def evm_networks(self) -> dict[int, EVMNetwork]:
        """Get the EVM networks for the current network selection, keyed by chain ID."""
        if self.eth_network == "mainnet":
            ethereum = ("Ethereum", 1, "https://etherscan.io")
            base = ("Base", 8453, "https://basescan.org")
        else:
            ethereum = ("Sepolia", 11155111, "https://sepolia.etherscan.io")
            base = ("Base Sepolia", 84532, "https://sepolia.basescan.org")

        networks = [
            EVMNetwork(
                name=ethereum[0],
                chain_id=ethereum[1],
                rpc_urls=[self.ethereum_rpc_url, *self.ethereum_backup_rpc_urls],
                explorer_url=ethereum[2],
                finalised_threshold=self.ethereum_finalised_threshold,
            ),
            EVMNetwork(
                name=base[0],
                chain_id=base[1],
                rpc_urls=[self.base_rpc_url, *self.base_backup_rpc_urls],
                explorer_url=base[2],
                finalised_threshold=self.base_finalised_threshold,
            ),
        ]
        return {network.chain_id: network for network in networks}

    @computed_field
    @property
    def finality_timeout(self) -> float:
        """Finality timeout in seconds."""
        return self.finality_timeout_ms / 1000

    def get_evm_network(self, chain_id: int) -> EVMNetwork:
        """Look up a supported EVM network.

        Raises:
            ValueError: If the chain is not supported
        """
        network = self.evm_networks.get(chain_id)
        if network is None:
            supported = ", ".join(str(cid) for cid in self.evm_networks)
            raise ValueError(
                f"Unsupported EVM chain {chain_id} (supported: {supported})"
            )
        return network


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
