"""Blockchain infrastructure module."""

from turbo_credits.infrastructure.blockchain.client import ChainClient, EVMClient
from turbo_credits.infrastructure.blockchain.substrate import (
    SubstrateConnectionError,
    SubstrateRPC,
    SubstrateRPCError,
    Subscription,
    extrinsic_hash,
)

__all__ = [
    # EVM
    "ChainClient",
    "EVMClient",
    # Avail
    "SubstrateRPC",
    "SubstrateRPCError",
    "SubstrateConnectionError",
    "Subscription",
    "extrinsic_hash",
]
