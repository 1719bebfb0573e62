"""Block explorer links for purchase transactions."""

import logging

from turbo_credits.core.config import AvailNetwork
from turbo_credits.services.transaction.schemas import ChainType, TransactionStatus

logger = logging.getLogger(__name__)

NO_LINK = "#"

AVAIL_EXPLORER_URLS: dict[AvailNetwork, str] = {
    AvailNetwork.MAINNET: "https://avail.subscan.io/extrinsic/{txn_hash}",
    AvailNetwork.TURING: "https://avail-turing.subscan.io/extrinsic/{txn_hash}",
    AvailNetwork.HEX: (
        "https://explorer.avail.so/?rpc=wss://rpc-hex-devnet.avail.tools/ws"
        "#/explorer/query/{blockhash}"
    ),
}


def detect_avail_network(rpc_url: str) -> AvailNetwork:
    """Guess the Avail network from an RPC endpoint, defaulting to Turing."""
    lowered = rpc_url.lower()
    for network in (AvailNetwork.MAINNET, AvailNetwork.TURING, AvailNetwork.HEX):
        if network.value in lowered:
            return network
    return AvailNetwork.TURING


def resolve_explorer_url(
    status: TransactionStatus | None,
    evm_chain_url: str | None = None,
    *,
    avail_network: AvailNetwork | None = None,
    avail_rpc_url: str = "",
) -> str:
    """Build the block explorer URL for a transaction.

    Args:
        status: Transaction record
        evm_chain_url: Explorer base URL of the connected EVM chain
        avail_network: Configured Avail network, takes precedence over detection
        avail_rpc_url: Avail RPC endpoint used for detection

    Returns:
        Explorer URL, or ``"#"`` when no complete URL can be built yet
    """
    if status is None or not status.txn_hash:
        return NO_LINK

    if status.chain_type == ChainType.AVAIL:
        network = avail_network or detect_avail_network(avail_rpc_url)
        # Hex devnet explorer queries blocks, not extrinsics
        if network == AvailNetwork.HEX and not status.blockhash:
            return NO_LINK
        return AVAIL_EXPLORER_URLS[network].format(
            txn_hash=status.txn_hash, blockhash=status.blockhash
        )

    base_url = evm_chain_url or status.evm_chain_url
    if not base_url:
        logger.debug(f"No explorer URL known for chain {status.chain_id}")
        return NO_LINK
    return f"{base_url.rstrip('/')}/tx/{status.txn_hash}"
