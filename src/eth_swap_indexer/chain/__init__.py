"""Chain access layer - Ethereum RPC client and metadata cache."""

from eth_swap_indexer.chain.client import EthereumClient, EthereumClientError, RPCError
from eth_swap_indexer.chain.metadata import TokenMetadataCache

__all__ = [
    "EthereumClient",
    "EthereumClientError",
    "RPCError",
    "TokenMetadataCache",
]
