"""Data ingestion layer - swap log streaming, decoding and block batching."""

from eth_swap_indexer.ingestor.batcher import BlockBatcher
from eth_swap_indexer.ingestor.decoder import (
    UNISWAP_V2_SWAP_TOPIC,
    UNISWAP_V3_SWAP_TOPIC,
    SwapDecoder,
)
from eth_swap_indexer.ingestor.log_stream import LogStreamHandler
from eth_swap_indexer.ingestor.models import (
    DecodedSwap,
    PairToken,
    RawSwapLog,
    SwapEvent,
    SwapLeg,
    Token,
)

__all__ = [
    "BlockBatcher",
    "DecodedSwap",
    "LogStreamHandler",
    "PairToken",
    "RawSwapLog",
    "SwapDecoder",
    "SwapEvent",
    "SwapLeg",
    "Token",
    "UNISWAP_V2_SWAP_TOPIC",
    "UNISWAP_V3_SWAP_TOPIC",
]
