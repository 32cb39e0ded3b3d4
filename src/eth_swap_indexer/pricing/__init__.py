"""Pricing layer - swap-ratio price graph and external oracle."""

from eth_swap_indexer.pricing.graph import PriceGraph, PriceResolution
from eth_swap_indexer.pricing.oracle import CoinGeckoPriceOracle

__all__ = [
    "CoinGeckoPriceOracle",
    "PriceGraph",
    "PriceResolution",
]
