"""Uniswap V2/V3 swap indexer with in-block USD price propagation."""

__version__ = "0.1.0"
