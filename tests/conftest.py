"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal

import pytest

from eth_swap_indexer.ingestor.models import PairToken, RawSwapLog, SwapEvent, SwapLeg, Token

WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
POOL = "0x88e6a0c2ddd26feeb64f039a2c41296fcb3f5640"


@pytest.fixture
def make_log() -> Callable[..., RawSwapLog]:
    """Factory for raw logs with sensible defaults."""

    def _make(
        *,
        block_number: int = 100,
        tx_hash: str | None = None,
        log_index: int = 0,
        topics: tuple[str, ...] = (),
        data: str = "0x",
        pool: str = POOL,
        removed: bool = False,
    ) -> RawSwapLog:
        return RawSwapLog(
            block_number=block_number,
            block_hash="0x" + "b" * 64,
            transaction_hash=tx_hash or "0x" + f"{block_number:064x}",
            log_index=log_index,
            pool_address=pool,
            topics=topics,
            data=data,
            removed=removed,
        )

    return _make


@pytest.fixture
def make_event() -> Callable[..., SwapEvent]:
    """Factory for unpriced swap events (leg A in, leg B out)."""

    def _make(
        token_a: str,
        amount_a: str | Decimal,
        token_b: str,
        amount_b: str | Decimal,
        *,
        block_number: int = 100,
        log_index: int = 0,
    ) -> SwapEvent:
        return SwapEvent(
            block_number=block_number,
            block_hash="0x" + "b" * 64,
            transaction_hash="0x" + f"{block_number:032x}{log_index:032x}",
            log_index=log_index,
            pool_address=POOL,
            from_address="0x" + "f" * 40,
            leg_a=SwapLeg(token_address=token_a, symbol=None, amount=Decimal(amount_a)),
            leg_b=SwapLeg(token_address=token_b, symbol=None, amount=Decimal(amount_b)),
        )

    return _make


@pytest.fixture
def usdc_weth_pair() -> PairToken:
    """USDC/WETH pool in on-chain token order (USDC sorts first)."""
    return PairToken(
        pool_address=POOL,
        token0=Token(address=USDC, symbol="USDC", decimals=6),
        token1=Token(address=WETH, symbol="WETH", decimals=18),
    )
