"""SQLAlchemy models for persistent storage.

``swap_events`` holds one row per normalized swap. ``token0_*`` is the
leg that went into the pool and ``token1_*`` the leg that came out.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Precision/scale of every decimal column; values are clamped to fit.
NUMERIC_PRECISION = 50
NUMERIC_SCALE = 18
SYMBOL_MAX_LENGTH = 128


def _amount_column() -> Mapped[Decimal | None]:
    return mapped_column(Numeric(NUMERIC_PRECISION, NUMERIC_SCALE), nullable=True)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class SwapEventModel(Base):
    """A priced two-sided swap."""

    __tablename__ = "swap_events"

    # Integer (not BigInteger) so SQLite treats it as a rowid alias in tests.
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )

    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    pool_address: Mapped[str | None] = mapped_column(String(42), nullable=True)
    wallet_address: Mapped[str | None] = mapped_column(String(42), nullable=True)

    token0_id: Mapped[str] = mapped_column(String(42), nullable=False)
    token0_symbol: Mapped[str | None] = mapped_column(String(SYMBOL_MAX_LENGTH), nullable=True)
    token0_amount: Mapped[Decimal | None] = _amount_column()
    token0_value_in_usd: Mapped[Decimal | None] = _amount_column()
    token0_total_exchanged_usd: Mapped[Decimal | None] = _amount_column()

    token1_id: Mapped[str] = mapped_column(String(42), nullable=False)
    token1_symbol: Mapped[str | None] = mapped_column(String(SYMBOL_MAX_LENGTH), nullable=True)
    token1_amount: Mapped[Decimal | None] = _amount_column()
    token1_value_in_usd: Mapped[Decimal | None] = _amount_column()
    token1_total_exchanged_usd: Mapped[Decimal | None] = _amount_column()

    eth_price_usd: Mapped[Decimal | None] = _amount_column()

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("transaction_hash", "log_index", name="uq_swap_events_tx_log"),
        Index("idx_swap_events_block_number", "block_number"),
        Index("idx_swap_events_token0_id", "token0_id"),
        Index("idx_swap_events_token1_id", "token1_id"),
        Index("idx_swap_events_created_at", "created_at"),
    )
