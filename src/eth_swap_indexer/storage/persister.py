"""Chunked persistence of priced swap events."""

import logging
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from eth_swap_indexer.ingestor.models import SwapEvent
from eth_swap_indexer.storage.database import DatabaseManager
from eth_swap_indexer.storage.models import SYMBOL_MAX_LENGTH
from eth_swap_indexer.storage.repos import SwapEventDTO, SwapEventRepository

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100

# Largest magnitude a NUMERIC(50, 18) column accepts.
MAX_NUMERIC = Decimal("9.999999999999999999999999999999999999999999999999E+31")
MIN_NUMERIC = -MAX_NUMERIC

RepositoryFactory = Callable[[AsyncSession], SwapEventRepository]


def clamp_decimal(value: Decimal | None) -> Decimal | None:
    """Fit ``value`` into the column range.

    ``None`` and non-finite values (NaN, infinities) become ``None``;
    out-of-range values are clamped to the nearest bound.
    """
    if value is None or not value.is_finite():
        return None
    if value > MAX_NUMERIC:
        return MAX_NUMERIC
    if value < MIN_NUMERIC:
        return MIN_NUMERIC
    return value


def sanitize_symbol(symbol: str | None) -> str | None:
    """Make an on-chain ``symbol()`` storable.

    PostgreSQL rejects NUL characters in text, and the column is
    ``SYMBOL_MAX_LENGTH`` wide. An empty result becomes ``None``.
    """
    if symbol is None:
        return None
    cleaned = symbol.replace("\x00", "").strip()[:SYMBOL_MAX_LENGTH]
    return cleaned or None


def chunked(items: Sequence[SwapEvent], size: int) -> Iterator[Sequence[SwapEvent]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def to_dto(event: SwapEvent, *, created_at: datetime) -> SwapEventDTO:
    return SwapEventDTO(
        block_number=event.block_number,
        block_hash=event.block_hash,
        transaction_hash=event.transaction_hash,
        log_index=event.log_index,
        pool_address=event.pool_address.lower() if event.pool_address else None,
        wallet_address=event.from_address.lower() if event.from_address else None,
        token0_id=event.leg_a.token_address.lower(),
        token0_symbol=sanitize_symbol(event.leg_a.symbol),
        token0_amount=clamp_decimal(event.leg_a.amount),
        token0_value_in_usd=clamp_decimal(event.leg_a.value_in_usd),
        token0_total_exchanged_usd=clamp_decimal(event.leg_a.total_exchanged_usd),
        token1_id=event.leg_b.token_address.lower(),
        token1_symbol=sanitize_symbol(event.leg_b.symbol),
        token1_amount=clamp_decimal(event.leg_b.amount),
        token1_value_in_usd=clamp_decimal(event.leg_b.value_in_usd),
        token1_total_exchanged_usd=clamp_decimal(event.leg_b.total_exchanged_usd),
        eth_price_usd=clamp_decimal(event.eth_usd_at_block),
        created_at=created_at,
    )


@dataclass
class PersistResult:
    """Acknowledgement of a persist call; ``ok`` is False on partial failure."""

    written: int = 0
    chunks: int = 0
    failed_chunks: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_chunks


class BatchPersister:
    """Writes swap events in fixed-size multi-row inserts.

    Each chunk runs in its own transaction. A failing chunk is logged and
    skipped; the remaining chunks are still attempted.
    """

    def __init__(
        self,
        db: DatabaseManager,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        repository_factory: RepositoryFactory = SwapEventRepository,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._db = db
        self._batch_size = batch_size
        self._repository_factory = repository_factory

    @property
    def batch_size(self) -> int:
        return self._batch_size

    async def persist(self, events: Sequence[SwapEvent], *, block_timestamp: datetime) -> PersistResult:
        result = PersistResult()
        for index, chunk in enumerate(chunked(events, self._batch_size)):
            result.chunks += 1
            rows = [to_dto(event, created_at=block_timestamp) for event in chunk]
            try:
                async with self._db.get_async_session() as session:
                    result.written += await self._repository_factory(session).insert_many(rows)
            except SQLAlchemyError as e:
                result.failed_chunks.append(index)
                logger.error(
                    "Failed to persist chunk %d (%d rows, blocks %d-%d): %s",
                    index,
                    len(rows),
                    rows[0].block_number,
                    rows[-1].block_number,
                    e,
                )
        return result
