"""Repository pattern implementations for data access."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from eth_swap_indexer.storage.models import SwapEventModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_DEDUP_COLUMNS = ["transaction_hash", "log_index"]


@dataclass
class SwapEventDTO:
    """Data transfer object for one ``swap_events`` row."""

    block_number: int
    block_hash: str
    transaction_hash: str
    log_index: int
    pool_address: str | None
    wallet_address: str | None
    token0_id: str
    token0_symbol: str | None
    token0_amount: Decimal | None
    token0_value_in_usd: Decimal | None
    token0_total_exchanged_usd: Decimal | None
    token1_id: str
    token1_symbol: str | None
    token1_amount: Decimal | None
    token1_value_in_usd: Decimal | None
    token1_total_exchanged_usd: Decimal | None
    eth_price_usd: Decimal | None
    created_at: datetime

    def to_values(self) -> dict[str, Any]:
        values = asdict(self)
        values["token0_id"] = self.token0_id.lower()
        values["token1_id"] = self.token1_id.lower()
        return values


class SwapEventRepository:
    """Repository for persisted swap events."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _dialect_name(self) -> str:
        return self.session.get_bind().dialect.name

    async def insert_many(self, rows: Sequence[SwapEventDTO]) -> int:
        """Insert ``rows`` as a single multi-row statement.

        Rows already stored under the same ``(transaction_hash, log_index)``
        are skipped.

        Returns:
            Number of rows actually inserted.
        """
        if not rows:
            return 0

        values = [row.to_values() for row in rows]
        dialect = self._dialect_name()
        if dialect == "postgresql":
            stmt: Any = pg_insert(SwapEventModel).values(values)
            stmt = stmt.on_conflict_do_nothing(index_elements=_DEDUP_COLUMNS)
        elif dialect == "sqlite":
            stmt = sqlite_insert(SwapEventModel).values(values)
            stmt = stmt.on_conflict_do_nothing(index_elements=_DEDUP_COLUMNS)
        else:
            stmt = sa.insert(SwapEventModel).values(values)

        result = await self.session.execute(stmt)
        await self.session.flush()
        inserted = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else len(rows)
        if inserted < len(rows):
            logger.debug("Skipped %d duplicate swap rows", len(rows) - inserted)
        return int(inserted)

    async def latest_block_number(self) -> int | None:
        result = await self.session.execute(select(func.max(SwapEventModel.block_number)))
        value = result.scalar_one_or_none()
        return int(value) if value is not None else None
