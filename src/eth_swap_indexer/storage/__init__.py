"""Storage layer - Database schema, repositories and batch persistence."""

from eth_swap_indexer.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from eth_swap_indexer.storage.models import Base, SwapEventModel
from eth_swap_indexer.storage.persister import BatchPersister, PersistResult, clamp_decimal
from eth_swap_indexer.storage.repos import SwapEventDTO, SwapEventRepository

__all__ = [
    "Base",
    "BatchPersister",
    "DatabaseManager",
    "PersistResult",
    "SwapEventDTO",
    "SwapEventModel",
    "SwapEventRepository",
    "clamp_decimal",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
