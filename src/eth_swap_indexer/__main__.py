"""Command-line entry point.

Usage:
    python -m eth_swap_indexer run
    python -m eth_swap_indexer init-db
    python -m eth_swap_indexer show-config
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys

from eth_swap_indexer.config import Settings, get_settings
from eth_swap_indexer.pipeline import Pipeline
from eth_swap_indexer.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


async def _run(settings: Settings) -> None:
    pipeline = Pipeline(settings)
    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()

    def _request_stop() -> None:
        logger.info("Shutdown requested")
        if main_task is not None:
            main_task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, _request_stop)

    await pipeline.run()


async def _init_db(settings: Settings) -> None:
    db = DatabaseManager(settings.database.url)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eth-swap-indexer",
        description="Index Uniswap V2/V3 swaps with USD valuations.",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Stream swap logs and persist priced swaps")
    sub.add_parser("init-db", help="Create tables directly (use alembic in production)")
    sub.add_parser("show-config", help="Print the effective configuration with secrets redacted")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    _configure_logging(settings)

    if args.command == "show-config":
        print(json.dumps(settings.redacted_summary(), indent=2))
        return 0

    logger.info("Configuration: %s", settings.redacted_summary())
    if args.command == "init-db":
        asyncio.run(_init_db(settings))
        return 0

    asyncio.run(_run(settings))
    return 0


if __name__ == "__main__":
    sys.exit(main())
