"""Per-block debounce scheduler.

Logs are buffered by block number. Every new log restarts a short quiet
timer; when it fires, all logs of the lowest buffered block are handed to
the block handler in one call. Logs for later blocks stay buffered and
the timer is re-armed so they are picked up on the next pass.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .models import RawSwapLog

logger = logging.getLogger(__name__)

DEFAULT_QUIET_PERIOD_SECONDS = 0.3

BlockHandler = Callable[[int, list[RawSwapLog]], Awaitable[None]]


@dataclass
class BatcherStats:
    logs_received: int = 0
    logs_dropped_removed: int = 0
    logs_dropped_duplicate: int = 0
    blocks_processed: int = 0
    handler_errors: int = 0
    last_block_processed: int | None = None


class BlockBatcher:
    """Debounced, lowest-block-first dispatcher of buffered logs.

    ``arriving`` and ``parsing`` are informational flags; everything runs
    on one event loop so no locking is needed.

    Example:
        ```python
        async def handle(block_number: int, logs: list[RawSwapLog]) -> None:
            ...

        batcher = BlockBatcher(handle, quiet_period_seconds=0.3)
        batcher.add(raw_log)
        ...
        await batcher.flush()
        ```
    """

    def __init__(
        self,
        handler: BlockHandler,
        *,
        quiet_period_seconds: float = DEFAULT_QUIET_PERIOD_SECONDS,
    ) -> None:
        self._handler = handler
        self._quiet_period = quiet_period_seconds

        self._pending: dict[int, list[RawSwapLog]] = {}
        self._pending_keys: set[tuple[str, int]] = set()
        self._timer: asyncio.Task[None] | None = None
        self._inflight: asyncio.Task[None] | None = None

        self.arriving = False
        self.parsing = False
        self.arrived_at: float | None = None
        self.stats = BatcherStats()

    @property
    def pending_blocks(self) -> list[int]:
        return sorted(self._pending)

    @property
    def pending_log_count(self) -> int:
        return sum(len(logs) for logs in self._pending.values())

    def add(self, log: RawSwapLog) -> bool:
        """Buffer a log and restart the quiet timer.

        Returns:
            False if the log was dropped (reorged out or already buffered).
        """
        self.stats.logs_received += 1
        if log.removed:
            self.stats.logs_dropped_removed += 1
            logger.debug("Dropping removed log %s:%d", log.transaction_hash, log.log_index)
            return False
        if log.dedup_key in self._pending_keys:
            self.stats.logs_dropped_duplicate += 1
            return False

        self._pending.setdefault(log.block_number, []).append(log)
        self._pending_keys.add(log.dedup_key)

        if not self.arriving:
            self.arriving = True
            self.arrived_at = time.monotonic()
            logger.info("Arrived block %d", log.block_number)

        self._schedule()
        return True

    def _schedule(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._fire_after_quiet_period())

    async def _fire_after_quiet_period(self) -> None:
        await asyncio.sleep(self._quiet_period)
        # One pass at a time, so blocks complete lowest first.
        await self._wait_for_inflight()
        # Detach so a reschedule from inside the pass doesn't cancel this task.
        self._timer = None
        self._inflight = asyncio.current_task()
        try:
            await self.process_next_block()
        finally:
            self._inflight = None
        if self._pending and self._timer is None:
            self._schedule()

    async def _wait_for_inflight(self) -> None:
        inflight = self._inflight
        if inflight is not None and not inflight.done():
            await asyncio.wait({inflight})

    def _pop_lowest_block(self) -> tuple[int, list[RawSwapLog]] | None:
        if not self._pending:
            return None
        block_number = min(self._pending)
        logs = self._pending.pop(block_number)
        for log in logs:
            self._pending_keys.discard(log.dedup_key)
        return block_number, logs

    async def process_next_block(self) -> int | None:
        """Hand the lowest buffered block to the handler.

        Returns:
            The processed block number, or None if the buffer was empty.
        """
        popped = self._pop_lowest_block()
        if popped is None:
            return None
        block_number, logs = popped

        self.arriving = False
        self.parsing = True
        started = time.monotonic()
        try:
            await self._handler(block_number, logs)
        except Exception as e:
            self.stats.handler_errors += 1
            logger.exception("Block %d handler failed: %s", block_number, e)
        finally:
            self.parsing = False

        self.stats.blocks_processed += 1
        self.stats.last_block_processed = block_number
        logger.info(
            "Processed block %d (%d logs) in %.3fs",
            block_number,
            len(logs),
            time.monotonic() - started,
        )
        return block_number

    async def flush(self) -> None:
        """Process every buffered block, lowest first (shutdown drain).

        A pass already started by the timer is awaited first.
        """
        await self.cancel_timer()
        while self._inflight is not None:
            await self._wait_for_inflight()
            # The finished pass may have re-armed the timer.
            await self.cancel_timer()
        while self._pending:
            await self.process_next_block()

    async def cancel_timer(self) -> None:
        """Cancel a pending timer; a pass that is already running is left alone."""
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await timer
