"""Main pipeline orchestrator for the swap indexer.

This module provides the Pipeline class that wires together the log
stream, the block batcher, decoding, pricing and persistence.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from redis.asyncio import Redis

from eth_swap_indexer.chain.client import EthereumClient, RPCError
from eth_swap_indexer.chain.metadata import TokenMetadataCache
from eth_swap_indexer.config import Settings, get_settings
from eth_swap_indexer.ingestor.batcher import BlockBatcher
from eth_swap_indexer.ingestor.decoder import SwapDecoder
from eth_swap_indexer.ingestor.log_stream import ConnectionState, LogStreamHandler
from eth_swap_indexer.pricing.graph import PriceGraph
from eth_swap_indexer.pricing.oracle import CoinGeckoPriceOracle
from eth_swap_indexer.storage.database import DatabaseManager
from eth_swap_indexer.storage.persister import BatchPersister
from eth_swap_indexer.storage.repos import SwapEventRepository

if TYPE_CHECKING:
    from typing import Any

    from eth_swap_indexer.ingestor.models import RawSwapLog, SwapEvent

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    logs_received: int = 0
    blocks_processed: int = 0
    blocks_skipped: int = 0
    swaps_decoded: int = 0
    swaps_skipped: int = 0
    events_persisted: int = 0
    persist_failures: int = 0
    errors: int = 0
    last_block_number: int | None = None
    last_persisted_block: int | None = None
    stream_state: str = ConnectionState.DISCONNECTED.value
    stream_reconnects: int = 0
    last_error: str | None = None


class Pipeline:
    """Main pipeline orchestrator.

    Pipeline flow:
        Log stream -> queue -> BlockBatcher -> decode -> price -> persist

    Example:
        ```python
        from eth_swap_indexer.config import get_settings
        from eth_swap_indexer.pipeline import Pipeline

        pipeline = Pipeline(get_settings())
        await pipeline.run()
        ```
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
        """
        self._settings = settings or get_settings()

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._db_manager: DatabaseManager | None = None
        self._ethereum_client: EthereumClient | None = None
        self._oracle: CoinGeckoPriceOracle | None = None
        self._metadata_cache: TokenMetadataCache | None = None
        self._price_graph: PriceGraph | None = None
        self._persister: BatchPersister | None = None
        self._log_stream: LogStreamHandler | None = None

        self._decoder = SwapDecoder()
        self._batcher = BlockBatcher(
            self._process_block,
            quiet_period_seconds=self._settings.batcher.quiet_period_seconds,
        )
        self._queue: asyncio.Queue[RawSwapLog] = asyncio.Queue(maxsize=self._settings.batcher.queue_maxsize)

        # Anchor (native asset) USD price, refreshed every N blocks
        self._anchor_usd_price: Decimal | None = None
        self._anchor_block_number: int | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._stream_task: asyncio.Task[None] | None = None
        self._consumer_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def batcher(self) -> BlockBatcher:
        return self._batcher

    @property
    def anchor_usd_price(self) -> Decimal | None:
        return self._anchor_usd_price

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline, draining buffered logs before closing resources."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        settings = self._settings

        if settings.redis.url:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)

        logger.debug("Initializing database manager...")
        self._db_manager = DatabaseManager(settings.database.url)

        logger.debug("Initializing Ethereum client...")
        self._ethereum_client = EthereumClient(
            settings.ethereum.rpc_url,
            fallback_rpc_url=settings.ethereum.fallback_rpc_url,
            redis=self._redis,
            cache_ttl_seconds=settings.redis.cache_ttl_seconds,
            max_requests_per_second=settings.ethereum.requests_per_second,
        )

        logger.debug("Initializing price oracle...")
        self._oracle = CoinGeckoPriceOracle(
            base_url=settings.oracle.base_url,
            api_key=settings.oracle.api_key.get_secret_value() if settings.oracle.api_key else None,
            timeout_seconds=settings.oracle.timeout_seconds,
        )

        self._metadata_cache = TokenMetadataCache(
            self._ethereum_client,
            max_entries=settings.batcher.token_cache_max_entries,
        )
        self._price_graph = PriceGraph(
            self._oracle,
            native_token_address=settings.pricing.native_token_address,
            usd_stable_addresses=(
                settings.pricing.usd_stable_address,
                settings.pricing.secondary_usd_stable_address,
            ),
        )
        self._persister = BatchPersister(
            self._db_manager,
            batch_size=settings.batcher.persist_batch_size,
        )

        logger.debug("Initializing log stream...")
        self._log_stream = LogStreamHandler(
            ws_url=settings.ethereum.ws_url,
            on_log=self._enqueue_log,
            on_state_change=self._on_stream_state_change,
            idle_reconnect_seconds=settings.ethereum.idle_reconnect_seconds,
        )

        await self._check_rpc()
        await self._load_last_persisted_block()

    async def _check_rpc(self) -> None:
        """Warn early when the JSON-RPC endpoint is unreachable.

        Not fatal: the stream may still deliver logs, and every read is
        retried (falling back to the secondary endpoint when configured).
        """
        if not self._ethereum_client:
            return
        if await self._ethereum_client.health_check():
            logger.debug("Ethereum RPC reachable")
        else:
            logger.warning("Ethereum RPC health check failed; metadata and sender reads may fail")

    async def _load_last_persisted_block(self) -> None:
        if not self._db_manager:
            return
        async with self._db_manager.get_async_session() as session:
            last_block = await SwapEventRepository(session).latest_block_number()
        self._stats.last_persisted_block = last_block
        if last_block is None:
            logger.info("No swaps persisted yet")
        else:
            logger.info("Last persisted block: %d", last_block)

    async def _on_stream_state_change(self, state: ConnectionState) -> None:
        self._stats.stream_state = state.value
        if state == ConnectionState.RECONNECTING:
            self._stats.stream_reconnects += 1
            logger.warning("Log stream reconnecting (%d so far)", self._stats.stream_reconnects)

    async def _start_background_services(self) -> None:
        """Start the queue consumer and the log stream."""
        self._consumer_task = asyncio.create_task(self._run_consumer())

        if self._log_stream:
            logger.debug("Starting log stream...")
            self._stream_task = asyncio.create_task(self._run_log_stream())

    async def _run_log_stream(self) -> None:
        if not self._log_stream:
            return

        try:
            await self._log_stream.start()
        except asyncio.CancelledError:
            logger.debug("Log stream task cancelled")
        except Exception as e:
            logger.error("Log stream error: %s", e)
            self._stats.last_error = str(e)
            self._stats.errors += 1

    async def _enqueue_log(self, log: RawSwapLog) -> None:
        """Transport callback; blocks when the queue is full."""
        await self._queue.put(log)

    async def _run_consumer(self) -> None:
        """Move logs from the transport queue into the batcher."""
        while True:
            log = await self._queue.get()
            try:
                self._stats.logs_received += 1
                self._batcher.add(log)
            finally:
                self._queue.task_done()

    def _drain_queue(self) -> None:
        while True:
            try:
                log = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._stats.logs_received += 1
            self._batcher.add(log)
            self._queue.task_done()

    async def _stop_background_services(self) -> None:
        """Stop the stream, then flush whatever is still buffered."""
        if self._log_stream:
            logger.debug("Stopping log stream...")
            await self._log_stream.stop()

        if self._stream_task:
            self._stream_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stream_task
            self._stream_task = None

        if self._consumer_task:
            self._consumer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer_task
            self._consumer_task = None

        self._drain_queue()
        if self._batcher.pending_blocks:
            logger.info("Flushing %d buffered block(s)", len(self._batcher.pending_blocks))
        await self._batcher.flush()

    async def _cleanup(self) -> None:
        """Clean up resources."""
        await self._batcher.cancel_timer()

        if self._oracle:
            await self._oracle.aclose()
            self._oracle = None

        if self._ethereum_client:
            await self._ethereum_client.aclose()
            self._ethereum_client = None

        if self._db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def _refresh_anchor_price(self, block_number: int) -> None:
        """Re-fetch the native asset USD price once it is stale."""
        if not self._oracle:
            return
        refresh_blocks = self._settings.pricing.anchor_refresh_blocks
        if (
            self._anchor_block_number is not None
            and block_number - self._anchor_block_number < refresh_blocks
        ):
            return

        price = await self._oracle.get_usd_price(self._settings.pricing.native_token_address)
        if price > 0:
            self._anchor_usd_price = price
            self._anchor_block_number = block_number
            logger.info("Anchor USD price %s at block %d", price, block_number)
        else:
            logger.warning(
                "Anchor price refresh failed at block %d; keeping %s",
                block_number,
                self._anchor_usd_price,
            )

    async def _transaction_sender(self, transaction_hash: str) -> str | None:
        if not self._ethereum_client:
            return None
        try:
            return await self._ethereum_client.get_transaction_sender(transaction_hash)
        except RPCError as e:
            logger.warning("Sender lookup failed for %s: %s", transaction_hash, e)
            return None

    async def _block_timestamp(self, block_number: int) -> datetime:
        if self._ethereum_client:
            try:
                ts = await self._ethereum_client.get_block_timestamp(block_number)
                return datetime.fromtimestamp(ts, tz=UTC)
            except RPCError as e:
                logger.warning("Block timestamp lookup failed for %d: %s", block_number, e)
        return datetime.now(UTC)

    async def _build_events(self, logs: list[RawSwapLog]) -> list[SwapEvent]:
        """Decode logs and attach pair metadata and the transaction sender.

        The sender is looked up once per run of consecutive logs sharing a
        transaction hash.
        """
        if not self._metadata_cache:
            return []

        events: list[SwapEvent] = []
        last_tx_hash: str | None = None
        sender: str | None = None

        for log in logs:
            decoded = self._decoder.decode(log)
            if decoded is None:
                continue
            self._stats.swaps_decoded += 1

            pair = await self._metadata_cache.resolve_pair(log.pool_address)
            if pair is None:
                self._stats.swaps_skipped += 1
                logger.warning(
                    "Skipping swap %s:%d, pool %s metadata unresolved",
                    log.transaction_hash,
                    log.log_index,
                    log.pool_address,
                )
                continue

            if log.transaction_hash != last_tx_hash:
                sender = await self._transaction_sender(log.transaction_hash)
                last_tx_hash = log.transaction_hash

            event = self._decoder.build_swap_event(decoded, pair, from_address=sender)
            if event is None:
                self._stats.swaps_skipped += 1
                continue
            events.append(dataclasses.replace(event, eth_usd_at_block=self._anchor_usd_price))

        return events

    async def _process_block(self, block_number: int, logs: list[RawSwapLog]) -> None:
        """Decode, price and persist every log of one block."""
        self._stats.last_block_number = block_number

        await self._refresh_anchor_price(block_number)
        if self._anchor_usd_price is None:
            self._stats.blocks_skipped += 1
            logger.warning("Skipping block %d: no anchor USD price available", block_number)
            return

        events = await self._build_events(logs)
        if not events:
            self._stats.blocks_processed += 1
            logger.debug("Block %d had no usable swaps", block_number)
            return

        if not self._price_graph or not self._persister:
            raise RuntimeError("Pipeline components are not initialized")

        resolution = await self._price_graph.resolve(events, self._anchor_usd_price)
        unpriced = resolution.unpriced_tokens
        if unpriced:
            logger.info("Block %d: %d token(s) left unpriced", block_number, len(unpriced))

        created_at = await self._block_timestamp(block_number)
        result = await self._persister.persist(resolution.events, block_timestamp=created_at)

        self._stats.blocks_processed += 1
        self._stats.events_persisted += result.written
        self._stats.persist_failures += len(result.failed_chunks)
        logger.info(
            "Block %d: %d swap(s) persisted, %d chunk(s) failed",
            block_number,
            result.written,
            len(result.failed_chunks),
        )

    async def run(self) -> None:
        """Start the pipeline and block until a stop signal is received."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()
