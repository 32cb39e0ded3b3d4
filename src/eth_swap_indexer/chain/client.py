"""Ethereum JSON-RPC client with rate limiting, failover and caching.

Provides the read-only chain capabilities the swap pipeline needs:
- Pool token addresses (``token0()`` / ``token1()``)
- ERC-20 ``symbol()`` / ``decimals()``
- Transaction sender and block timestamp lookups

Immutable results (pool tokens, token metadata, block timestamps) are
written through to Redis when a client is configured.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from eth_abi.exceptions import DecodingError
from redis.asyncio import Redis
from redis.exceptions import RedisError
from web3 import AsyncWeb3
from web3.exceptions import Web3Exception
from web3.providers import AsyncHTTPProvider

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 7 * 24 * 3600
DEFAULT_MAX_REQUESTS_PER_SECOND = 25
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0

PAIR_ABI: list[dict[str, Any]] = [
    {
        "constant": True,
        "inputs": [],
        "name": "token0",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "token1",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
]

ERC20_METADATA_ABI: list[dict[str, Any]] = [
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
]

# Some early tokens (MKR, SAI) return symbol as bytes32.
ERC20_BYTES32_SYMBOL_ABI: list[dict[str, Any]] = [
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "view",
        "type": "function",
    },
]


class EthereumClientError(Exception):
    """Base exception for Ethereum client errors."""


class RPCError(EthereumClientError):
    """Raised when an RPC call fails."""


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> "RateLimiter":
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


class EthereumClient:
    """Ethereum mainnet client with caching and rate limiting.

    Example:
        ```python
        client = EthereumClient(
            rpc_url="https://eth.llamarpc.com",
            fallback_rpc_url="https://ethereum-rpc.publicnode.com",
        )
        token0, token1 = await client.get_pair_tokens("0x...")
        symbol, decimals = await client.get_token_metadata(token0)
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        fallback_rpc_url: str | None = None,
        redis: Redis | None = None,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
    ) -> None:
        """Initialize the Ethereum client.

        Args:
            rpc_url: Primary JSON-RPC endpoint URL.
            fallback_rpc_url: Optional fallback RPC URL for failover.
            redis: Optional Redis client for caching immutable reads.
            cache_ttl_seconds: Cache TTL in seconds.
            max_requests_per_second: Rate limit for RPC calls.
            max_retries: Maximum retry attempts per endpoint.
            retry_delay_seconds: Initial delay between retries.
        """
        self._rpc_url = rpc_url
        self._redis = redis
        self._cache_ttl = cache_ttl_seconds
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds

        self._w3: AsyncWeb3[AsyncHTTPProvider] = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._w3_fallback: AsyncWeb3[AsyncHTTPProvider] | None = None
        if fallback_rpc_url:
            self._w3_fallback = AsyncWeb3(AsyncHTTPProvider(fallback_rpc_url))

        self._rate_limiter = RateLimiter.create(max_requests_per_second)

        self._primary_healthy = True
        self._last_primary_check = 0.0
        self._primary_recovery_interval = 60.0

        self._cache_prefix = "eth:"

    def _cache_key(self, key_type: str, ident: str) -> str:
        return f"{self._cache_prefix}{key_type}:{ident.lower()}"

    async def _get_cached(self, key: str) -> str | None:
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
        except RedisError as e:
            logger.warning("Cache get failed: %s", e)
            return None
        if isinstance(value, bytes):
            return value.decode()
        return str(value) if value is not None else None

    async def _set_cached(self, key: str, value: str) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, value, ex=self._cache_ttl)
        except RedisError as e:
            logger.warning("Cache set failed: %s", e)

    def _should_try_primary(self) -> bool:
        if self._primary_healthy:
            return True
        now = time.monotonic()
        if now - self._last_primary_check > self._primary_recovery_interval:
            self._last_primary_check = now
            return True
        return False

    def _active_web3(self) -> AsyncWeb3[AsyncHTTPProvider]:
        if self._primary_healthy or self._w3_fallback is None:
            return self._w3
        return self._w3_fallback

    async def _execute_with_retry(self, func_name: str, *args: Any, **kwargs: Any) -> Any:
        """Execute a ``web3.eth`` call with retry and failover.

        Raises:
            RPCError: If all retries on every endpoint fail.
        """
        await self._rate_limiter.acquire()

        last_error: Exception | None = None
        delay = self._retry_delay

        if self._should_try_primary():
            for attempt in range(self._max_retries):
                try:
                    method = getattr(self._w3.eth, func_name)
                    result = await method(*args, **kwargs)
                    self._primary_healthy = True
                    return result
                except (Web3Exception, OSError, TimeoutError) as e:
                    last_error = e
                    logger.warning(
                        "Primary RPC %s failed (attempt %d/%d): %s",
                        func_name,
                        attempt + 1,
                        self._max_retries,
                        e,
                    )
                    if attempt < self._max_retries - 1:
                        await asyncio.sleep(delay)
                        delay *= 2

            self._primary_healthy = False
            self._last_primary_check = time.monotonic()

        if self._w3_fallback:
            delay = self._retry_delay
            for attempt in range(self._max_retries):
                try:
                    method = getattr(self._w3_fallback.eth, func_name)
                    result = await method(*args, **kwargs)
                    logger.info("Fallback RPC succeeded for %s", func_name)
                    return result
                except (Web3Exception, OSError, TimeoutError) as e:
                    last_error = e
                    logger.warning(
                        "Fallback RPC %s failed (attempt %d/%d): %s",
                        func_name,
                        attempt + 1,
                        self._max_retries,
                        e,
                    )
                    if attempt < self._max_retries - 1:
                        await asyncio.sleep(delay)
                        delay *= 2

        raise RPCError(f"RPC call {func_name} failed after all retries: {last_error}")

    async def _call_view(
        self,
        address: str,
        abi: list[dict[str, Any]],
        fn_name: str,
    ) -> Any:
        """Call a no-argument view function on ``address``."""
        await self._rate_limiter.acquire()
        try:
            contract = self._active_web3().eth.contract(
                address=AsyncWeb3.to_checksum_address(address),
                abi=abi,
            )
            return await getattr(contract.functions, fn_name)().call()
        except (Web3Exception, DecodingError, ValueError, OSError, TimeoutError) as e:
            raise RPCError(f"{fn_name}() on {address} failed: {e}") from e

    async def get_pair_tokens(self, pool_address: str) -> tuple[str, str]:
        """Get the two token addresses of a V2 pair or V3 pool.

        Returns:
            ``(token0, token1)`` lowercased.

        Raises:
            RPCError: If either view call fails.
        """
        cache_key = self._cache_key("pair", pool_address)
        cached = await self._get_cached(cache_key)
        if cached is not None:
            token0, token1 = json.loads(cached)
            return str(token0), str(token1)

        token0 = str(await self._call_view(pool_address, PAIR_ABI, "token0")).lower()
        token1 = str(await self._call_view(pool_address, PAIR_ABI, "token1")).lower()

        await self._set_cached(cache_key, json.dumps([token0, token1]))
        return token0, token1

    async def get_token_metadata(self, token_address: str) -> tuple[str | None, int]:
        """Get ERC-20 symbol and decimals.

        A token whose symbol cannot be read in either the ``string`` or
        ``bytes32`` form is returned with ``symbol=None``; ``decimals`` is
        mandatory.

        Raises:
            RPCError: If ``decimals()`` cannot be read.
        """
        cache_key = self._cache_key("token", token_address)
        cached = await self._get_cached(cache_key)
        if cached is not None:
            payload = json.loads(cached)
            return payload["symbol"], int(payload["decimals"])

        decimals = int(await self._call_view(token_address, ERC20_METADATA_ABI, "decimals"))
        symbol = await self._read_symbol(token_address)

        await self._set_cached(cache_key, json.dumps({"symbol": symbol, "decimals": decimals}))
        return symbol, decimals

    async def _read_symbol(self, token_address: str) -> str | None:
        try:
            return str(await self._call_view(token_address, ERC20_METADATA_ABI, "symbol"))
        except RPCError:
            pass
        try:
            raw = await self._call_view(token_address, ERC20_BYTES32_SYMBOL_ABI, "symbol")
        except RPCError as e:
            logger.debug("Token %s exposes no readable symbol: %s", token_address, e)
            return None
        return bytes(raw).rstrip(b"\x00").decode("utf-8", errors="replace") or None

    async def get_transaction_sender(self, transaction_hash: str) -> str:
        """Get the ``from`` address of a transaction (lowercased)."""
        tx = await self._execute_with_retry("get_transaction", transaction_hash)
        return str(tx["from"]).lower()

    async def get_block_timestamp(self, block_number: int) -> int:
        """Get a block's unix timestamp in seconds."""
        cache_key = self._cache_key("block_ts", str(block_number))
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return int(cached)

        block = await self._execute_with_retry("get_block", block_number)
        timestamp = int(block["timestamp"])

        await self._set_cached(cache_key, str(timestamp))
        return timestamp

    async def health_check(self) -> bool:
        """Check if the client can reach the RPC."""
        try:
            await self._execute_with_retry("get_block", "latest")
            return True
        except RPCError:
            return False

    async def aclose(self) -> None:
        """Close async HTTP provider sessions."""
        providers = [self._w3.provider]
        if self._w3_fallback is not None:
            providers.append(self._w3_fallback.provider)

        for provider in providers:
            disconnect = getattr(provider, "disconnect", None)
            if not callable(disconnect):
                continue
            try:
                result = disconnect()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Failed to close RPC provider session: %s", e)
