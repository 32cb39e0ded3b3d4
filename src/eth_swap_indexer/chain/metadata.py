"""In-process token and pool metadata cache.

Token symbol/decimals and pool token0/token1 never change once a contract
is deployed, so successful lookups are kept for the lifetime of the
process. Failed lookups are never cached.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Generic, TypeVar

from eth_swap_indexer.chain.client import EthereumClient, RPCError
from eth_swap_indexer.ingestor.models import PairToken, Token
from eth_swap_indexer.retry import retry_once

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")


@dataclass
class MetadataCacheStats:
    """Counters for cache effectiveness."""

    hits: int = 0
    misses: int = 0
    failures: int = 0


class _BoundedCache(Generic[K, V]):
    """Insertion/recency ordered dict with an optional LRU bound."""

    def __init__(self, max_entries: int | None = None) -> None:
        self._data: OrderedDict[K, V] = OrderedDict()
        self._max_entries = max_entries

    def get(self, key: K) -> V | None:
        value = self._data.get(key)
        if value is not None and self._max_entries is not None:
            self._data.move_to_end(key)
        return value

    def put(self, key: K, value: V) -> None:
        self._data[key] = value
        self._data.move_to_end(key)
        if self._max_entries is not None:
            while len(self._data) > self._max_entries:
                self._data.popitem(last=False)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data


class TokenMetadataCache:
    """Memoizes token and pair metadata resolved through an EthereumClient.

    Example:
        ```python
        cache = TokenMetadataCache(client)
        pair = await cache.resolve_pair("0x88e6a0c2ddd26feeb64f039a2c41296fcb3f5640")
        if pair is None:
            ...  # skip the swap
        ```
    """

    def __init__(self, client: EthereumClient, *, max_entries: int | None = None) -> None:
        """Initialize the cache.

        Args:
            client: Chain client providing ``get_pair_tokens`` and
                ``get_token_metadata``.
            max_entries: Optional bound per cache; least recently used
                entries are evicted first. ``None`` keeps everything.
        """
        self._client = client
        self._tokens: _BoundedCache[str, Token] = _BoundedCache(max_entries)
        self._pairs: _BoundedCache[str, PairToken] = _BoundedCache(max_entries)
        self.stats = MetadataCacheStats()

    @property
    def token_count(self) -> int:
        return len(self._tokens)

    @property
    def pair_count(self) -> int:
        return len(self._pairs)

    async def resolve_token(self, token_address: str) -> Token | None:
        """Resolve ERC-20 metadata, retrying the chain lookup once.

        Returns:
            The token, or ``None`` if both attempts failed.
        """
        key = token_address.lower()
        cached = self._tokens.get(key)
        if cached is not None:
            self.stats.hits += 1
            return cached

        self.stats.misses += 1
        result = await retry_once(self._client.get_token_metadata, key)
        if result is None:
            self.stats.failures += 1
            logger.warning("Token metadata unresolved for %s", key)
            return None

        symbol, decimals = result
        token = Token(address=key, symbol=symbol, decimals=decimals)
        self._tokens.put(key, token)
        return token

    async def resolve_pair(self, pool_address: str) -> PairToken | None:
        """Resolve a pool's two tokens and their metadata.

        The pool lookup itself is attempted once; each token lookup goes
        through :meth:`resolve_token`.
        """
        key = pool_address.lower()
        cached = self._pairs.get(key)
        if cached is not None:
            self.stats.hits += 1
            return cached

        self.stats.misses += 1
        try:
            token0_address, token1_address = await self._client.get_pair_tokens(key)
        except RPCError as e:
            self.stats.failures += 1
            logger.warning("Pair tokens unresolved for pool %s: %s", key, e)
            return None

        token0 = await self.resolve_token(token0_address)
        if token0 is None:
            return None
        token1 = await self.resolve_token(token1_address)
        if token1 is None:
            return None

        pair = PairToken(pool_address=key, token0=token0, token1=token1)
        self._pairs.put(key, pair)
        return pair
