"""CoinGecko USD price oracle.

Used for the anchor (WETH) price and as the fallback for tokens that have
no in-batch path to an anchor. Every failure collapses to ``Decimal(0)``;
callers treat zero as "no price".
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"
DEFAULT_TIMEOUT_SECONDS = 10.0
MAX_RETRIES = 2
RETRY_DELAYS = [1.0, 3.0]

ZERO = Decimal(0)


class PriceOracleError(Exception):
    """Raised internally when a price response cannot be used."""


def parse_usd_price(payload: dict[str, Any]) -> Decimal:
    """Extract ``market_data.current_price.usd`` from a contract lookup."""
    try:
        raw = payload["market_data"]["current_price"]["usd"]
    except (KeyError, TypeError) as e:
        raise PriceOracleError(f"Missing market_data.current_price.usd: {e}") from e
    if raw is None:
        raise PriceOracleError("USD price is null")
    try:
        price = Decimal(str(raw))
    except InvalidOperation as e:
        raise PriceOracleError(f"Invalid USD price {raw!r}") from e
    if not price.is_finite() or price < 0:
        raise PriceOracleError(f"Unusable USD price {raw!r}")
    return price


class CoinGeckoPriceOracle:
    """Async CoinGecko client keyed by Ethereum contract address.

    Example:
        ```python
        oracle = CoinGeckoPriceOracle()
        price = await oracle.get_usd_price("0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2")
        await oracle.aclose()
        ```
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        api_key: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
        retry_delays: list[float] | None = None,
    ) -> None:
        """Initialize the oracle.

        Args:
            base_url: API root, e.g. ``https://api.coingecko.com/api/v3``.
            api_key: Optional demo/pro API key sent as ``x-cg-demo-api-key``.
            timeout_seconds: Per-request timeout.
            client: Pre-built httpx client (tests inject a MockTransport here).
            retry_delays: Backoff schedule for 429/timeouts.
        """
        self._base_url = base_url.rstrip("/")
        self._retry_delays = retry_delays if retry_delays is not None else RETRY_DELAYS
        self._owns_client = client is None
        if client is None:
            headers: dict[str, str] = {"accept": "application/json"}
            if api_key:
                headers["x-cg-demo-api-key"] = api_key
            client = httpx.AsyncClient(timeout=timeout_seconds, headers=headers)
        self._client = client
        self.requests_made = 0

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _delay(self, attempt: int) -> float:
        if not self._retry_delays:
            return 0.0
        return self._retry_delays[min(attempt, len(self._retry_delays) - 1)]

    async def get_usd_price(self, token_address: str) -> Decimal:
        """Fetch the USD price of a token, or ``Decimal(0)`` on any failure."""
        url = f"{self._base_url}/coins/ethereum/contract/{token_address.lower()}"

        for attempt in range(MAX_RETRIES + 1):
            try:
                self.requests_made += 1
                resp = await self._client.get(url)

                if resp.status_code == 429:
                    if attempt < MAX_RETRIES:
                        delay = self._delay(attempt)
                        logger.debug("Oracle rate limited for %s, waiting %.1fs", token_address, delay)
                        await asyncio.sleep(delay)
                        continue
                    logger.warning("Oracle rate limited for %s after %d attempts", token_address, attempt + 1)
                    return ZERO
                if resp.status_code != 200:
                    logger.debug("Oracle HTTP %d for %s", resp.status_code, token_address)
                    return ZERO

                return parse_usd_price(resp.json())

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    delay = self._delay(attempt)
                    logger.debug("Oracle %s for %s, retry in %.1fs", type(e).__name__, token_address, delay)
                    await asyncio.sleep(delay)
                    continue
                logger.warning("Oracle failed for %s after %d attempts: %s", token_address, attempt + 1, e)
                return ZERO
            except (httpx.HTTPError, ValueError, PriceOracleError) as e:
                logger.warning("Oracle price lookup failed for %s: %s", token_address, e)
                return ZERO

        return ZERO
