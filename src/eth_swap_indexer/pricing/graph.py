"""USD price propagation over in-block swap ratios.

Every swap in a batch is an exchange-rate observation between its two
tokens. Starting from a few anchors with known USD prices, prices flow
across those observations; tokens with no path to an anchor fall back to
an external oracle, queried at most once per token per batch.

Edge direction ``a -> b`` carries ``amount_a / amount_b``, so
``usd[b] = usd[a] * graph[a][b]``.

Results depend on seed pop order and on which swap last wrote an edge
when several swaps in one batch touch the same pair.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Protocol

from eth_swap_indexer.config import USDC_ADDRESS, USDT_ADDRESS, WETH_ADDRESS
from eth_swap_indexer.ingestor.models import SwapEvent, SwapLeg

logger = logging.getLogger(__name__)

ONE = Decimal(1)

PriceGraphEdges = dict[str, dict[str, Decimal]]


class PriceOracle(Protocol):
    async def get_usd_price(self, token_address: str) -> Decimal: ...


@dataclass
class PriceResolution:
    """Outcome of one resolution pass."""

    events: list[SwapEvent]
    usd_prices: dict[str, Decimal]
    priced_by_oracle: set[str] = field(default_factory=set)
    oracle_misses: set[str] = field(default_factory=set)

    @property
    def unpriced_tokens(self) -> set[str]:
        tokens: set[str] = set()
        for event in self.events:
            tokens.update(t for t in event.token_addresses if t not in self.usd_prices)
        return tokens


def _usable(amount: Decimal) -> bool:
    return amount.is_finite() and not amount.is_zero()


def build_edges(events: Iterable[SwapEvent]) -> PriceGraphEdges:
    """Build the directed ratio graph for a batch.

    A later swap on the same token pair overwrites the earlier ratio.
    """
    graph: PriceGraphEdges = {}
    for event in events:
        a, b = event.leg_a, event.leg_b
        if not (_usable(a.amount) and _usable(b.amount)):
            continue
        graph.setdefault(a.token_address, {})[b.token_address] = a.amount / b.amount
        graph.setdefault(b.token_address, {})[a.token_address] = b.amount / a.amount
    return graph


def propagate(graph: PriceGraphEdges, usd_prices: dict[str, Decimal], stack: list[str]) -> None:
    """Depth-first price propagation from ``stack``; mutates both arguments."""
    while stack:
        node = stack.pop()
        node_price = usd_prices[node]
        for neighbour, ratio in graph.get(node, {}).items():
            if neighbour not in usd_prices:
                usd_prices[neighbour] = node_price * ratio
                stack.append(neighbour)


def value_leg(leg: SwapLeg, usd_prices: dict[str, Decimal]) -> SwapLeg:
    price = usd_prices.get(leg.token_address)
    if price is None:
        return leg
    return leg.priced(price)


class PriceGraph:
    """Resolves USD values for each leg of a batch of swap events.

    Example:
        ```python
        graph = PriceGraph(oracle)
        resolution = await graph.resolve(events, anchor_usd_price=Decimal("3150.42"))
        for event in resolution.events:
            print(event.leg_a.total_exchanged_usd)
        ```
    """

    def __init__(
        self,
        oracle: PriceOracle,
        *,
        native_token_address: str = WETH_ADDRESS,
        usd_stable_addresses: Sequence[str] = (USDC_ADDRESS, USDT_ADDRESS),
    ) -> None:
        self._oracle = oracle
        self._native = native_token_address.lower()
        self._stables = tuple(a.lower() for a in usd_stable_addresses)

    def seed(self, anchor_usd_price: Decimal | None) -> tuple[dict[str, Decimal], list[str]]:
        """Known anchor prices and the traversal stack (native asset popped first)."""
        usd_prices: dict[str, Decimal] = {}
        stack: list[str] = []
        for stable in self._stables:
            usd_prices[stable] = ONE
            stack.append(stable)
        if anchor_usd_price is not None and anchor_usd_price > 0:
            usd_prices[self._native] = anchor_usd_price
            stack.append(self._native)
        return usd_prices, stack

    async def resolve(
        self,
        events: Sequence[SwapEvent],
        anchor_usd_price: Decimal | None,
    ) -> PriceResolution:
        """Price every leg of ``events``.

        Legs whose token stays unpriced keep ``value_in_usd=None``.
        """
        if not events:
            return PriceResolution(events=[], usd_prices={})

        graph = build_edges(events)
        usd_prices, stack = self.seed(anchor_usd_price)
        propagate(graph, usd_prices, stack)

        attempted: set[str] = set()
        resolution = PriceResolution(events=[], usd_prices=usd_prices)

        for event in events:
            for token in event.token_addresses:
                if token in usd_prices or token in attempted:
                    continue
                attempted.add(token)
                price = await self._oracle.get_usd_price(token)
                if price > 0:
                    usd_prices[token] = price
                    resolution.priced_by_oracle.add(token)
                    propagate(graph, usd_prices, [token])
                else:
                    resolution.oracle_misses.add(token)
                    logger.info("No USD price for token %s in block %d", token, event.block_number)

        resolution.events = [
            replace(
                event,
                leg_a=value_leg(event.leg_a, usd_prices),
                leg_b=value_leg(event.leg_b, usd_prices),
            )
            for event in events
        ]
        return resolution
