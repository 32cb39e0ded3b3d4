"""Uniswap V2/V3 ``Swap`` log decoding and swap normalization."""

import logging
from decimal import Decimal

from eth_abi import decode
from eth_abi.exceptions import DecodingError

from .models import DecodedSwap, PairToken, RawSwapLog, SwapEvent, SwapLeg

logger = logging.getLogger(__name__)

# Swap(address indexed sender, address indexed recipient, int256 amount0,
#      int256 amount1, uint160 sqrtPriceX96, uint128 liquidity, int24 tick)
UNISWAP_V3_SWAP_TOPIC = "0xc42079f94a6350d7e6235f29174924f928cc2ac818eb64fed8004e115fbcca67"
# Swap(address indexed sender, uint amount0In, uint amount1In,
#      uint amount0Out, uint amount1Out, address indexed to)
UNISWAP_V2_SWAP_TOPIC = "0xd78ad95fa46c994b6551d0da85fc275fe613ce37657fb8d5e3d130840159d822"

SWAP_TOPICS: tuple[str, ...] = (UNISWAP_V3_SWAP_TOPIC, UNISWAP_V2_SWAP_TOPIC)

_V3_DATA_TYPES = ["int256", "int256", "uint160", "uint128", "int24"]
_V2_DATA_TYPES = ["uint256", "uint256", "uint256", "uint256"]


def to_decimal(raw_amount: int, decimals: int) -> Decimal:
    """Scale a raw integer token amount by ``10 ** -decimals``."""
    return Decimal(raw_amount).scaleb(-decimals)


def v2_signed_amounts(
    amount0_in: int,
    amount1_in: int,
    amount0_out: int,
    amount1_out: int,
) -> tuple[int, int]:
    """Collapse V2 in/out amounts into V3-style signed amounts.

    When nothing of token0 came in, token0 was paid out and token1 came
    in; otherwise token0 came in and token1 was paid out.
    """
    if amount0_in == 0:
        return -amount0_out, amount1_in
    return amount0_in, amount1_out


class SwapDecoder:
    """Decodes raw ``Swap`` logs and builds normalized swap events."""

    def decode(self, log: RawSwapLog) -> DecodedSwap | None:
        """Decode a raw log, or return ``None`` for anything that is not a swap."""
        if not log.topics:
            return None

        topic0 = log.topics[0].lower()
        if topic0 not in SWAP_TOPICS:
            logger.debug("Dropping log %s:%d with unknown topic %s", log.transaction_hash, log.log_index, topic0)
            return None

        try:
            payload = bytes.fromhex(log.data[2:] if log.data.startswith("0x") else log.data)
            if topic0 == UNISWAP_V3_SWAP_TOPIC:
                amount0, amount1, _sqrt_price, _liquidity, _tick = decode(_V3_DATA_TYPES, payload)
                return DecodedSwap(log=log, version="v3", amount0=int(amount0), amount1=int(amount1))

            amount0_in, amount1_in, amount0_out, amount1_out = decode(_V2_DATA_TYPES, payload)
        except (DecodingError, ValueError) as e:
            logger.debug("Undecodable swap data in %s:%d: %s", log.transaction_hash, log.log_index, e)
            return None

        amount0, amount1 = v2_signed_amounts(amount0_in, amount1_in, amount0_out, amount1_out)
        return DecodedSwap(log=log, version="v2", amount0=amount0, amount1=amount1)

    def build_swap_event(
        self,
        decoded: DecodedSwap,
        pair: PairToken,
        *,
        from_address: str | None,
    ) -> SwapEvent | None:
        """Order the two legs so ``leg_a`` is the positive side.

        Returns ``None`` for pool self-swaps and for degenerate swaps where
        neither side is positive.
        """
        log = decoded.log
        if pair.is_self_swap:
            logger.warning("Skipping self-swap in pool %s (tx %s)", pair.pool_address, log.transaction_hash)
            return None

        amount0 = to_decimal(decoded.amount0, pair.token0.decimals)
        amount1 = to_decimal(decoded.amount1, pair.token1.decimals)

        if amount0 > 0:
            leg_a = SwapLeg(token_address=pair.token0.address, symbol=pair.token0.symbol, amount=amount0)
            leg_b = SwapLeg(token_address=pair.token1.address, symbol=pair.token1.symbol, amount=abs(amount1))
        else:
            leg_a = SwapLeg(token_address=pair.token1.address, symbol=pair.token1.symbol, amount=amount1)
            leg_b = SwapLeg(token_address=pair.token0.address, symbol=pair.token0.symbol, amount=abs(amount0))

        if leg_a.amount <= 0:
            logger.warning(
                "Skipping swap with no positive leg in pool %s (tx %s)",
                pair.pool_address,
                log.transaction_hash,
            )
            return None

        return SwapEvent(
            block_number=log.block_number,
            block_hash=log.block_hash,
            transaction_hash=log.transaction_hash,
            log_index=log.log_index,
            pool_address=log.pool_address,
            from_address=from_address,
            leg_a=leg_a,
            leg_b=leg_b,
        )
