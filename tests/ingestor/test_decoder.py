"""Tests for swap log decoding and leg ordering."""

from __future__ import annotations

from decimal import Decimal

import pytest
from eth_abi import encode

from eth_swap_indexer.ingestor.decoder import (
    UNISWAP_V2_SWAP_TOPIC,
    UNISWAP_V3_SWAP_TOPIC,
    SwapDecoder,
    to_decimal,
    v2_signed_amounts,
)
from eth_swap_indexer.ingestor.models import DecodedSwap, PairToken, Token

USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
SENDER_TOPIC = "0x" + "0" * 24 + "1" * 40
RECIPIENT_TOPIC = "0x" + "0" * 24 + "2" * 40


def v3_data(amount0: int, amount1: int) -> str:
    payload = encode(
        ["int256", "int256", "uint160", "uint128", "int24"],
        [amount0, amount1, 1_461_446_703_485_210_103_287_273_052_203_988_822_378_723_970_341, 10**18, -200_000],
    )
    return "0x" + payload.hex()


def v2_data(amount0_in: int, amount1_in: int, amount0_out: int, amount1_out: int) -> str:
    payload = encode(["uint256"] * 4, [amount0_in, amount1_in, amount0_out, amount1_out])
    return "0x" + payload.hex()


@pytest.fixture
def decoder() -> SwapDecoder:
    return SwapDecoder()


class TestV2SignedAmounts:
    def test_no_token0_in_means_token0_paid_out(self) -> None:
        assert v2_signed_amounts(0, 1_000, 2_500, 0) == (-2_500, 1_000)

    def test_token0_in_means_token1_paid_out(self) -> None:
        assert v2_signed_amounts(2_500, 0, 0, 1_000) == (2_500, 1_000)

    def test_token0_in_with_zero_token1_out(self) -> None:
        """Only amount0In decides the branch."""
        assert v2_signed_amounts(7, 3, 0, 0) == (7, 0)

    def test_all_zero(self) -> None:
        assert v2_signed_amounts(0, 0, 0, 0) == (0, 0)


class TestDecode:
    def test_decodes_v3_swap(self, decoder, make_log) -> None:
        log = make_log(
            topics=(UNISWAP_V3_SWAP_TOPIC, SENDER_TOPIC, RECIPIENT_TOPIC),
            data=v3_data(3_000_000_000, -(10**18)),
        )

        decoded = decoder.decode(log)

        assert decoded is not None
        assert decoded.version == "v3"
        assert decoded.amount0 == 3_000_000_000
        assert decoded.amount1 == -(10**18)
        assert decoded.log is log

    def test_decodes_v2_swap_token0_out(self, decoder, make_log) -> None:
        log = make_log(
            topics=(UNISWAP_V2_SWAP_TOPIC, SENDER_TOPIC, RECIPIENT_TOPIC),
            data=v2_data(0, 10**18, 3_000_000_000, 0),
        )

        decoded = decoder.decode(log)

        assert decoded is not None
        assert decoded.version == "v2"
        assert (decoded.amount0, decoded.amount1) == (-3_000_000_000, 10**18)

    def test_decodes_v2_swap_token0_in(self, decoder, make_log) -> None:
        log = make_log(
            topics=(UNISWAP_V2_SWAP_TOPIC,),
            data=v2_data(3_000_000_000, 0, 0, 10**18),
        )

        decoded = decoder.decode(log)

        assert decoded is not None
        assert (decoded.amount0, decoded.amount1) == (3_000_000_000, 10**18)

    def test_topic_match_is_case_insensitive(self, decoder, make_log) -> None:
        log = make_log(topics=(UNISWAP_V3_SWAP_TOPIC.upper().replace("0X", "0x"),), data=v3_data(1, -1))
        assert decoder.decode(log) is not None

    def test_unknown_topic_is_dropped(self, decoder, make_log) -> None:
        transfer_topic = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
        log = make_log(topics=(transfer_topic,), data=v2_data(1, 2, 3, 4))
        assert decoder.decode(log) is None

    def test_no_topics_is_dropped(self, decoder, make_log) -> None:
        assert decoder.decode(make_log(topics=())) is None

    def test_truncated_data_is_dropped(self, decoder, make_log) -> None:
        log = make_log(topics=(UNISWAP_V3_SWAP_TOPIC,), data="0x" + "00" * 40)
        assert decoder.decode(log) is None

    def test_non_hex_data_is_dropped(self, decoder, make_log) -> None:
        log = make_log(topics=(UNISWAP_V2_SWAP_TOPIC,), data="0xzz")
        assert decoder.decode(log) is None


class TestToDecimal:
    def test_scales_by_decimals(self) -> None:
        assert to_decimal(1_500_000, 6) == Decimal("1.5")
        assert to_decimal(-(10**18), 18) == Decimal(-1)

    def test_zero_decimals(self) -> None:
        assert to_decimal(42, 0) == Decimal(42)


class TestBuildSwapEvent:
    def test_token0_positive_is_leg_a(self, decoder, make_log, usdc_weth_pair) -> None:
        decoded = DecodedSwap(log=make_log(), version="v3", amount0=3_000_000_000, amount1=-(10**18))

        event = decoder.build_swap_event(decoded, usdc_weth_pair, from_address="0xabc")

        assert event is not None
        assert event.leg_a.token_address == USDC
        assert event.leg_a.symbol == "USDC"
        assert event.leg_a.amount == Decimal(3000)
        assert event.leg_b.token_address == WETH
        assert event.leg_b.amount == Decimal(1)
        assert event.from_address == "0xabc"
        assert event.leg_a.value_in_usd is None

    def test_token1_positive_is_leg_a(self, decoder, make_log, usdc_weth_pair) -> None:
        decoded = DecodedSwap(log=make_log(), version="v3", amount0=-3_000_000_000, amount1=10**18)

        event = decoder.build_swap_event(decoded, usdc_weth_pair, from_address=None)

        assert event is not None
        assert event.leg_a.token_address == WETH
        assert event.leg_a.amount == Decimal(1)
        assert event.leg_b.token_address == USDC
        assert event.leg_b.amount == Decimal(3000)

    @pytest.mark.parametrize(
        ("amounts", "expected_a"),
        [
            ((0, 10**18, 3_000_000_000, 0), WETH),
            ((3_000_000_000, 0, 0, 10**18), USDC),
        ],
    )
    def test_v2_legs_have_one_positive_side(
        self, decoder, make_log, usdc_weth_pair, amounts, expected_a
    ) -> None:
        log = make_log(topics=(UNISWAP_V2_SWAP_TOPIC,), data=v2_data(*amounts))
        decoded = decoder.decode(log)
        assert decoded is not None

        event = decoder.build_swap_event(decoded, usdc_weth_pair, from_address=None)

        assert event is not None
        assert event.leg_a.token_address == expected_a
        assert event.leg_a.amount > 0
        assert event.leg_b.amount >= 0
        assert event.leg_a.token_address != event.leg_b.token_address

    def test_copies_log_identity(self, decoder, make_log, usdc_weth_pair) -> None:
        log = make_log(block_number=19_000_000, log_index=7)
        decoded = DecodedSwap(log=log, version="v3", amount0=1, amount1=-1)

        event = decoder.build_swap_event(decoded, usdc_weth_pair, from_address=None)

        assert event is not None
        assert event.block_number == 19_000_000
        assert event.log_index == 7
        assert event.transaction_hash == log.transaction_hash
        assert event.pool_address == log.pool_address

    def test_self_swap_is_skipped(self, decoder, make_log) -> None:
        token = Token(address=USDC, symbol="USDC", decimals=6)
        pair = PairToken(pool_address="0xpool", token0=token, token1=token)
        decoded = DecodedSwap(log=make_log(), version="v3", amount0=5, amount1=-5)

        assert decoder.build_swap_event(decoded, pair, from_address=None) is None

    def test_degenerate_swap_is_skipped(self, decoder, make_log, usdc_weth_pair) -> None:
        decoded = DecodedSwap(log=make_log(), version="v2", amount0=0, amount1=0)
        assert decoder.build_swap_event(decoded, usdc_weth_pair, from_address=None) is None
