"""Tests for ingestor data models."""

from decimal import Decimal

import pytest

from eth_swap_indexer.ingestor.models import PairToken, RawSwapLog, SwapLeg, Token


@pytest.fixture
def rpc_log() -> dict:
    """Log object as pushed by an eth_subscribe notification."""
    return {
        "address": "0x88E6A0c2dDD26FEEb64F039a2c41296FcB3f5640",
        "blockHash": "0x" + "B" * 64,
        "blockNumber": "0x1221a6f",
        "data": "0x" + "00" * 32,
        "logIndex": "0x1a",
        "removed": False,
        "topics": [
            "0xC42079F94A6350D7E6235F29174924F928CC2AC818EB64FED8004E115FBCCA67",
        ],
        "transactionHash": "0x" + "A" * 64,
        "transactionIndex": "0x5",
    }


class TestRawSwapLog:
    """Tests for RawSwapLog parsing."""

    def test_from_rpc_log_hex_fields(self, rpc_log):
        """Hex quantities are decoded and identifiers lowercased."""
        log = RawSwapLog.from_rpc_log(rpc_log)

        assert log.block_number == 0x1221A6F
        assert log.log_index == 26
        assert log.pool_address == "0x88e6a0c2ddd26feeb64f039a2c41296fcb3f5640"
        assert log.transaction_hash == "0x" + "a" * 64
        assert log.block_hash == "0x" + "b" * 64
        assert log.topics == ("0xc42079f94a6350d7e6235f29174924f928cc2ac818eb64fed8004e115fbcca67",)
        assert log.removed is False

    def test_from_rpc_log_bytes_and_ints(self):
        """web3-style AttributeDict values (ints and bytes) are accepted."""
        log = RawSwapLog.from_rpc_log(
            {
                "address": "0x" + "1" * 40,
                "blockHash": bytes.fromhex("cd" * 32),
                "blockNumber": 19_000_000,
                "data": bytes.fromhex("00" * 64),
                "logIndex": 3,
                "topics": [bytes.fromhex("ef" * 32)],
                "transactionHash": bytes.fromhex("ab" * 32),
            }
        )

        assert log.block_number == 19_000_000
        assert log.log_index == 3
        assert log.transaction_hash == "0x" + "ab" * 32
        assert log.topics == ("0x" + "ef" * 32,)
        assert log.data == "0x" + "00" * 64

    def test_removed_flag(self, rpc_log):
        rpc_log["removed"] = True
        assert RawSwapLog.from_rpc_log(rpc_log).removed is True

    def test_missing_required_field_raises(self, rpc_log):
        del rpc_log["blockNumber"]
        with pytest.raises(KeyError):
            RawSwapLog.from_rpc_log(rpc_log)

    def test_dedup_key(self, make_log):
        log = make_log(tx_hash="0x" + "c" * 64, log_index=9)
        assert log.dedup_key == ("0x" + "c" * 64, 9)


class TestSwapLeg:
    def test_priced_sets_both_values(self):
        leg = SwapLeg(token_address="0x1", symbol="X", amount=Decimal("2.5"))

        priced = leg.priced(Decimal("4"))

        assert priced.value_in_usd == Decimal("4")
        assert priced.total_exchanged_usd == Decimal("10.0")
        assert priced.is_priced
        assert not leg.is_priced


class TestPairToken:
    def test_is_self_swap(self):
        a = Token(address="0x1", symbol="A", decimals=18)
        b = Token(address="0x2", symbol="B", decimals=6)

        assert PairToken(pool_address="0xp", token0=a, token1=a).is_self_swap
        assert not PairToken(pool_address="0xp", token0=a, token1=b).is_self_swap
