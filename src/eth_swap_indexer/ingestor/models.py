"""Data models for the ingestor module.

Each processing stage has its own immutable type:
``RawSwapLog`` -> ``DecodedSwap`` -> ``SwapEvent``.
"""

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Literal

SwapVersion = Literal["v2", "v3"]


def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, (bytes, bytearray)):
        return int.from_bytes(value, "big")
    text = str(value)
    return int(text, 16) if text.startswith(("0x", "0X")) else int(text)


def _to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else "0x" + text


@dataclass(frozen=True)
class Token:
    """ERC-20 token metadata. ``address`` is always lowercased."""

    address: str
    symbol: str | None
    decimals: int


@dataclass(frozen=True)
class PairToken:
    """The two tokens of a liquidity pool, in pool order."""

    pool_address: str
    token0: Token
    token1: Token

    @property
    def is_self_swap(self) -> bool:
        return self.token0.address == self.token1.address


@dataclass(frozen=True)
class RawSwapLog:
    """A log record as delivered by the transport."""

    block_number: int
    block_hash: str
    transaction_hash: str
    log_index: int
    pool_address: str
    topics: tuple[str, ...]
    data: str
    removed: bool = False

    @property
    def dedup_key(self) -> tuple[str, int]:
        return (self.transaction_hash, self.log_index)

    @classmethod
    def from_rpc_log(cls, data: dict[str, Any]) -> "RawSwapLog":
        """Create a RawSwapLog from an ``eth_subscribe``/``eth_getLogs`` log object.

        Numeric fields may be hex strings or ints; hashes and topics may be
        hex strings or bytes.
        """
        return cls(
            block_number=_to_int(data["blockNumber"]),
            block_hash=_to_hex(data["blockHash"]).lower(),
            transaction_hash=_to_hex(data["transactionHash"]).lower(),
            log_index=_to_int(data.get("logIndex", 0)),
            pool_address=str(data["address"]).lower(),
            topics=tuple(_to_hex(t).lower() for t in data.get("topics", [])),
            data=_to_hex(data.get("data", "0x")),
            removed=bool(data.get("removed", False)),
        )


@dataclass(frozen=True)
class DecodedSwap:
    """Signed raw token amounts from the pool's perspective.

    A positive amount was sent into the pool, a negative one was paid out.
    """

    log: RawSwapLog
    version: SwapVersion
    amount0: int
    amount1: int


@dataclass(frozen=True)
class SwapLeg:
    """One side of a swap, in decimal units."""

    token_address: str
    symbol: str | None
    amount: Decimal
    value_in_usd: Decimal | None = None
    total_exchanged_usd: Decimal | None = None

    def priced(self, usd_price: Decimal) -> "SwapLeg":
        """Return a copy valued at ``usd_price`` per unit."""
        return replace(
            self,
            value_in_usd=usd_price,
            total_exchanged_usd=usd_price * self.amount,
        )

    @property
    def is_priced(self) -> bool:
        return self.value_in_usd is not None


@dataclass(frozen=True)
class SwapEvent:
    """A normalized swap: ``leg_a`` went into the pool, ``leg_b`` came out."""

    block_number: int
    block_hash: str
    transaction_hash: str
    log_index: int
    pool_address: str
    from_address: str | None
    leg_a: SwapLeg
    leg_b: SwapLeg
    eth_usd_at_block: Decimal | None = None

    @property
    def token_addresses(self) -> tuple[str, str]:
        return (self.leg_a.token_address, self.leg_b.token_address)
