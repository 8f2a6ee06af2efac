"""Core data types: pools, swap paths, block headers and pipeline events."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


def _addr(value: str) -> str:
    text = value.strip().lower()
    return text if text.startswith("0x") else "0x" + text


class PoolType(Enum):
    """Protocols whose pools the searcher knows about."""

    UNISWAP_V2 = "UniswapV2"
    SUSHISWAP_V2 = "SushiSwapV2"
    PANCAKESWAP_V2 = "PancakeSwapV2"
    BASESWAP_V2 = "BaseSwapV2"
    SWAPBASED_V2 = "SwapBasedV2"
    DACKIESWAP_V2 = "DackieSwapV2"
    ALIENBASE_V2 = "AlienBaseV2"
    AERODROME = "Aerodrome"
    UNISWAP_V3 = "UniswapV3"
    SUSHISWAP_V3 = "SushiSwapV3"
    BASESWAP_V3 = "BaseSwapV3"
    SLIPSTREAM = "Slipstream"
    PANCAKESWAP_V3 = "PancakeSwapV3"
    ALIENBASE_V3 = "AlienBaseV3"
    SWAPBASED_V3 = "SwapBasedV3"
    DACKIESWAP_V3 = "DackieSwapV3"
    MAVERICK_V1 = "MaverickV1"
    MAVERICK_V2 = "MaverickV2"
    BALANCER_V2 = "BalancerV2"
    CURVE_TWO_CRYPTO = "CurveTwoCrypto"
    CURVE_TRI_CRYPTO = "CurveTriCrypto"


_V2_TYPES = frozenset(
    {
        PoolType.UNISWAP_V2,
        PoolType.SUSHISWAP_V2,
        PoolType.PANCAKESWAP_V2,
        PoolType.BASESWAP_V2,
        PoolType.SWAPBASED_V2,
        PoolType.DACKIESWAP_V2,
        PoolType.ALIENBASE_V2,
        PoolType.AERODROME,
    }
)

_V3_TYPES = frozenset(
    {
        PoolType.UNISWAP_V3,
        PoolType.SUSHISWAP_V3,
        PoolType.BASESWAP_V3,
        PoolType.SLIPSTREAM,
        PoolType.PANCAKESWAP_V3,
        PoolType.ALIENBASE_V3,
        PoolType.SWAPBASED_V3,
        PoolType.DACKIESWAP_V3,
    }
)


@dataclass
class Pool:
    """A liquidity pool and the state synced for it.

    V2-style pools use the reserve fields, V3-style pools the price, tick and
    liquidity fields; multi-token pools list their tokens and balances.
    """

    pool_type: PoolType
    address: str
    token0: str
    token1: str
    token0_decimals: int = 18
    token1_decimals: int = 18
    fee: int = 0
    token0_name: str = ""
    token1_name: str = ""
    reserve0: int = 0
    reserve1: int = 0
    stable: Optional[bool] = None
    sqrt_price: int = 0
    liquidity: int = 0
    tick: int = 0
    tick_spacing: int = 0
    ticks: dict[int, int] = field(default_factory=dict)
    tick_bitmap: dict[int, int] = field(default_factory=dict)
    tokens: tuple[str, ...] = ()
    balances: dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.address = _addr(self.address)
        self.token0 = _addr(self.token0)
        self.token1 = _addr(self.token1)
        self.tokens = tuple(_addr(t) for t in self.tokens)
        self.balances = {_addr(k): v for k, v in self.balances.items()}
        self.ticks = dict(self.ticks)
        self.tick_bitmap = dict(self.tick_bitmap)

    def is_v2(self) -> bool:
        """True for constant-product style pools."""
        return self.pool_type in _V2_TYPES

    def is_v3(self) -> bool:
        """True for concentrated-liquidity pools."""
        return self.pool_type in _V3_TYPES


@dataclass(frozen=True)
class SwapStep:
    """One hop of a swap path."""

    pool_address: str
    token_in: str
    token_out: str
    protocol: PoolType
    fee: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "pool_address", _addr(self.pool_address))
        object.__setattr__(self, "token_in", _addr(self.token_in))
        object.__setattr__(self, "token_out", _addr(self.token_out))


@dataclass(frozen=True)
class SwapPath:
    """An ordered sequence of swap steps with a stable identifying hash."""

    steps: tuple[SwapStep, ...]
    hash: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))

    @classmethod
    def from_steps(cls, steps) -> "SwapPath":
        """Build a path whose hash is derived from its steps."""
        steps = tuple(steps)
        digest = hashlib.sha256()
        for step in steps:
            digest.update(
                f"{step.pool_address}:{step.token_in}:{step.token_out}:"
                f"{step.protocol.value}:{step.fee};".encode()
            )
        return cls(steps=steps, hash=int.from_bytes(digest.digest()[:8], "big"))


@dataclass(frozen=True)
class BlockHeader:
    """The parts of a block header the bot looks at."""

    number: int
    base_fee_per_gas: Optional[int] = None
    gas_used: int = 0
    gas_limit: int = 0
    hash: str = ""


@dataclass(frozen=True)
class ArbPath:
    """A candidate arbitrage path with its calculated output."""

    path: SwapPath
    expected_out: int
    block_number: int


@dataclass(frozen=True)
class ValidPath:
    """A simulated, viable path ready to be sent."""

    params: Any
    profit: int
    block_number: int


@dataclass(frozen=True)
class PoolsTouched:
    """Pools whose state changed in a block."""

    pools: frozenset
    block_number: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "pools", frozenset(_addr(p) for p in self.pools))


@dataclass(frozen=True)
class NewBlock:
    """A freshly observed block."""

    header: BlockHeader