"""Swap output calculations for V2, V3 and Aerodrome pools, with a quote cache."""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Iterable, Optional

from basebuster.models import PoolType, SwapPath
from basebuster.state_db import StateDBError

AMOUNT = 10**15
DEFAULT_CACHE_SIZE = 500

_U256_MAX = (1 << 256) - 1
_U160_MAX = (1 << 160) - 1
_U128_MAX = (1 << 128) - 1
_E18 = 10**18
_FEE_DENOMINATOR = 1_000_000

Q96 = 1 << 96
MIN_TICK = -887272
MAX_TICK = 887272
MIN_SQRT_RATIO = 4295128739
MAX_SQRT_RATIO = 1461446703485210103287273052203988822378723970342

_V2_FEES = {
    PoolType.UNISWAP_V2: 9970,
    PoolType.SUSHISWAP_V2: 9970,
    PoolType.SWAPBASED_V2: 9970,
    PoolType.PANCAKESWAP_V2: 9975,
    PoolType.BASESWAP_V2: 9975,
    PoolType.DACKIESWAP_V2: 9975,
    PoolType.ALIENBASE_V2: 9984,
}

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

_TICK_RATIO_FACTORS = (
    (0x2, 0xFFF97272373D413259A46990580E213A),
    (0x4, 0xFFF2E50F5F656932EF12357CF3C7FDCC),
    (0x8, 0xFFE5CACA7E10E4E61C3624EAA0941CD0),
    (0x10, 0xFFCB9843D60F6159C9DB58835C926644),
    (0x20, 0xFF973B41FA98C081472E6896DFB254C0),
    (0x40, 0xFF2EA16466C96A3843EC78B326B52861),
    (0x80, 0xFE5DEE046A99A2A811C461F1969C3053),
    (0x100, 0xFCBE86C7900A88AEDCFFC83B479AA3A4),
    (0x200, 0xF987A7253AC413176F2B074CF7815E54),
    (0x400, 0xF3392B0822B70005940C7A398E4B70F3),
    (0x800, 0xE7159475A2C29B7443B29C7FA6E889D9),
    (0x1000, 0xD097F3BDFD2022B8845AD8F792AA5825),
    (0x2000, 0xA9F746462D870FDF8A65DC1F90E061E5),
    (0x4000, 0x70D869A156D2A1B890BB3DF62BAF32F7),
    (0x8000, 0x31BE135F97D08FD981231505542FCFA6),
    (0x10000, 0x9AA508B5B7A84E1C677DE54F3E99BC9),
    (0x20000, 0x5D6AF8DEDB81196699C329225EE604),
    (0x40000, 0x2216E584F5FA1EA926041BEDFE98),
    (0x80000, 0x48A170391F7DC42444E8FA2),
)


class UnsupportedPoolError(ValueError):
    """Raised for pool types whose output cannot be calculated."""


def _addr(value: str) -> str:
    text = value.strip().lower()
    return text if text.startswith("0x") else "0x" + text


def _sub(a: int, b: int) -> int:
    if b > a:
        raise ArithmeticError("uint256 underflow")
    return a - b


def _tdiv(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


# ---- fixed point helpers -------------------------------------------------


def _mul_div(a: int, b: int, denominator: int) -> int:
    if denominator == 0:
        raise ZeroDivisionError("mul_div by zero")
    result = a * b // denominator
    if result > _U256_MAX:
        raise OverflowError("mul_div result exceeds 256 bits")
    return result


def _mul_div_up(a: int, b: int, denominator: int) -> int:
    result = _mul_div(a, b, denominator)
    if (a * b) % denominator:
        result += 1
        if result > _U256_MAX:
            raise OverflowError("mul_div result exceeds 256 bits")
    return result


def _div_up(a: int, b: int) -> int:
    if b == 0:
        raise ZeroDivisionError("division by zero")
    return -(-a // b)


# ---- tick math -----------------------------------------------------------


def _get_sqrt_ratio_at_tick(tick: int) -> int:
    """sqrt(1.0001**tick) as a Q64.96 number."""
    abs_tick = abs(tick)
    if abs_tick > MAX_TICK:
        raise ValueError(f"tick {tick} out of range")
    ratio = 0xFFFCB933BD6FAD37AA2D162D1A594001 if abs_tick & 0x1 else 1 << 128
    for bit, factor in _TICK_RATIO_FACTORS:
        if abs_tick & bit:
            ratio = (ratio * factor) >> 128
    if tick > 0:
        ratio = _U256_MAX // ratio
    return (ratio >> 32) + (1 if ratio % (1 << 32) else 0)


def _get_tick_at_sqrt_ratio(sqrt_price: int) -> int:
    """Greatest tick whose sqrt ratio does not exceed ``sqrt_price``."""
    if not MIN_SQRT_RATIO <= sqrt_price < MAX_SQRT_RATIO:
        raise ValueError("sqrt price out of range")
    low, high = MIN_TICK, MAX_TICK
    while low < high:
        mid = (low + high + 1) // 2
        if _get_sqrt_ratio_at_tick(mid) <= sqrt_price:
            low = mid
        else:
            high = mid - 1
    return low


def _next_initialized_tick_within_one_word(
    bitmap: dict[int, int], tick: int, tick_spacing: int, lte: bool
) -> tuple[int, bool]:
    compressed = tick // tick_spacing
    if lte:
        word_pos, bit_pos = compressed >> 8, compressed % 256
        mask = (1 << bit_pos) - 1 + (1 << bit_pos)
        masked = bitmap.get(word_pos, 0) & mask
        if masked:
            msb = masked.bit_length() - 1
            return (compressed - (bit_pos - msb)) * tick_spacing, True
        return (compressed - bit_pos) * tick_spacing, False
    compressed += 1
    word_pos, bit_pos = compressed >> 8, compressed % 256
    mask = _U256_MAX ^ ((1 << bit_pos) - 1)
    masked = bitmap.get(word_pos, 0) & mask
    if masked:
        lsb = (masked & -masked).bit_length() - 1
        return (compressed + (lsb - bit_pos)) * tick_spacing, True
    return (compressed + (255 - bit_pos)) * tick_spacing, False


# ---- sqrt price math -----------------------------------------------------


def _amount0_delta(sqrt_a: int, sqrt_b: int, liquidity: int, round_up: bool) -> int:
    if sqrt_a > sqrt_b:
        sqrt_a, sqrt_b = sqrt_b, sqrt_a
    if sqrt_a <= 0:
        raise ValueError("sqrt price must be positive")
    numerator1 = liquidity << 96
    numerator2 = sqrt_b - sqrt_a
    if round_up:
        return _div_up(_mul_div_up(numerator1, numerator2, sqrt_b), sqrt_a)
    return _mul_div(numerator1, numerator2, sqrt_b) // sqrt_a


def _amount1_delta(sqrt_a: int, sqrt_b: int, liquidity: int, round_up: bool) -> int:
    if sqrt_a > sqrt_b:
        sqrt_a, sqrt_b = sqrt_b, sqrt_a
    if round_up:
        return _mul_div_up(liquidity, sqrt_b - sqrt_a, Q96)
    return _mul_div(liquidity, sqrt_b - sqrt_a, Q96)


def _next_from_amount0_up(sqrt_price: int, liquidity: int, amount: int) -> int:
    if amount == 0:
        return sqrt_price
    numerator1 = liquidity << 96
    product = amount * sqrt_price
    if product <= _U256_MAX:
        denominator = numerator1 + product
        if denominator <= _U256_MAX:
            return _mul_div_up(numerator1, sqrt_price, denominator)
    return _div_up(numerator1, numerator1 // sqrt_price + amount)


def _next_from_amount1_down(sqrt_price: int, liquidity: int, amount: int) -> int:
    if amount <= _U160_MAX:
        quotient = (amount << 96) // liquidity
    else:
        quotient = _mul_div(amount, Q96, liquidity)
    result = sqrt_price + quotient
    if result > _U160_MAX:
        raise OverflowError("sqrt price exceeds 160 bits")
    return result


def _next_sqrt_price_from_input(
    sqrt_price: int, liquidity: int, amount_in: int, zero_for_one: bool
) -> int:
    if sqrt_price <= 0 or liquidity <= 0:
        raise ValueError("sqrt price and liquidity must be positive")
    if zero_for_one:
        return _next_from_amount0_up(sqrt_price, liquidity, amount_in)
    return _next_from_amount1_down(sqrt_price, liquidity, amount_in)


def _compute_swap_step(
    sqrt_current: int, sqrt_target: int, liquidity: int, amount_remaining: int, fee_pips: int
) -> tuple[int, int, int, int]:
    """One exact-input swap step: (next sqrt price, amount in, amount out, fee)."""
    if not 0 <= fee_pips < _FEE_DENOMINATOR:
        raise ValueError(f"invalid fee {fee_pips}")
    zero_for_one = sqrt_current >= sqrt_target
    remaining_less_fee = _mul_div(amount_remaining, _FEE_DENOMINATOR - fee_pips, _FEE_DENOMINATOR)
    if zero_for_one:
        amount_in = _amount0_delta(sqrt_target, sqrt_current, liquidity, True)
    else:
        amount_in = _amount1_delta(sqrt_current, sqrt_target, liquidity, True)
    if remaining_less_fee >= amount_in:
        sqrt_next = sqrt_target
    else:
        sqrt_next = _next_sqrt_price_from_input(
            sqrt_current, liquidity, remaining_less_fee, zero_for_one
        )

    reached_target = sqrt_next == sqrt_target
    if zero_for_one:
        if not reached_target:
            amount_in = _amount0_delta(sqrt_next, sqrt_current, liquidity, True)
        amount_out = _amount1_delta(sqrt_next, sqrt_current, liquidity, False)
    else:
        if not reached_target:
            amount_in = _amount1_delta(sqrt_current, sqrt_next, liquidity, True)
        amount_out = _amount0_delta(sqrt_current, sqrt_next, liquidity, False)

    if not reached_target:
        fee_amount = amount_remaining - amount_in
    else:
        fee_amount = _mul_div_up(amount_in, fee_pips, _FEE_DENOMINATOR - fee_pips)
    return sqrt_next, amount_in, amount_out, fee_amount


# ---- Aerodrome stable curve ---------------------------------------------


def _f(x0: int, y: int) -> int:
    a = x0 * y // _E18
    b = x0 * x0 // _E18 + y * y // _E18
    return a * b // _E18


def _d(x0: int, y: int) -> int:
    return 3 * x0 * (y * y // _E18) // _E18 + (x0 * x0 // _E18) * x0 // _E18


def stable_k(x: int, y: int, stable: bool, decimals0: int, decimals1: int) -> int:
    """Pool invariant: x3y+y3x on normalised reserves for stable pools, x*y otherwise."""
    if not stable:
        return x * y
    x = x * _E18 // decimals0
    y = y * _E18 // decimals1
    a = x * y // _E18
    b = x * x // _E18 + y * y // _E18
    return a * b // _E18


def get_y(x0: int, xy: int, y: int, stable: bool, decimals0: int, decimals1: int) -> int:
    """Solve the stable invariant for y by Newton iteration; zero if it does not converge."""
    for _ in range(255):
        k = _f(x0, y)
        d = _d(x0, y)
        if d == 0:
            return 0
        if k < xy:
            dy = (xy - k) * _E18 // d
            if dy == 0:
                if k == xy:
                    return y
                if stable_k(x0, y + 1, stable, decimals0, decimals1) > xy:
                    return y + 1
                dy = 1
            y += dy
        else:
            dy = (k - xy) * _E18 // d
            if dy == 0:
                if k == xy or _f(x0, _sub(y, 1)) < xy:
                    return y
                dy = 1
            y = _sub(y, dy)
    return 0


# ---- cache ---------------------------------------------------------------


class _QuoteCache:
    """Bounded LRU map of (pool, input amount) to output amount."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("cache size must be positive")
        self._capacity = capacity
        self._entries: OrderedDict[tuple[str, int], int] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, amount: int, pool: str) -> Optional[int]:
        key = (pool, amount)
        with self._lock:
            value = self._entries.get(key)
            if value is not None:
                self._entries.move_to_end(key)
            return value

    def set(self, amount: int, pool: str, value: int) -> None:
        key = (pool, amount)
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            while len(self._entries) > self._capacity:
                self._entries.popitem(last=False)

    def invalidate(self, pool: str) -> None:
        with self._lock:
            for key in [k for k in self._entries if k[0] == pool]:
                del self._entries[key]


# ---- calculator ----------------------------------------------------------


class Calculator:
    """Computes swap outputs from the pool state held in a state database."""

    def __init__(self, db, cache_size: int = DEFAULT_CACHE_SIZE) -> None:
        self.db = db
        self.cache = _QuoteCache(cache_size)
        self.amount = AMOUNT

    def calculate_output(self, path: SwapPath) -> int:
        """Output of the path for the default input, reusing cached step results."""
        amount = self.amount
        for step in path.steps:
            pool = _addr(step.pool_address)
            cached = self.cache.get(amount, pool)
            if cached is not None:
                amount = cached
            else:
                output = self.compute_amount_out(
                    amount, pool, step.token_in, step.protocol, step.fee
                )
                self.cache.set(amount, pool, output)
                amount = output
            if amount == 0:
                return 0
        return amount

    def debug_calculation(self, path: SwapPath) -> list[int]:
        """Input followed by the output of every step, computed without the cache."""
        amounts = [self.amount]
        amount = self.amount
        for step in path.steps:
            amount = self.compute_amount_out(
                amount, step.pool_address, step.token_in, step.protocol, step.fee
            )
            amounts.append(amount)
        return amounts

    def compute_pool_output(
        self, pool_address: str, token_in: str, protocol: PoolType, fee: int, input_amount: int
    ) -> int:
        return self.compute_amount_out(input_amount, pool_address, token_in, protocol, fee)

    def compute_amount_out(
        self, input_amount: int, pool_address: str, token_in: str, pool_type: PoolType, fee: int
    ) -> int:
        """Dispatch to the output formula of the pool's protocol."""
        if pool_type in _V2_FEES:
            return self.uniswap_v2_out(input_amount, pool_address, token_in, _V2_FEES[pool_type])
        if pool_type in _V3_TYPES:
            return self.uniswap_v3_out(input_amount, pool_address, token_in, fee)
        if pool_type is PoolType.AERODROME:
            return self.aerodrome_out(input_amount, token_in, pool_address)
        raise UnsupportedPoolError(f"cannot calculate output for {pool_type.value} pools")

    def invalidate_cache(self, updated_pools: Iterable[str]) -> None:
        for pool in updated_pools:
            self.cache.invalidate(_addr(pool))

    def _zero_to_one(self, pool_address: str, token_in: str) -> bool:
        direction = self.db.zero_to_one(pool_address, token_in)
        if direction is None:
            raise StateDBError(f"pool {pool_address} is not tracked")
        return direction

    def uniswap_v2_out(self, amount_in: int, pool_address: str, token_in: str, fee: int) -> int:
        """Constant-product output with ``fee`` as the retained share out of 10000."""
        zero_to_one = self._zero_to_one(pool_address, token_in)
        reserve0, reserve1 = self.db.get_reserves(pool_address)
        reserve_in, reserve_out = (reserve0, reserve1) if zero_to_one else (reserve1, reserve0)
        amount_in_with_fee = amount_in * fee
        return amount_in_with_fee * reserve_out // (reserve_in * 10000 + amount_in_with_fee)

    def _bitmap_word(self, pool_address: str, word_pos: int) -> int:
        try:
            return self.db.tick_bitmap(pool_address, word_pos)
        except StateDBError:
            return 0

    def uniswap_v3_out(self, amount_in: int, pool_address: str, token_in: str, fee: int) -> int:
        """Exact-input output of a concentrated-liquidity swap, walking the ticks."""
        if amount_in == 0:
            return 0
        db = self.db
        zero_to_one = self._zero_to_one(pool_address, token_in)
        slot0 = db.slot0(pool_address)
        liquidity = db.liquidity(pool_address)
        tick_spacing = db.tick_spacing(pool_address)
        if tick_spacing <= 0:
            raise ValueError(f"pool {pool_address} has no tick spacing")

        price_limit = MIN_SQRT_RATIO + 1 if zero_to_one else MAX_SQRT_RATIO - 1
        remaining = amount_in
        calculated = 0
        sqrt_price = slot0.sqrt_price_x96
        tick = slot0.tick

        while remaining != 0 and sqrt_price != price_limit:
            price_start = sqrt_price
            word_pos = _tdiv(tick, tick_spacing) >> 8
            bitmap = {w: self._bitmap_word(pool_address, w) for w in range(word_pos - 1, word_pos + 2)}

            tick_next, initialized = _next_initialized_tick_within_one_word(
                bitmap, tick, tick_spacing, zero_to_one
            )
            tick_next = min(max(tick_next, MIN_TICK), MAX_TICK)
            sqrt_next = _get_sqrt_ratio_at_tick(tick_next)

            if zero_to_one:
                target = max(sqrt_next, price_limit)
            else:
                target = min(sqrt_next, price_limit)

            sqrt_price, step_in, step_out, fee_amount = _compute_swap_step(
                sqrt_price, target, liquidity, remaining, fee
            )
            remaining -= step_in + fee_amount
            calculated -= step_out

            if sqrt_price == sqrt_next:
                if initialized:
                    liquidity_net = db.ticks_liquidity_net(pool_address, tick_next)
                    if zero_to_one:
                        liquidity_net = -liquidity_net
                    liquidity += liquidity_net
                    if liquidity < 0:
                        raise ArithmeticError("Insufficient liquidity")
                    if liquidity > _U128_MAX:
                        raise OverflowError("Liquidity overflow")
                tick = tick_next - 1 if zero_to_one else tick_next
            elif sqrt_price != price_start:
                tick = _get_tick_at_sqrt_ratio(sqrt_price)

        return -calculated

    def aerodrome_out(self, amount_in: int, token_in: str, pool_address: str) -> int:
        """Output of an Aerodrome swap on either the volatile or the stable curve."""
        db = self.db
        reserve0, reserve1 = db.get_reserves(pool_address)
        pool_fee = db.get_fee(pool_address)
        dec0, dec1 = db.get_decimals(pool_address)
        stable = db.get_stable(pool_address)
        token0 = _addr(db.get_token0(pool_address))
        token_in = _addr(token_in)

        amount_in = _sub(amount_in, amount_in * pool_fee // 10000)
        decimals0 = 10**dec0
        decimals1 = 10**dec1
        from_token0 = token_in == token0

        if stable:
            xy = stable_k(reserve0, reserve1, stable, decimals0, decimals1)
            reserve0 = reserve0 * _E18 // decimals0
            reserve1 = reserve1 * _E18 // decimals1
            reserve_a, reserve_b = (reserve0, reserve1) if from_token0 else (reserve1, reserve0)
            amount_in = amount_in * _E18 // (decimals0 if from_token0 else decimals1)
            y = _sub(
                reserve_b,
                get_y(amount_in + reserve_a, xy, reserve_b, stable, decimals0, decimals1),
            )
            return y * (decimals1 if from_token0 else decimals0) // _E18

        reserve_a, reserve_b = (reserve0, reserve1) if from_token0 else (reserve1, reserve0)
        return amount_in * reserve_b // (reserve_a + amount_in)