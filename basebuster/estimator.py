"""Quick rate-based estimation of swap path outputs and profitability."""

from __future__ import annotations

import logging
from typing import Iterable

from basebuster.calculator import AMOUNT, Calculator
from basebuster.models import Pool, SwapPath

log = logging.getLogger(__name__)

RATE_SCALE = 18
RATE_SCALE_VALUE = 10**RATE_SCALE
DEFAULT_DECIMALS = 18

_U256_MAX = (1 << 256) - 1


def _addr(value: str) -> str:
    text = value.strip().lower()
    return text if text.startswith("0x") else "0x" + text


def _mul_div_or_zero(a: int, b: int, denominator: int) -> int:
    """a * b // denominator, or zero if the product overflows 256 bits or the divisor is zero."""
    product = a * b
    if product > _U256_MAX or denominator == 0:
        return 0
    return product // denominator


class Estimator:
    """Keeps per-pool exchange rates, scaled to 18 decimals, for fast path screening."""

    def __init__(self, db, weth: str) -> None:
        self.db = db
        self.weth = _addr(weth)
        self.calculator = Calculator(db)
        self.amount = AMOUNT
        # pool address -> token in -> rate
        self.rates: dict[str, dict[str, int]] = {}
        self.weth_based: dict[str, bool] = {}
        # alt token -> averaged rate from its weth pairs
        self.aggregated_weth_rate: dict[str, int] = {}
        self.token_decimals: dict[str, int] = {}

    def update_rates(self, pool_addresses: Iterable[str]) -> None:
        """Recompute the rates of pools whose state changed."""
        pools = [self.db.get_pool(address) for address in pool_addresses]
        self.process_pools(pools)

    def _rate(self, pool_address: str, token_in: str):
        return self.rates.get(_addr(pool_address), {}).get(_addr(token_in))

    def estimate_output_amount(self, swap_path: SwapPath) -> int:
        """Estimated output of the path for the default input; zero if a rate is unknown."""
        amount = self.amount
        for step in swap_path.steps:
            rate = self._rate(step.pool_address, step.token_in)
            if rate is None:
                return 0
            amount = _mul_div_or_zero(amount, rate, RATE_SCALE_VALUE)
        return amount

    def is_profitable(self, swap_path: SwapPath, min_profit_ratio: int) -> bool:
        """Whether the cumulative rate along the path exceeds 1 + ``min_profit_ratio``."""
        cumulative = RATE_SCALE_VALUE
        for step in swap_path.steps:
            rate = self._rate(step.pool_address, step.token_in)
            if rate is None:
                return False
            cumulative = _mul_div_or_zero(cumulative, rate, RATE_SCALE_VALUE)
        return cumulative > RATE_SCALE_VALUE + min_profit_ratio

    def scale_to_rate(self, amount: int, token_decimals: int) -> int:
        """Rescale an amount with ``token_decimals`` decimals to 18 decimals."""
        if token_decimals <= RATE_SCALE:
            result = amount * 10 ** (RATE_SCALE - token_decimals)
            if result > _U256_MAX:
                raise OverflowError("scaled amount exceeds 256 bits")
            return result
        return amount // 10 ** (token_decimals - RATE_SCALE)

    def calculate_rate(
        self, input_amount: int, output_amount: int, input_decimals: int, output_decimals: int
    ) -> int:
        """Output per unit of input as an 18-decimal fixed point number."""
        scaled_input = self.scale_to_rate(input_amount, input_decimals)
        scaled_output = self.scale_to_rate(output_amount, output_decimals)
        return _mul_div_or_zero(scaled_output, RATE_SCALE_VALUE, scaled_input)

    def process_pools(self, pools: Iterable[Pool]) -> None:
        """Compute rates for weth pools first, then for pools quoted through them."""
        pools = list(pools)
        weth = self.weth
        alt_tokens: set[str] = set()
        weth_alt_count: dict[str, int] = {}

        for pool in pools:
            if pool.token0 == weth or pool.token1 == weth:
                log.debug("Processing pool %s", pool.address)
                self.weth_based[pool.address] = True
                self._process_weth_pool(pool, self.amount, alt_tokens, weth_alt_count)

        for token in alt_tokens:
            count = weth_alt_count.get(token)
            if count and token in self.aggregated_weth_rate:
                self.aggregated_weth_rate[token] //= count

        for pool in pools:
            if pool.token0 != weth and pool.token1 != weth:
                log.debug("Processing pool %s", pool.address)
                self._process_non_weth_pool(pool)

    def _store_rates(self, pool: Pool, zero_one_rate: int, one_zero_rate: int) -> None:
        pool_rates = self.rates.setdefault(pool.address, {})
        pool_rates[pool.token0] = zero_one_rate
        pool_rates[pool.token1] = one_zero_rate

    def _process_weth_pool(
        self,
        pool: Pool,
        input_amount: int,
        alt_tokens: set[str],
        weth_alt_count: dict[str, int],
    ) -> None:
        token0, token1 = pool.token0, pool.token1
        self.token_decimals[token0] = pool.token0_decimals
        self.token_decimals[token1] = pool.token1_decimals

        weth, alt = (token0, token1) if token0 == self.weth else (token1, token0)
        alt_tokens.add(alt)

        alt_output = self.calculator.compute_pool_output(
            pool.address, weth, pool.pool_type, pool.fee, input_amount
        )
        weth_decimals = self.token_decimals.get(weth, DEFAULT_DECIMALS)
        alt_decimals = self.token_decimals.get(alt, DEFAULT_DECIMALS)
        other_output = self.calculator.compute_pool_output(
            pool.address, alt, pool.pool_type, pool.fee, alt_output
        )

        zero_one_rate = self.calculate_rate(input_amount, alt_output, weth_decimals, alt_decimals)
        one_zero_rate = self.calculate_rate(alt_output, other_output, alt_decimals, weth_decimals)
        self._store_rates(pool, zero_one_rate, one_zero_rate)

        added = zero_one_rate if weth == token0 else one_zero_rate
        self.aggregated_weth_rate[alt] = self.aggregated_weth_rate.get(alt, 0) + added
        weth_alt_count[alt] = weth_alt_count.get(alt, 0) + 1

    def _process_non_weth_pool(self, pool: Pool) -> None:
        token0, token1 = pool.token0, pool.token1
        input_rate = self.aggregated_weth_rate.get(token0)
        if input_rate is None:
            return
        token0_decimals = self.token_decimals.get(token0, DEFAULT_DECIMALS)
        output = self.calculator.compute_pool_output(
            pool.address, token0, pool.pool_type, pool.fee, input_rate
        )
        token1_decimals = self.token_decimals.get(token1, DEFAULT_DECIMALS)
        other_output = self.calculator.compute_pool_output(
            pool.address, token1, pool.pool_type, pool.fee, output
        )
        zero_one_rate = self.calculate_rate(input_rate, output, token0_decimals, token1_decimals)
        one_zero_rate = self.calculate_rate(output, other_output, token1_decimals, token0_decimals)
        self._store_rates(pool, zero_one_rate, one_zero_rate)