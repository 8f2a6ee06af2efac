"""Finds the most promising arbitrage path among those touched by a block."""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Optional

from basebuster.models import ArbPath, PoolsTouched, SwapPath

log = logging.getLogger(__name__)

DEFAULT_AMOUNT = 10**15
MAX_ESTIMATED_OUTPUT = 10**18


def min_profit_threshold(amount: int) -> int:
    """Output needed to repay a flash loan of ``amount`` (9 bps fee) plus 1% profit."""
    flash_loan_fee = amount * 9 // 10000
    repayment = amount + flash_loan_fee
    return repayment + amount * 1 // 100


class Searcher:
    """Checks the cycles affected by updated pools and emits the best one."""

    def __init__(self, cycles: Iterable[SwapPath], calculator, estimator) -> None:
        self.cycles = list(cycles)
        self.calculator = calculator
        self.estimator = estimator
        self.path_index: dict[str, list[int]] = {}
        for index, path in enumerate(self.cycles):
            for step in path.steps:
                self.path_index.setdefault(step.pool_address, []).append(index)
        self.min_profit = min_profit_threshold(DEFAULT_AMOUNT)

    def search_block(self, pools: Iterable[str], block_number: int) -> Optional[ArbPath]:
        """Refresh state for touched pools and return a profitable path, if any."""
        pools = set(pools)
        started = time.perf_counter()
        self.calculator.invalidate_cache(pools)
        self.estimator.update_rates(pools)

        affected = dict.fromkeys(
            self.cycles[index]
            for pool in pools
            for index in self.path_index.get(pool, ())
        )
        log.info("%d touched paths", len(affected))

        candidates = []
        for path in affected:
            estimate = self.estimator.estimate_output_amount(path)
            if self.min_profit <= estimate < MAX_ESTIMATED_OUTPUT:
                candidates.append((path, estimate))
        log.info(
            "%.3fs elapsed estimating paths, %d estimated profitable",
            time.perf_counter() - started,
            len(candidates),
        )
        if not candidates:
            return None

        best_path, best_estimate = max(candidates, key=lambda item: item[1])
        calculated = self.calculator.calculate_output(best_path)
        if calculated < self.min_profit:
            return None
        log.info("Estimated %d. Calculated %d", best_estimate, calculated)
        return ArbPath(path=best_path, expected_out=calculated, block_number=block_number)

    def search_paths(self, paths_out: Callable[[ArbPath], object], events_in: Iterable[object]) -> None:
        """Search every pools-touched event, stopping at the first other event."""
        for event in events_in:
            if not isinstance(event, PoolsTouched):
                return
            log.info("Searching for arbs in block %d...", event.block_number)
            found = self.search_block(event.pools, event.block_number)
            if found is None:
                continue
            try:
                paths_out(found)
            except Exception:
                log.debug("Failed to send path", exc_info=True)
            else:
                log.debug("Sent path")