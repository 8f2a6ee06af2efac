"""Tracks the next block's base fee and prices transactions from profit."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Iterable

from basebuster.models import NewBlock

_U128_MAX = 2**128 - 1
_GAS_BUDGET_UNITS = 350_000


@dataclass(frozen=True)
class BaseFeeParams:
    """EIP-1559 base fee adjustment parameters."""

    max_change_denominator: int
    elasticity_multiplier: int

    @classmethod
    def optimism_canyon(cls) -> "BaseFeeParams":
        """Parameters used by OP-stack chains since the Canyon upgrade."""
        return cls(max_change_denominator=250, elasticity_multiplier=6)


def next_block_base_fee(gas_used: int, gas_limit: int, base_fee: int, params: BaseFeeParams) -> int:
    """Base fee of the block following one with the given gas usage."""
    gas_target = gas_limit // params.elasticity_multiplier
    if gas_used == gas_target:
        return base_fee
    divisor = gas_target * params.max_change_denominator
    if gas_used > gas_target:
        return base_fee + max(1, base_fee * (gas_used - gas_target) // divisor)
    return max(0, base_fee - base_fee * (gas_target - gas_used) // divisor)


class GasStation:
    """Holds the expected base fee and derives fees from expected profit."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._base_fee = 0

    @property
    def base_fee(self) -> int:
        with self._lock:
            return self._base_fee

    def get_gas_fees(self, profit: int) -> tuple[int, int]:
        """Return (max fee per gas, priority fee) spending half the profit on gas."""
        if profit < 0:
            raise ValueError("profit must be non-negative")
        max_total_gas_spend = profit // 2
        if max_total_gas_spend > _U128_MAX:
            raise OverflowError("gas budget does not fit in 128 bits")
        priority_fee = max_total_gas_spend // _GAS_BUDGET_UNITS
        return self.base_fee + priority_fee, priority_fee

    def update_gas(self, events: Iterable[object]) -> None:
        """Consume new-block events, updating the base fee; stop at any other event."""
        params = BaseFeeParams.optimism_canyon()
        for event in events:
            if not isinstance(event, NewBlock):
                return
            header = event.header
            if header.base_fee_per_gas is None:
                raise ValueError(f"block {header.number} has no base fee")
            next_fee = next_block_base_fee(
                header.gas_used, header.gas_limit, header.base_fee_per_gas, params
            )
            with self._lock:
                self._base_fee = next_fee