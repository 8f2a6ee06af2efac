"""Concentrated-liquidity (V3) pool state stored in the layout of the pool contract."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from basebuster.models import Pool
from basebuster.state_db import StateDBError, keccak256
from basebuster.v2_state import V2StateDB

log = logging.getLogger(__name__)

_WORD = 1 << 256
_U128_MAX = (1 << 128) - 1
_I32_MAX = (1 << 31) - 1

BITS160_MASK = (1 << 160) - 1
BITS128_MASK = (1 << 128) - 1
BITS24_MASK = (1 << 24) - 1
BITS16_MASK = (1 << 16) - 1
BITS8_MASK = (1 << 8) - 1

SLOT0_SLOT = 0
LIQUIDITY_SLOT = 4
TICKS_OFFSET = 5
TICK_BITMAP_OFFSET = 6
TICK_SPACING_SLOT = 14

_TICK_SHIFT = 160
_OBSERVATION_INDEX_SHIFT = 160 + 24
_OBSERVATION_CARDINALITY_SHIFT = 160 + 24 + 16
_OBSERVATION_CARDINALITY_NEXT_SHIFT = 160 + 24 + 16 + 16
_FEE_PROTOCOL_SHIFT = 160 + 24 + 16 + 16 + 16
_UNLOCKED_SHIFT = 160 + 24 + 16 + 16 + 16 + 8


def _word(value: int) -> int:
    """Two's complement 256-bit representation of a signed or unsigned integer."""
    if not -(1 << 255) <= value < _WORD:
        raise ValueError(f"{value} does not fit in 256 bits")
    return value % _WORD


def hashed_slot(item: int, offset: int) -> int:
    """Storage slot of ``mapping[item]`` for a mapping declared at slot ``offset``."""
    data = _word(item).to_bytes(32, "big") + _word(offset).to_bytes(32, "big")
    return int.from_bytes(keccak256(data), "big")


@dataclass(frozen=True)
class Slot0:
    """The packed ``slot0`` word of a V3 pool."""

    sqrt_price_x96: int
    tick: int
    observation_index: int
    observation_cardinality: int
    observation_cardinality_next: int
    fee_protocol: int
    unlocked: bool


class PoolStateDB(V2StateDB):
    """State database that understands both V2 pairs and V3 pools."""

    def insert_v3(self, pool: Pool) -> None:
        """Track a V3 pool and write its price, liquidity and ticks into storage."""
        if not pool.is_v3():
            raise ValueError(f"pool {pool.address} is not a V3 pool")
        log.debug("Adding new v3 pool %s", pool.address)
        self.add_pool(pool)
        self.insert_slot0(pool.address, pool.sqrt_price & BITS160_MASK, pool.tick)
        self.insert_liquidity(pool.address, pool.liquidity)
        self.insert_tick_spacing(pool.address, pool.tick_spacing)
        for tick, liquidity_net in pool.ticks.items():
            self.insert_tick_liquidity_net(pool.address, tick, liquidity_net)
        for word_pos, bitmap in pool.tick_bitmap.items():
            self.insert_tick_bitmap(pool.address, word_pos, bitmap)

    # ---- writes ------------------------------------------------------

    def insert_slot0(self, pool_address: str, sqrt_price: int, tick: int) -> None:
        """Pack price and tick into slot0 with the pool marked unlocked."""
        log.debug("V3 Database: Inserting slot0 for %s", pool_address)
        if not 0 <= sqrt_price <= BITS160_MASK:
            raise ValueError("sqrt price does not fit in 160 bits")
        value = (
            sqrt_price
            | ((tick % (1 << 32)) & BITS24_MASK) << _TICK_SHIFT
            | 1 << _UNLOCKED_SHIFT
        )
        self._write_slot(pool_address, SLOT0_SLOT, value)

    def insert_liquidity(self, pool_address: str, liquidity: int) -> None:
        log.debug("V3 Database: Inserting liquidity for %s", pool_address)
        if not 0 <= liquidity <= _U128_MAX:
            raise ValueError("liquidity does not fit in 128 bits")
        self._write_slot(pool_address, LIQUIDITY_SLOT, liquidity)

    def insert_tick_spacing(self, pool_address: str, tick_spacing: int) -> None:
        log.debug("V3 Database: Inserting tick spacing for %s", pool_address)
        if tick_spacing < 0:
            raise ValueError("tick spacing must be non-negative")
        self._write_slot(pool_address, TICK_SPACING_SLOT, tick_spacing)

    def insert_tick_liquidity_net(self, pool_address: str, tick: int, liquidity_net: int) -> None:
        """Store a tick's signed net liquidity in the upper 128 bits of its slot."""
        log.debug("V3 Database: Inserting tick liquidity net for tick %d in %s", tick, pool_address)
        if not -(1 << 127) <= liquidity_net < (1 << 127):
            raise ValueError("liquidity net does not fit in 128 bits")
        unsigned = liquidity_net % (1 << 128)
        self._write_slot(pool_address, hashed_slot(tick, TICKS_OFFSET), unsigned << 128)

    def insert_tick_bitmap(self, pool_address: str, word_pos: int, bitmap: int) -> None:
        log.debug("V3 Database: Inserting tick bitmap for word %d in %s", word_pos, pool_address)
        if not 0 <= bitmap < _WORD:
            raise ValueError("bitmap does not fit in 256 bits")
        self._write_slot(pool_address, hashed_slot(word_pos, TICK_BITMAP_OFFSET), bitmap)

    # ---- reads -------------------------------------------------------

    def _held_slot(self, pool_address: str, slot: int) -> int:
        account = self.accounts.get(pool_address.strip().lower() if pool_address.startswith("0x")
                                    else "0x" + pool_address.strip().lower())
        if account is None or slot not in account.storage:
            raise StateDBError(f"slot {slot} of {pool_address} is not in the database")
        return account.storage[slot].value

    def tick_spacing(self, pool_address: str) -> int:
        return min(self._held_slot(pool_address, TICK_SPACING_SLOT), _I32_MAX)

    def slot0(self, pool_address: str) -> Slot0:
        cell = self._held_slot(pool_address, SLOT0_SLOT)
        tick = (cell >> _TICK_SHIFT) & BITS24_MASK
        if tick >= 1 << 23:
            tick -= 1 << 24
        return Slot0(
            sqrt_price_x96=cell & BITS160_MASK,
            tick=tick,
            observation_index=(cell >> _OBSERVATION_INDEX_SHIFT) & BITS16_MASK,
            observation_cardinality=(cell >> _OBSERVATION_CARDINALITY_SHIFT) & BITS16_MASK,
            observation_cardinality_next=(cell >> _OBSERVATION_CARDINALITY_NEXT_SHIFT) & BITS16_MASK,
            fee_protocol=(cell >> _FEE_PROTOCOL_SHIFT) & BITS8_MASK,
            unlocked=bool((cell >> _UNLOCKED_SHIFT) & 1),
        )

    def liquidity(self, pool_address: str) -> int:
        return min(self._held_slot(pool_address, LIQUIDITY_SLOT), _U128_MAX)

    def ticks_liquidity_net(self, pool_address: str, tick: int) -> int:
        """Signed net liquidity of a tick."""
        unsigned = self.read_hashed_slot(pool_address, TICKS_OFFSET, tick) >> 128
        return unsigned - (1 << 128) if unsigned >= 1 << 127 else unsigned

    def tick_bitmap(self, pool_address: str, word_pos: int) -> int:
        return self.read_hashed_slot(pool_address, TICK_BITMAP_OFFSET, word_pos)

    def read_hashed_slot(self, pool_address: str, offset: int, item: int) -> int:
        """Read ``mapping[item]`` of the mapping at ``offset``, fetching it if not held."""
        return self.storage_ref(pool_address, hashed_slot(item, offset))