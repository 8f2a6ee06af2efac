"""Constant-product (V2) pool state stored in the layout of the pair contract."""

from __future__ import annotations

import logging

from basebuster.models import Pool
from basebuster.state_db import BlockStateDB, InsertionType, StateDBError, StorageSlot

log = logging.getLogger(__name__)

U112_MASK = (1 << 112) - 1
_ADDRESS_MASK = (1 << 160) - 1

TOKEN0_SLOT = 6
TOKEN1_SLOT = 7
RESERVES_SLOT = 8


def _address(value: str) -> str:
    text = value.strip().lower()
    return text if text.startswith("0x") else "0x" + text


def _address_from_word(word: int) -> str:
    return "0x" + format(word & _ADDRESS_MASK, "040x")


def _address_to_word(address: str) -> int:
    return int(_address(address)[2:], 16)


class V2StateDB(BlockStateDB):
    """State database that knows how V2 pairs lay out reserves and tokens."""

    def insert_v2(self, pool: Pool) -> None:
        """Track a V2 pool and write its reserves and tokens into storage."""
        if not pool.is_v2():
            raise ValueError(f"pool {pool.address} is not a V2 pool")
        log.debug("Adding new v2 pool %s", pool.address)
        self.add_pool(pool)
        self.insert_reserves(pool.address, pool.reserve0, pool.reserve1)
        self.insert_token0(pool.address, pool.token0)
        self.insert_token1(pool.address, pool.token1)

    def get_reserves(self, pool_address: str) -> tuple[int, int]:
        """The pool's (reserve0, reserve1)."""
        value = self.storage_ref(pool_address, RESERVES_SLOT)
        return value & U112_MASK, (value >> 112) & U112_MASK

    def get_token0(self, pool_address: str) -> str:
        return _address_from_word(self.storage_ref(pool_address, TOKEN0_SLOT))

    def get_token1(self, pool_address: str) -> str:
        return _address_from_word(self.storage_ref(pool_address, TOKEN1_SLOT))

    def get_fee(self, pool_address: str) -> int:
        """Swap fee of a tracked pool, in basis points."""
        return self.get_pool(pool_address).fee

    def get_decimals(self, pool_address: str) -> tuple[int, int]:
        pool = self.get_pool(pool_address)
        return pool.token0_decimals, pool.token1_decimals

    def get_stable(self, pool_address: str) -> bool:
        return bool(self.get_pool(pool_address).stable)

    def _write_slot(self, pool_address: str, slot: int, value: int) -> None:
        account = self.accounts.get(_address(pool_address))
        if account is None:
            raise StateDBError(f"account {pool_address} is not in the database")
        account.storage[slot] = StorageSlot(value, InsertionType.CUSTOM)

    def insert_reserves(self, pool_address: str, reserve0: int, reserve1: int) -> None:
        log.debug("V2 Database: Inserting reserves for %s", pool_address)
        self._write_slot(pool_address, RESERVES_SLOT, (reserve1 << 112) | reserve0)

    def insert_token0(self, pool_address: str, token: str) -> None:
        log.debug("V2 Database: Inserting token 0 for %s", pool_address)
        self._write_slot(pool_address, TOKEN0_SLOT, _address_to_word(token))

    def insert_token1(self, pool_address: str, token: str) -> None:
        log.debug("V2 Database: Inserting token 1 for %s", pool_address)
        self._write_slot(pool_address, TOKEN1_SLOT, _address_to_word(token))