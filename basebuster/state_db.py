"""In-memory EVM state database backed by a lazily queried chain provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Mapping, Optional, Protocol, Union

from Crypto.Hash import keccak

from basebuster.models import Pool

log = logging.getLogger(__name__)

KECCAK_EMPTY = bytes.fromhex("c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470")
ZERO_HASH = bytes(32)

Word = Union[int, bytes, str]


def keccak256(data: bytes) -> bytes:
    """Keccak-256 digest of ``data``."""
    return keccak.new(digest_bits=256, data=bytes(data)).digest()


def _address(value: str) -> str:
    text = value.strip().lower()
    return text if text.startswith("0x") else "0x" + text


def _word(value: Word) -> int:
    """Interpret an int, 32-byte value or hex string as a 256-bit word."""
    if isinstance(value, int):
        return value
    if isinstance(value, (bytes, bytearray)):
        return int.from_bytes(value, "big")
    text = value[2:] if value.startswith(("0x", "0X")) else value
    return int(text or "0", 16)


def _b256(value: Union[bytes, str]) -> bytes:
    if isinstance(value, str):
        text = value[2:] if value.startswith(("0x", "0X")) else value
        value = bytes.fromhex(text)
    if len(value) != 32:
        raise ValueError("a hash must be 32 bytes")
    return bytes(value)


class StateDBError(Exception):
    """Raised when state cannot be found or fetched."""


class InsertionType(Enum):
    """Whether a value mirrors the chain or was written by us."""

    CUSTOM = "custom"
    ON_CHAIN = "on_chain"


class AccountState(Enum):
    """Lifecycle state of an account within the database."""

    NOT_EXISTING = "not_existing"
    TOUCHED = "touched"
    STORAGE_CLEARED = "storage_cleared"
    NONE = "none"


@dataclass(frozen=True)
class StorageSlot:
    """A storage value and how it got into the database."""

    value: int = 0
    insertion_type: InsertionType = InsertionType.ON_CHAIN


@dataclass(frozen=True)
class AccountInfo:
    """Balance, nonce and code of an account."""

    balance: int = 0
    nonce: int = 0
    code_hash: bytes = KECCAK_EMPTY
    code: bytes = b""


@dataclass
class DBAccount:
    """An account held by the database together with its cached storage."""

    info: AccountInfo = field(default_factory=AccountInfo)
    state: AccountState = AccountState.NONE
    storage: dict[int, StorageSlot] = field(default_factory=dict)
    insertion_type: InsertionType = InsertionType.ON_CHAIN

    @classmethod
    def new(cls, insertion_type: InsertionType) -> "DBAccount":
        return cls(state=AccountState.NOT_EXISTING, insertion_type=insertion_type)


@dataclass(frozen=True)
class AccountChange:
    """The post-execution state of one account, as handed to ``commit``."""

    info: AccountInfo
    storage: Mapping[int, int] = field(default_factory=dict)
    touched: bool = True
    selfdestructed: bool = False
    created: bool = False


class StateProvider(Protocol):
    """Source of chain state queried for anything not held locally."""

    def get_transaction_count(self, address: str) -> int: ...

    def get_balance(self, address: str) -> int: ...

    def get_code(self, address: str) -> bytes: ...

    def get_storage_at(self, address: str, index: int) -> int: ...

    def get_block_hash(self, number: int) -> Optional[bytes]: ...


class BlockStateDB:
    """Account, code and storage cache that falls back to a provider."""

    def __init__(self, provider: StateProvider) -> None:
        self.provider = provider
        self.accounts: dict[str, DBAccount] = {}
        self.contracts: dict[bytes, bytes] = {KECCAK_EMPTY: b"", ZERO_HASH: b""}
        self.logs: list = []
        self.block_hashes: dict[int, bytes] = {}
        self.pools: set[str] = set()
        self.pool_info: dict[str, Pool] = {}

    # ---- working set -------------------------------------------------

    def add_pool(self, pool: Pool) -> None:
        """Track a pool and load its on-chain account."""
        address = _address(pool.address)
        log.debug("Adding pool %s to database", address)
        self.pools.add(address)
        self.pool_info[address] = pool
        info = self.basic_ref(address)
        if info is None:
            raise StateDBError(f"unable to fetch account for pool {address}")
        self.accounts[address] = DBAccount(info=info, insertion_type=InsertionType.ON_CHAIN)

    def get_pool(self, pool_address: str) -> Pool:
        try:
            return self.pool_info[_address(pool_address)]
        except KeyError:
            raise StateDBError(f"pool {pool_address} is not tracked") from None

    def tracking_pool(self, pool_address: str) -> bool:
        return _address(pool_address) in self.pools

    def zero_to_one(self, pool_address: str, token_in: str) -> Optional[bool]:
        """Whether ``token_in`` is the pool's token0, or None for an unknown pool."""
        pool = self.pool_info.get(_address(pool_address))
        if pool is None:
            return None
        return pool.token0 == _address(token_in)

    def update_all_slots(self, address: str, storage: Mapping[Word, Word]) -> None:
        """Apply traced post-state storage to an account already held."""
        account = self.accounts.get(_address(address))
        if account is None:
            return
        for slot, value in storage.items():
            account.storage[_word(slot)] = StorageSlot(_word(value), InsertionType.CUSTOM)

    # ---- insertion ---------------------------------------------------

    def insert_account_info(
        self, address: str, info: AccountInfo, insertion_type: InsertionType
    ) -> None:
        account = DBAccount.new(insertion_type)
        account.info = info
        self.accounts[_address(address)] = account

    def insert_account_storage(
        self, address: str, slot: Word, value: int, insertion_type: InsertionType
    ) -> None:
        """Write a storage value, fetching the account first if it is not held."""
        address = _address(address)
        entry = StorageSlot(value, InsertionType.CUSTOM)
        account = self.accounts.get(address)
        if account is None:
            info = self.basic(address)
            self.insert_account_info(address, info, insertion_type)
            account = self.accounts[address]
        account.storage[_word(slot)] = entry

    # ---- mutable lookups (cache what is fetched) ---------------------

    def basic(self, address: str) -> AccountInfo:
        address = _address(address)
        account = self.accounts.get(address)
        if account is not None:
            return account.info
        info = self.basic_ref(address)
        if info is None:
            raise StateDBError(f"unable to fetch account {address}")
        self.insert_account_info(address, info, InsertionType.ON_CHAIN)
        return info

    def code_by_hash(self, code_hash: Union[bytes, str]) -> bytes:
        code_hash = _b256(code_hash)
        code = self.contracts.get(code_hash)
        if code is not None:
            return code
        try:
            code = self.code_by_hash_ref(code_hash)
        except StateDBError:
            code = b""
        self.contracts[code_hash] = code
        return code

    def storage(self, address: str, index: Word) -> int:
        address = _address(address)
        index = _word(index)
        account = self.accounts.get(address)
        if account is not None and index in account.storage:
            return account.storage[index].value
        value = self.storage_ref(address, index)
        if address not in self.accounts:
            self.basic(address)
        self.accounts[address].storage[index] = StorageSlot(value, InsertionType.ON_CHAIN)
        return value

    def block_hash(self, number: int) -> bytes:
        cached = self.block_hashes.get(number)
        if cached is not None:
            return cached
        value = self.block_hash_ref(number)
        self.block_hashes[number] = value
        return value

    # ---- read-only lookups ------------------------------------------

    def basic_ref(self, address: str) -> Optional[AccountInfo]:
        """Account info from the cache or the provider; None if it cannot be fetched."""
        address = _address(address)
        account = self.accounts.get(address)
        if account is not None:
            return account.info
        try:
            nonce = self.provider.get_transaction_count(address)
            balance = self.provider.get_balance(address)
            code = bytes(self.provider.get_code(address))
        except Exception:  # provider failures mean "unknown account"
            log.debug("Unable to fetch account %s from provider", address)
            return None
        return AccountInfo(balance=balance, nonce=nonce, code_hash=keccak256(code), code=code)

    def code_by_hash_ref(self, code_hash: Union[bytes, str]) -> bytes:
        code = self.contracts.get(_b256(code_hash))
        if code is None:
            raise StateDBError("code should already be loaded")
        return code

    def storage_ref(self, address: str, index: Word) -> int:
        address = _address(address)
        index = _word(index)
        account = self.accounts.get(address)
        if account is not None and index in account.storage:
            return account.storage[index].value
        try:
            return self.provider.get_storage_at(address, index)
        except Exception as exc:
            raise StateDBError(f"unable to fetch slot {index} of {address}") from exc

    def block_hash_ref(self, number: int) -> bytes:
        cached = self.block_hashes.get(number)
        if cached is not None:
            return cached
        try:
            fetched = self.provider.get_block_hash(number)
        except Exception as exc:
            raise StateDBError(f"unable to fetch block {number}") from exc
        if fetched is None:
            log.warning("No block found for block number %d", number)
            return ZERO_HASH
        return _b256(fetched)

    # ---- commit ------------------------------------------------------

    def commit(self, changes: Mapping[str, AccountChange]) -> None:
        """Apply the state changes of an executed transaction."""
        for address, change in changes.items():
            if not change.touched:
                continue
            address = _address(address)
            account = self.accounts.setdefault(address, DBAccount())
            if change.selfdestructed:
                account.storage.clear()
                account.state = AccountState.NOT_EXISTING
                account.info = AccountInfo()
                continue

            info = change.info
            if info.code:
                if info.code_hash == KECCAK_EMPTY:
                    info = replace(info, code_hash=keccak256(info.code))
                self.contracts.setdefault(info.code_hash, info.code)

            account.info = info
            if change.created:
                account.storage.clear()
                account.state = AccountState.STORAGE_CLEARED
            elif account.state is AccountState.STORAGE_CLEARED:
                account.state = AccountState.STORAGE_CLEARED
            else:
                account.state = AccountState.TOUCHED
            for slot, value in change.storage.items():
                account.storage[_word(slot)] = StorageSlot(value, InsertionType.CUSTOM)