import pytest

from basebuster.models import Pool, PoolType
from basebuster.state_db import (
    KECCAK_EMPTY,
    AccountChange,
    AccountInfo,
    AccountState,
    BlockStateDB,
    DBAccount,
    InsertionType,
    StateDBError,
    StorageSlot,
    keccak256,
)

POOL = "0x88a43bbdf9d098eec7bceda4e2494615dfd9bb9c"
WETH = "0x4200000000000000000000000000000000000006"
USDC = "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913"


class FakeProvider:
    def __init__(self, accounts=None, storage=None, blocks=None, fail=False):
        self.accounts = accounts or {}
        self.storage_values = storage or {}
        self.blocks = blocks or {}
        self.fail = fail
        self.calls = []

    def _check(self, name):
        self.calls.append(name)
        if self.fail:
            raise ConnectionError("provider down")

    def get_transaction_count(self, address):
        self._check("nonce")
        return self.accounts.get(address, (0, 0, b""))[0]

    def get_balance(self, address):
        self._check("balance")
        return self.accounts.get(address, (0, 0, b""))[1]

    def get_code(self, address):
        self._check("code")
        return self.accounts.get(address, (0, 0, b""))[2]

    def get_storage_at(self, address, index):
        self._check("storage")
        return self.storage_values.get((address, index), 0)

    def get_block_hash(self, number):
        self._check("block")
        return self.blocks.get(number)


def make_pool():
    return Pool(PoolType.UNISWAP_V2, address=POOL, token0=WETH, token1=USDC)


def test_keccak_of_empty_matches_constant():
    assert keccak256(b"") == KECCAK_EMPTY
    assert AccountInfo().code_hash == KECCAK_EMPTY


def test_basic_fetches_and_caches():
    code = b"\x60\x00"
    provider = FakeProvider(accounts={WETH: (7, 1000, code)})
    db = BlockStateDB(provider)
    info = db.basic(WETH)
    assert info.nonce == 7
    assert info.balance == 1000
    assert info.code == code
    assert info.code_hash == keccak256(code)
    calls = len(provider.calls)
    assert db.basic(WETH.upper().replace("0X", "0x")) == info
    assert len(provider.calls) == calls
    assert db.accounts[WETH].insertion_type is InsertionType.ON_CHAIN


def test_basic_ref_returns_none_on_failure_and_basic_raises():
    db = BlockStateDB(FakeProvider(fail=True))
    assert db.basic_ref(WETH) is None
    with pytest.raises(StateDBError):
        db.basic(WETH)


def test_storage_fetches_and_caches_as_on_chain():
    provider = FakeProvider(storage={(WETH, 3): 42})
    db = BlockStateDB(provider)
    assert db.storage(WETH, 3) == 42
    assert db.accounts[WETH].storage[3] == StorageSlot(42, InsertionType.ON_CHAIN)
    count = provider.calls.count("storage")
    assert db.storage(WETH, 3) == 42
    assert provider.calls.count("storage") == count


def test_storage_ref_wraps_provider_error():
    db = BlockStateDB(FakeProvider(fail=True))
    with pytest.raises(StateDBError):
        db.storage_ref(WETH, 1)


def test_insert_account_storage_existing_and_new():
    provider = FakeProvider(accounts={USDC: (1, 2, b"")})
    db = BlockStateDB(provider)
    db.insert_account_storage(USDC, 5, 99, InsertionType.CUSTOM)
    account = db.accounts[USDC]
    assert account.insertion_type is InsertionType.CUSTOM
    assert account.state is AccountState.NOT_EXISTING
    assert account.storage[5] == StorageSlot(99, InsertionType.CUSTOM)
    db.insert_account_storage(USDC, "0x06", 11, InsertionType.ON_CHAIN)
    assert db.storage(USDC, 6) == 11
    assert "storage" not in provider.calls


def test_add_pool_and_lookup():
    db = BlockStateDB(FakeProvider())
    pool = make_pool()
    db.add_pool(pool)
    assert db.tracking_pool(POOL)
    assert not db.tracking_pool(WETH)
    assert db.get_pool(POOL) is pool
    assert db.zero_to_one(POOL, WETH) is True
    assert db.zero_to_one(POOL, USDC) is False
    assert db.zero_to_one(WETH, WETH) is None
    assert db.accounts[POOL].state is AccountState.NONE
    with pytest.raises(StateDBError):
        db.get_pool(WETH)


def test_add_pool_fails_without_account():
    db = BlockStateDB(FakeProvider(fail=True))
    with pytest.raises(StateDBError):
        db.add_pool(make_pool())


def test_update_all_slots_only_touches_held_accounts():
    db = BlockStateDB(FakeProvider())
    db.add_pool(make_pool())
    db.update_all_slots(POOL, {"0x08": "0x10", 9: 3})
    assert db.accounts[POOL].storage[8] == StorageSlot(16, InsertionType.CUSTOM)
    assert db.accounts[POOL].storage[9].value == 3
    db.update_all_slots(WETH, {1: 1})
    assert WETH not in db.accounts


def test_code_by_hash():
    db = BlockStateDB(FakeProvider())
    unknown = bytes([1]) * 32
    with pytest.raises(StateDBError):
        db.code_by_hash_ref(unknown)
    assert db.code_by_hash(unknown) == b""
    assert db.code_by_hash_ref(unknown) == b""
    assert db.code_by_hash(KECCAK_EMPTY) == b""


def test_block_hash_cache_and_missing():
    block = bytes([7]) * 32
    provider = FakeProvider(blocks={10: block})
    db = BlockStateDB(provider)
    assert db.block_hash(10) == block
    db.block_hash(10)
    assert provider.calls.count("block") == 1
    assert db.block_hash(11) == bytes(32)


def test_commit_updates_accounts():
    db = BlockStateDB(FakeProvider())
    code = b"\x60\x01\x60\x02"
    db.commit({WETH: AccountChange(info=AccountInfo(balance=5, code=code), storage={1: 2})})
    account = db.accounts[WETH]
    assert account.info.code_hash == keccak256(code)
    assert db.contracts[keccak256(code)] == code
    assert account.state is AccountState.TOUCHED
    assert account.storage[1] == StorageSlot(2, InsertionType.CUSTOM)


def test_commit_created_selfdestructed_and_untouched():
    db = BlockStateDB(FakeProvider())
    db.accounts[WETH] = DBAccount(storage={1: StorageSlot(1)})
    db.commit({WETH: AccountChange(info=AccountInfo(nonce=1), storage={2: 3}, created=True)})
    assert db.accounts[WETH].state is AccountState.STORAGE_CLEARED
    assert set(db.accounts[WETH].storage) == {2}

    db.commit({WETH: AccountChange(info=AccountInfo(nonce=2))})
    assert db.accounts[WETH].state is AccountState.STORAGE_CLEARED

    db.commit({WETH: AccountChange(info=AccountInfo(), selfdestructed=True)})
    assert db.accounts[WETH].storage == {}
    assert db.accounts[WETH].state is AccountState.NOT_EXISTING
    assert db.accounts[WETH].info == AccountInfo()

    db.commit({USDC: AccountChange(info=AccountInfo(balance=9), touched=False)})
    assert USDC not in db.accounts