import pytest

from basebuster.estimator import RATE_SCALE_VALUE, Estimator
from basebuster.models import Pool, PoolType, SwapPath, SwapStep
from basebuster.v3_state import PoolStateDB

WETH = "0x4200000000000000000000000000000000000006"
USDC = "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913"
DAI = "0x50c5725949a6f0c72e6c4a641f24049a917db0cb"
UNI_POOL = "0x88a43bbdf9d098eec7bceda4e2494615dfd9bb9c"
SUSHI_POOL = "0x2f8818d1b0f3e3e295440c1c0cddf40aaa21fa87"
STABLE_POOL = "0x00000000000000000000000000000000000000aa"


class FakeProvider:
    def get_transaction_count(self, address):
        return 0

    def get_balance(self, address):
        return 0

    def get_code(self, address):
        return b""

    def get_storage_at(self, address, index):
        return 0

    def get_block_hash(self, number):
        return None


def uni_v2_weth_usdc():
    return Pool(
        pool_type=PoolType.UNISWAP_V2,
        address=UNI_POOL,
        token0=WETH,
        token1=USDC,
        token0_name="WETH",
        token1_name="USDC",
        token0_decimals=18,
        token1_decimals=6,
        reserve0=100 * 10**18,
        reserve1=300_000 * 10**6,
    )


def sushi_v2_weth_usdc():
    return Pool(
        pool_type=PoolType.SUSHISWAP_V2,
        address=SUSHI_POOL,
        token0=WETH,
        token1=USDC,
        token0_name="WETH",
        token1_name="USDC",
        token0_decimals=18,
        token1_decimals=6,
        reserve0=100 * 10**18,
        reserve1=310_000 * 10**6,
    )


def usdc_dai_pool():
    return Pool(
        pool_type=PoolType.UNISWAP_V2,
        address=STABLE_POOL,
        token0=USDC,
        token1=DAI,
        token0_decimals=6,
        token1_decimals=18,
        reserve0=1_000_000 * 10**6,
        reserve1=1_000_000 * 10**18,
    )


@pytest.fixture
def pools():
    return [uni_v2_weth_usdc(), sushi_v2_weth_usdc()]


@pytest.fixture
def estimator(pools):
    db = PoolStateDB(FakeProvider())
    for pool in pools:
        db.insert_v2(pool)
    return Estimator(db, WETH)


def path(*hops):
    return SwapPath(
        steps=tuple(
            SwapStep(pool_address=p, token_in=tin, token_out=tout, protocol=proto)
            for p, tin, tout, proto in hops
        ),
        hash=0,
    )


NOT_PROFITABLE = path(
    (UNI_POOL, WETH, USDC, PoolType.UNISWAP_V2),
    (SUSHI_POOL, USDC, WETH, PoolType.SUSHISWAP_V2),
)
PROFITABLE = path(
    (SUSHI_POOL, WETH, USDC, PoolType.SUSHISWAP_V2),
    (UNI_POOL, USDC, WETH, PoolType.UNISWAP_V2),
)


def test_scale_to_rate(estimator):
    assert estimator.scale_to_rate(1_000_000, 6) == 10**18
    assert estimator.scale_to_rate(1_000_000_000_000_000_000_000_000, 24) == 10**18


def test_scale_to_rate_eighteen_is_identity(estimator):
    assert estimator.scale_to_rate(12345, 18) == 12345


def test_calculate_rate(estimator):
    rate = estimator.calculate_rate(1_000_000, 500_000_000_000_000_000, 6, 18)
    assert rate == 500_000_000_000_000_000


def test_calculate_rate_zero_input_is_zero(estimator):
    assert estimator.calculate_rate(0, 10**18, 18, 18) == 0


def test_profitable(estimator, pools):
    estimator.process_pools(pools)
    assert not estimator.is_profitable(NOT_PROFITABLE, 0)
    assert estimator.is_profitable(PROFITABLE, 0)


def test_high_min_profit_ratio_rejects(estimator, pools):
    estimator.process_pools(pools)
    assert not estimator.is_profitable(PROFITABLE, RATE_SCALE_VALUE)


def test_weth_rate_is_scaled_price(estimator, pools):
    estimator.process_pools(pools)
    rate = estimator.rates[UNI_POOL][WETH]
    assert 2900 * RATE_SCALE_VALUE < rate < 3000 * RATE_SCALE_VALUE
    back = estimator.rates[UNI_POOL][USDC]
    assert 0 < back < RATE_SCALE_VALUE
    assert estimator.weth_based[UNI_POOL] is True


def test_estimate_output_amount(estimator, pools):
    estimator.process_pools(pools)
    assert estimator.estimate_output_amount(PROFITABLE) > estimator.amount
    assert estimator.estimate_output_amount(NOT_PROFITABLE) < estimator.amount


def test_unknown_pool_estimates_zero(estimator, pools):
    estimator.process_pools(pools)
    unknown = path(("0x" + "11" * 20, WETH, USDC, PoolType.UNISWAP_V2))
    assert estimator.estimate_output_amount(unknown) == 0
    assert estimator.is_profitable(unknown, 0) is False


def test_unknown_token_estimates_zero(estimator, pools):
    estimator.process_pools(pools)
    wrong = path((UNI_POOL, DAI, WETH, PoolType.UNISWAP_V2))
    assert estimator.estimate_output_amount(wrong) == 0


def test_update_rates_uses_tracked_pools(estimator):
    estimator.update_rates({UNI_POOL, SUSHI_POOL})
    assert estimator.is_profitable(PROFITABLE, 0)
    assert set(estimator.rates) == {UNI_POOL, SUSHI_POOL}


def test_aggregated_weth_rate_is_average(estimator, pools):
    estimator.process_pools(pools)
    uni = estimator.rates[UNI_POOL][WETH]
    sushi = estimator.rates[SUSHI_POOL][WETH]
    assert estimator.aggregated_weth_rate[USDC] == (uni + sushi) // 2


def test_non_weth_pool_gets_rates():
    db = PoolStateDB(FakeProvider())
    all_pools = [uni_v2_weth_usdc(), sushi_v2_weth_usdc(), usdc_dai_pool()]
    for pool in all_pools:
        db.insert_v2(pool)
    estimator = Estimator(db, WETH)
    estimator.process_pools(all_pools)
    rates = estimator.rates[STABLE_POOL]
    assert 0 < rates[USDC] <= RATE_SCALE_VALUE
    assert 0 < rates[DAI] <= RATE_SCALE_VALUE


def test_non_weth_pool_without_weth_pair_is_skipped():
    db = PoolStateDB(FakeProvider())
    pool = usdc_dai_pool()
    db.insert_v2(pool)
    estimator = Estimator(db, WETH)
    estimator.process_pools([pool])
    assert STABLE_POOL not in estimator.rates