# basebuster

Building blocks for finding arbitrage cycles across constant-product,
concentrated-liquidity and stable-swap pools. Everything runs off-chain, on
pool state that you load into it. Amounts are plain Python integers in a
token's smallest unit, and fixed-point rates use 18 decimals.

## Modules

- `basebuster.models`: `Pool`, `PoolType`, `SwapStep` and `SwapPath`
  (`SwapPath.from_steps` derives a stable hash from the steps), plus the event
  types `ArbPath`, `ValidPath`, `PoolsTouched`, `NewBlock` and `BlockHeader`.
  Addresses are normalised to lower-case `0x` strings.
- `basebuster.state_db`: `BlockStateDB` is an account, code and storage
  store. Any account, storage slot or block hash it does not hold is fetched
  from a `StateProvider` that you supply. `commit` applies `AccountChange`
  records. Lookups that fail raise `StateDBError`.
- `basebuster.v2_state`: `V2StateDB` adds V2 pairs with `insert_v2`, and reads
  them back with `get_reserves`, `get_token0`, `get_token1`, `get_fee`,
  `get_decimals` and `get_stable`. It uses the pair contract's storage layout.
- `basebuster.v3_state`: `PoolStateDB` extends `V2StateDB` with `insert_v3`,
  and with reads of `slot0` (returned as a `Slot0`), `liquidity`,
  `tick_spacing`, `ticks_liquidity_net` and `tick_bitmap`. `hashed_slot`
  computes mapping storage slots.
- `basebuster.calculator`: `Calculator` gives exact swap outputs for
  Uniswap V2-style, V3-style and Aerodrome (volatile and stable) pools, keeping
  an LRU cache of step results. Other pool types raise `UnsupportedPoolError`.
  `stable_k` and `get_y` expose the stable-curve maths.
- `basebuster.balancer_math`: weighted-pool fixed-point maths
  (`log_exp_pow`, `exp`, `ln`, `pow_up`, `mul_up`, `div_down`, ...) and
  `balancer_v2_out`. Out-of-range inputs raise `BalancerMathError`.
- `basebuster.estimator`: `Estimator` keeps per-pool exchange rates. It
  computes rates for WETH pairs first and then for other pairs through their
  averaged WETH rates, and uses them to screen paths with
  `estimate_output_amount` and `is_profitable`.
- `basebuster.graph`: `build_graph`, `find_arbitrage_paths` and
  `generate_cycles`. `generate_cycles` enumerates two-hop cycles through WETH,
  where the two hops use pools of different protocols.
- `basebuster.searcher`: `Searcher.search_block` takes the pools touched in a
  block. It refreshes the cache and the rates, estimates every affected cycle,
  confirms the best one with the calculator, and returns an `ArbPath` or
  `None`. `search_paths` does the same over a stream of `PoolsTouched` events.
- `basebuster.gas_station`: `GasStation` tracks the next block's base fee
  from `NewBlock` events, using `next_block_base_fee` with
  `BaseFeeParams.optimism_canyon()`. `get_gas_fees(profit)` returns
  `(max_fee, priority_fee)` so that half of the profit goes to gas.

## Installing

```
pip install .
```

Install with the `test` extra and run the tests:

```
pip install .[test]
pytest
```

## Example

```python
from basebuster.models import Pool, PoolType
from basebuster.v3_state import PoolStateDB
from basebuster.calculator import Calculator
from basebuster.graph import generate_cycles


class OfflineProvider:
    """Answers every query with empty state."""

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


weth = "0x" + "42" * 20
usdc = "0x" + "83" * 20
pools = [
    Pool(PoolType.UNISWAP_V2, "0x" + "aa" * 20, weth, usdc,
         token1_decimals=6, reserve0=325 * 10**18, reserve1=1_014_000 * 10**6),
    Pool(PoolType.SUSHISWAP_V2, "0x" + "bb" * 20, weth, usdc,
         token1_decimals=6, reserve0=324 * 10**18, reserve1=1_016_000 * 10**6),
]

db = PoolStateDB(OfflineProvider())
for pool in pools:
    db.insert_v2(pool)

calculator = Calculator(db)
for path in generate_cycles(pools, weth):
    print(path.hash, calculator.calculate_output(path))
```

## What it does not do

The package has no command-line program and no long-running service. It does
not connect to a node, stream blocks, trace blocks, or sync pools from chain.
It does not execute or simulate contract calls, and it does not build, sign
or send transactions. State gets in only through the pools you insert and the
`StateProvider` you pass to the state database. Found paths are returned to
the caller, or handed to the callback given to `Searcher.search_paths`.