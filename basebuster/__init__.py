"""Off-chain arbitrage search over AMM pools: pool state, swap maths, rate estimation and cycle discovery."""

__version__ = "0.1.0"