[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "basebuster"
version = "0.1.0"
description = "Off-chain arbitrage search over AMM pools: pool state storage, swap output maths, rate estimation and cycle discovery."
requires-python = ">=3.10"
dependencies = [
    "pycryptodome",
]
keywords = ["arbitrage", "amm", "uniswap", "aerodrome", "balancer", "defi", "evm"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Financial and Insurance Industry",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business :: Financial :: Investment",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["basebuster"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
