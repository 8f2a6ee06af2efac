"""Token graph over pools and enumeration of arbitrage cycles through a start token."""

from __future__ import annotations

from typing import Iterable, NamedTuple

from basebuster.models import Pool, PoolType, SwapPath, SwapStep


def _addr(value: str) -> str:
    text = value.strip().lower()
    return text if text.startswith("0x") else "0x" + text


class Edge(NamedTuple):
    """A pool connecting a token to a neighbouring token."""

    neighbor: str
    pool: Pool


class ArbGraph:
    """Undirected multigraph whose nodes are tokens and whose edges are pools."""

    def __init__(self) -> None:
        self._adjacency: dict[str, list[Edge]] = {}

    @property
    def tokens(self) -> list[str]:
        return list(self._adjacency)

    def __contains__(self, token: str) -> bool:
        return _addr(token) in self._adjacency

    def _add_node(self, token: str) -> None:
        self._adjacency.setdefault(token, [])

    def _add_edge(self, a: str, b: str, pool: Pool) -> None:
        self._add_node(a)
        self._add_node(b)
        self._adjacency[a].append(Edge(b, pool))
        if a != b:
            self._adjacency[b].append(Edge(a, pool))

    def add_pool(self, pool: Pool) -> None:
        """Add a pool's tokens and the edges it provides."""
        if pool.pool_type is PoolType.BALANCER_V2:
            for token in pool.tokens:
                self._add_node(token)
            for i, token_in in enumerate(pool.tokens):
                for token_out in pool.tokens[i + 1:]:
                    if pool.balances.get(token_in, 0) and pool.balances.get(token_out, 0):
                        self._add_edge(token_in, token_out, pool)
        elif pool.pool_type is PoolType.CURVE_TRI_CRYPTO:
            for token in pool.tokens:
                self._add_node(token)
            for i, token_in in enumerate(pool.tokens):
                for token_out in pool.tokens[i + 1:]:
                    self._add_edge(token_in, token_out, pool)
        else:
            self._add_edge(pool.token0, pool.token1, pool)

    def edges_of(self, token: str) -> list[Edge]:
        """Edges incident to a token, in insertion order."""
        return list(self._adjacency.get(_addr(token), ()))


def build_graph(pools: Iterable[Pool]) -> ArbGraph:
    graph = ArbGraph()
    for pool in pools:
        graph.add_pool(pool)
    return graph


def find_arbitrage_paths(graph: ArbGraph, start: str, max_hops: int) -> list[list[SwapStep]]:
    """All cycles from ``start`` back to itself using at most ``max_hops`` swaps.

    A two-swap cycle needs pools of different protocols.
    """
    start = _addr(start)
    paths: list[list[SwapStep]] = []
    current: list[tuple[str, Pool, str]] = []
    visited: set[str] = set()

    def to_steps(hops):
        return [
            SwapStep(
                pool_address=pool.address,
                token_in=base,
                token_out=quote,
                protocol=pool.pool_type,
                fee=pool.fee,
            )
            for base, pool, quote in hops
        ]

    def walk(node: str) -> None:
        if len(current) >= max_hops:
            return
        for neighbor, pool in graph.edges_of(node):
            if neighbor == start:
                if len(current) >= 2 or (
                    len(current) == 1 and current[0][1].pool_type != pool.pool_type
                ):
                    paths.append(to_steps([*current, (node, pool, neighbor)]))
            elif neighbor not in visited:
                current.append((node, pool, neighbor))
                visited.add(neighbor)
                walk(neighbor)
                current.pop()
                visited.discard(neighbor)

    walk(start)
    return paths


def generate_cycles(pools: Iterable[Pool], weth: str) -> list[SwapPath]:
    """Two-hop arbitrage cycles through ``weth`` over the given pools."""
    graph = build_graph(pools)
    if weth not in graph:
        raise ValueError(f"token {weth} is not in any pool")
    return [SwapPath.from_steps(steps) for steps in find_arbitrage_paths(graph, weth, 2)]