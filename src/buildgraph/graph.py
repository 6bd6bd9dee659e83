from __future__ import annotations

import heapq
from typing import Dict, Hashable, Iterable, List, Optional, Sequence

from .errors import CycleDetected, NotFound


def topo_sort(nodes: Iterable[Hashable], edges: Iterable[tuple]) -> list:
    """Order `nodes` so that for every edge (u, v), u comes before v.

    Nodes with no ordering constraint between them keep their order in
    `nodes`. Raises CycleDetected with one offending cycle instead of
    returning a partial order.
    """
    nodes = list(nodes)
    rank = {n: i for i, n in enumerate(nodes)}
    incoming: Dict[Hashable, set] = {n: set() for n in nodes}
    outgoing: Dict[Hashable, set] = {n: set() for n in nodes}
    for u, v in edges:
        if u not in incoming or v not in incoming:
            raise ValueError(f"Edge references unknown node: {(u, v)}")
        outgoing[u].add(v)
        incoming[v].add(u)

    remaining = {n: set(incoming[n]) for n in nodes}
    ordered: list = []
    ready = [rank[n] for n in nodes if not remaining[n]]
    heapq.heapify(ready)
    while ready:
        n = nodes[heapq.heappop(ready)]
        ordered.append(n)
        for m in outgoing[n]:
            remaining[m].discard(n)
            if not remaining[m]:
                heapq.heappush(ready, rank[m])
    if len(ordered) != len(nodes):
        raise CycleDetected(_find_cycle(nodes, remaining, rank))
    return ordered


def _find_cycle(nodes: list, remaining: Dict[Hashable, set], rank: dict) -> list:
    """Walk unordered predecessors until a node repeats.

    Every node left unordered still has an unordered predecessor, so the walk
    always closes. The result reads "a needs b needs ... a".
    """
    cur = next(n for n in nodes if remaining[n])
    path: list = []
    seen: Dict[Hashable, int] = {}
    while cur not in seen:
        seen[cur] = len(path)
        path.append(cur)
        cur = min(remaining[cur], key=rank.__getitem__)
    return path[seen[cur]:] + [cur]


class DependencyGraph:
    """Declared "dependent waits for dependency" pairs over hashable nodes.

    Adjacency is built lazily when an order or closure is requested.
    """

    def __init__(self, nodes: Optional[Iterable[Hashable]] = None):
        self._nodes: Dict[Hashable, None] = {}
        self._deps: Dict[Hashable, List[Hashable]] = {}
        for n in nodes or ():
            self.add_node(n)

    def __contains__(self, node: Hashable) -> bool:
        return node in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def nodes(self) -> list:
        return list(self._nodes)

    def add_node(self, node: Hashable) -> None:
        if node not in self._nodes:
            self._nodes[node] = None
            self._deps[node] = []

    def add_dependency(self, dependent: Hashable, dependency: Hashable) -> None:
        self.add_node(dependent)
        self.add_node(dependency)
        if dependency not in self._deps[dependent]:
            self._deps[dependent].append(dependency)

    def dependencies_of(self, node: Hashable) -> list:
        if node not in self._nodes:
            raise NotFound(f"Unknown node: {node}")
        return list(self._deps[node])

    def edges(self) -> list:
        return [(dep, n) for n in self._nodes for dep in self._deps[n]]

    def closure(self, roots: Iterable[Hashable], exclude: Iterable[Hashable] = ()) -> set:
        """Roots plus everything they transitively depend on.

        Excluded nodes are dropped along with anything reachable only
        through them.
        """
        excluded = set(exclude)
        seen: set = set()
        stack = [r for r in roots if r not in excluded]
        while stack:
            n = stack.pop()
            if n in seen:
                continue
            if n not in self._nodes:
                raise NotFound(f"Unknown node: {n}")
            seen.add(n)
            stack.extend(d for d in self._deps[n] if d not in excluded)
        return seen

    def compute_order(self, nodes: Optional[Iterable[Hashable]] = None) -> list:
        """Topological order of the whole graph, or of the subgraph on `nodes`.

        Ties are broken by declaration (insertion) order.
        """
        if nodes is None:
            selected: Sequence[Hashable] = list(self._nodes)
        else:
            wanted = set(nodes)
            selected = [n for n in self._nodes if n in wanted]
        members = set(selected)
        edges = [
            (dep, n) for n in selected for dep in self._deps[n] if dep in members
        ]
        return topo_sort(selected, edges)
