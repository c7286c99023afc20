"""Dependency graph utilities."""

from __future__ import annotations

import heapq
import logging
from typing import TYPE_CHECKING

from infra_provisioner.engine.errors import (
    CycleError,
    DuplicateAddressError,
    UnresolvedReferenceError,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from infra_provisioner.resources.spec import ResourceSpec

logger = logging.getLogger(__name__)


class DependencyGraph:
    """A directed graph where nodes depend on other nodes.

    Edges point from a dependency to its dependents.  Dependencies naming
    nodes outside the graph are dropped, so callers can build sub-graphs
    (e.g. only the resources being deleted) from a wider dependency map.
    """

    def __init__(
        self,
        nodes: Iterable[str],
        dependencies: Mapping[str, Iterable[str]],
        priorities: Mapping[str, int] | None = None,
    ) -> None:
        self._nodes = set(nodes)
        self._priorities = priorities or {}
        # node -> filtered deps within graph
        self._deps: dict[str, set[str]] = {}
        self._dependents: dict[str, set[str]] = {n: set() for n in self._nodes}
        for node in self._nodes:
            deps = {d for d in dependencies.get(node, []) if d in self._nodes}
            self._deps[node] = deps
            for dep in deps:
                self._dependents[dep].add(node)

    @property
    def nodes(self) -> list[str]:
        return sorted(self._nodes)

    def __contains__(self, node: object) -> bool:
        return node in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def dependencies_of(self, node: str) -> list[str]:
        return sorted(self._deps[node])

    def dependents_of(self, node: str) -> list[str]:
        return sorted(self._dependents[node])

    def edges(self) -> list[tuple[str, str]]:
        """``(dependency, dependent)`` pairs, sorted."""
        return sorted((dep, node) for node, deps in self._deps.items() for dep in deps)

    def transitive_dependents(self, node: str) -> set[str]:
        seen: set[str] = set()
        stack = [node]
        while stack:
            for child in self._dependents[stack.pop()]:
                if child not in seen:
                    seen.add(child)
                    stack.append(child)
        return seen

    def topological_order(self) -> list[str]:
        """Return deterministic topo order (priority, then lexicographic tie-break)."""
        indegree: dict[str, int] = {n: len(deps) for n, deps in self._deps.items()}

        ready: list[tuple[int, str]] = [
            (self._priorities.get(n, 0), n) for n, deg in indegree.items() if deg == 0
        ]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            _, node = heapq.heappop(ready)
            order.append(node)
            for child in sorted(self._dependents[node]):
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, (self._priorities.get(child, 0), child))

        if len(order) != len(self._nodes):
            raise CycleError(self.find_cycle(self._nodes - set(order)))

        return order

    def reverse_topological_order(self) -> list[str]:
        order = self.topological_order()
        order.reverse()
        return order

    def find_cycle(self, candidates: Iterable[str] | None = None) -> list[str]:
        """Return one cycle as ``[a, b, ..., a]``, or ``[]`` if acyclic."""
        pool = sorted(self._nodes if candidates is None else set(candidates))
        visiting: list[str] = []
        on_path: set[str] = set()
        done: set[str] = set()

        def _visit(node: str) -> list[str]:
            visiting.append(node)
            on_path.add(node)
            for dep in sorted(self._deps[node]):
                if dep in on_path:
                    cycle = visiting[visiting.index(dep) :]
                    # Report in dependency -> dependent direction.
                    cycle.reverse()
                    return [*cycle, cycle[0]]
                if dep not in done:
                    found = _visit(dep)
                    if found:
                        return found
            visiting.pop()
            on_path.discard(node)
            done.add(node)
            return []

        for start in pool:
            if start not in done:
                found = _visit(start)
                if found:
                    return found
        return []


def build_dependency_graph(specs: Iterable[ResourceSpec]) -> DependencyGraph:
    """Build the dependency graph for a desired resource set.

    Adds an edge for every explicit ``depends_on`` entry and every
    ``${kind.name.output}`` reference.  Raises :class:`DuplicateAddressError`
    for repeated addresses and :class:`UnresolvedReferenceError` for edges to
    addresses outside the set.
    """
    by_address: dict[str, ResourceSpec] = {}
    for spec in specs:
        if spec.address in by_address:
            raise DuplicateAddressError(spec.address)
        by_address[spec.address] = spec

    dep_map: dict[str, list[str]] = {}
    for address in sorted(by_address):
        deps = by_address[address].dependency_addresses()
        for dep in deps:
            if dep not in by_address:
                raise UnresolvedReferenceError(address, dep)
        dep_map[address] = deps

    graph = DependencyGraph(by_address, dep_map)
    logger.debug("Built dependency graph: %d nodes, %d edges", len(graph), len(graph.edges()))
    return graph
