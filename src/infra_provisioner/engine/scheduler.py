"""Apply/destroy ordering over a dependency graph."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from infra_provisioner.engine.graph import build_dependency_graph

if TYPE_CHECKING:
    from collections.abc import Iterable

    from infra_provisioner.engine.graph import DependencyGraph
    from infra_provisioner.resources.spec import ResourceSpec


@dataclass(frozen=True)
class Schedule:
    """Total apply order plus the partial order it was derived from.

    ``graph`` is exposed so the executor can run unrelated branches side by
    side; ``apply_order`` is the deterministic sequential walk.
    """

    graph: DependencyGraph
    apply_order: tuple[str, ...]

    @property
    def destroy_order(self) -> tuple[str, ...]:
        return tuple(reversed(self.apply_order))

    def position(self, address: str) -> int:
        return self.apply_order.index(address)


def schedule(graph: DependencyGraph) -> Schedule:
    """Order *graph*; raises :class:`CycleError` naming one cycle if it is not a DAG."""
    return Schedule(graph=graph, apply_order=tuple(graph.topological_order()))


def schedule_specs(specs: Iterable[ResourceSpec]) -> Schedule:
    """Build the graph for *specs* and schedule it."""
    return schedule(build_dependency_graph(specs))
