"""Desired specs vs. recorded state -> minimal action plan."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from infra_provisioner.core.state import ResourceStatus
from infra_provisioner.engine.compare import attribute_diff
from infra_provisioner.engine.errors import ValidationError
from infra_provisioner.engine.graph import DependencyGraph
from infra_provisioner.engine.types import Action, ResourceChange
from infra_provisioner.resources.refs import (
    UNKNOWN,
    Reference,
    lookup_output,
    render_unknowns,
    resolve_references,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from infra_provisioner.core.state import ResourceState, State
    from infra_provisioner.engine.registry import ProviderRegistry
    from infra_provisioner.engine.scheduler import Schedule
    from infra_provisioner.resources.spec import ResourceSpec

logger = logging.getLogger(__name__)


def is_live(inst: ResourceState | None) -> bool:
    """Whether a state entry stands for an object the provider holds."""
    return inst is not None and inst.exists


def _live_addresses(state: State) -> set[str]:
    return {a for a, inst in state.resources.items() if inst.status != ResourceStatus.DESTROYED}


def delete_order(state: State, addresses: set[str]) -> list[str]:
    """Order state entries for deletion: dependents before their dependencies."""
    dep_map = {a: list(state.resources[a].dependencies) for a in addresses}
    return DependencyGraph(addresses, dep_map).reverse_topological_order()


class Reconciler:
    """Produce a :class:`ResourceChange` per resource, in schedule order.

    References are resolved against outputs recorded in state.  Outputs of a
    resource that is created or replaced in the same run are not known yet,
    so a dependent consuming them is planned as an update.
    """

    def __init__(self, registry: ProviderRegistry) -> None:
        self._registry = registry

    def validate(self, specs: Sequence[ResourceSpec]) -> None:
        errors: list[str] = []
        for spec in specs:
            provider = self._registry.get(spec.kind)
            errors.extend(f"{spec.address}: {e}" for e in provider.validate(spec.attributes))
        if errors:
            raise ValidationError(errors)

    def reconcile(
        self,
        schedule: Schedule,
        specs: Sequence[ResourceSpec],
        state: State,
    ) -> list[ResourceChange]:
        by_address = {s.address: s for s in specs}
        live = _live_addresses(state)

        changes: list[ResourceChange] = []
        unknown_outputs: set[str] = set()
        for address in schedule.apply_order:
            spec = by_address[address]
            change = self._classify(spec, schedule, state, unknown_outputs)
            if change.action == Action.CREATE or change.replace:
                unknown_outputs.add(address)
            changes.append(change)

        changes.extend(self._plan_deletes(state, live - set(by_address)))
        return changes

    def plan_destroy(self, state: State) -> list[ResourceChange]:
        """Delete every recorded resource, dependents first."""
        return self._plan_deletes(state, _live_addresses(state))

    def _classify(
        self,
        spec: ResourceSpec,
        schedule: Schedule,
        state: State,
        unknown_outputs: set[str],
    ) -> ResourceChange:
        """Classify a single resource as CREATE, UPDATE, or NOOP."""
        address = spec.address

        def _lookup(r: Reference) -> Any:
            if r.address in unknown_outputs:
                return UNKNOWN
            inst = state.resources.get(r.address)
            if not is_live(inst):
                return UNKNOWN
            assert inst is not None
            return lookup_output(inst.outputs, r.output)

        resolved = resolve_references(spec.attributes, _lookup)
        desired = spec.model_dump(exclude={"address"})
        dependencies = schedule.graph.dependencies_of(address)

        prior_inst = state.resources.get(address)
        if not is_live(prior_inst):
            logger.debug("Classified %s as create", address)
            return ResourceChange(
                address=address,
                kind=spec.kind,
                action=Action.CREATE,
                desired=desired,
                planned=render_unknowns(resolved),
                dependencies=dependencies,
            )

        assert prior_inst is not None
        prior = dict(prior_inst.attributes)
        diff = attribute_diff(resolved, prior)

        replace = False
        forcing: list[str] = []
        if diff:
            provider = self._registry.get(spec.kind)
            replace = provider.requires_replacement(prior, resolved)
            if replace:
                forcing = [k for k in diff if k in provider.force_new]
            action = Action.UPDATE
        elif prior_inst.status != ResourceStatus.APPLIED:
            # Last update was rejected; retry it.
            action = Action.UPDATE
        else:
            action = Action.NOOP

        if replace:
            logger.debug("Classified %s as update (replace)", address)
        else:
            logger.debug("Classified %s as %s", address, action.value)
        return ResourceChange(
            address=address,
            kind=spec.kind,
            action=action,
            replace=replace,
            desired=desired,
            prior=prior,
            planned=render_unknowns(resolved),
            diff=render_unknowns(diff) or None,
            forces_replacement=forcing,
            dependencies=dependencies,
        )

    def _plan_deletes(self, state: State, addresses: set[str]) -> list[ResourceChange]:
        """Plan delete changes for the given addresses in reverse dependency order."""
        changes: list[ResourceChange] = []
        for address in delete_order(state, addresses):
            inst = state.resources[address]
            self._registry.get(inst.kind)  # fail early if unknown
            changes.append(
                ResourceChange(
                    address=address,
                    kind=inst.kind,
                    action=Action.DELETE,
                    prior=dict(inst.attributes),
                    dependencies=list(inst.dependencies),
                )
            )
        return changes
