"""Plan/apply engine."""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from infra_provisioner import __version__
from infra_provisioner.core.state import compute_attributes_hash, compute_state_digest
from infra_provisioner.engine.errors import StalePlanError
from infra_provisioner.engine.executor import Executor, ProgressCallback
from infra_provisioner.engine.lock import StateLock
from infra_provisioner.engine.providers import ProviderContext
from infra_provisioner.engine.readiness import DEFAULT_READINESS_TIMEOUT
from infra_provisioner.engine.reconciler import Reconciler
from infra_provisioner.engine.scheduler import Schedule, schedule_specs
from infra_provisioner.engine.types import Action, ApplyResult, Plan, PlanMetadata, ResourceChange

if TYPE_CHECKING:
    from collections.abc import Sequence
    from contextlib import AbstractContextManager

    from infra_provisioner.core.state import ResourceState, State
    from infra_provisioner.core.store import StateStore
    from infra_provisioner.engine.registry import ProviderRegistry
    from infra_provisioner.resources.spec import ResourceSpec

logger = logging.getLogger(__name__)

__all__ = ["ProgressCallback", "ProvisioningEngine"]


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def _sha256_hex(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _compute_config_digest(specs: Sequence[ResourceSpec]) -> str:
    items = sorted(
        (s.model_dump(exclude={"address"}) | {"address": s.address} for s in specs),
        key=lambda x: x["address"],
    )
    return _sha256_hex(_canonical_json(items))


class ProvisioningEngine:
    """Terraform-like plan/apply engine over a provider registry and a state store.

    Run outcomes:

    - :meth:`plan_only` computes a :class:`Plan` without touching anything.
    - :meth:`apply` plans and applies in one locked run.
    - :meth:`destroy_all` deletes every recorded resource, dependents first.
    - :meth:`plan` + :meth:`apply_plan` support saved plans with stale-plan
      detection.
    """

    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        store: StateStore,
        readiness_timeout: float = DEFAULT_READINESS_TIMEOUT,
        parallelism: int = 1,
        lock_timeout: float | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._reconciler = Reconciler(registry)
        self._readiness_timeout = readiness_timeout
        self._parallelism = parallelism
        self._lock_timeout = lock_timeout
        self._executor: Executor | None = None

    @property
    def store(self) -> StateStore:
        return self._store

    def _lock(self) -> AbstractContextManager[Any]:
        path = getattr(self._store, "path", None)
        if path is None:
            return contextlib.nullcontext()
        return StateLock(path, timeout=self._lock_timeout)

    # ── Planning ────────────────────────────────────────────────────

    def schedule(self, specs: Sequence[ResourceSpec]) -> Schedule:
        """Validate *specs* and order them. Raises on any configuration error."""
        for spec in specs:
            self._registry.get(spec.kind)
        sched = schedule_specs(specs)
        self._reconciler.validate(specs)
        return sched

    def _plan(self, specs: Sequence[ResourceSpec], *, destroy: bool) -> Plan:
        logger.info("Planning %d resources (destroy=%s)", len(specs), destroy)
        state = self._store.snapshot()

        if destroy:
            changes = self._reconciler.plan_destroy(state)
        else:
            sched = self.schedule(specs)
            changes = self._reconciler.reconcile(sched, specs, state)

        metadata = PlanMetadata(
            created_at=datetime.now(UTC),
            destroy=destroy,
            state_lineage=state.lineage,
            state_serial=state.serial,
            state_digest=compute_state_digest(state),
            config_digest=_compute_config_digest([] if destroy else specs),
            engine_version=__version__,
        )
        plan = Plan(metadata=metadata, changes=changes)
        counts = ", ".join(f"{n} {a}" for a, n in plan.summary().items() if n)
        logger.info("Plan: %s", counts or "no resources")
        return plan

    def plan(self, specs: Sequence[ResourceSpec], *, destroy: bool = False) -> Plan:
        self._store.reload()
        return self._plan(specs, destroy=destroy)

    def plan_only(self, specs: Sequence[ResourceSpec]) -> Plan:
        """Compute the plan for *specs*; no provider call, no state write."""
        return self.plan(specs)

    # ── Applying ────────────────────────────────────────────────────

    def _check_stale(self, plan: Plan) -> None:
        state = self._store.snapshot()
        if state.serial == 0 and plan.metadata.state_serial == 0 and not state.resources:
            # Never written: each load of a missing state file draws a new lineage.
            return
        if state.lineage != plan.metadata.state_lineage:
            raise StalePlanError("State lineage changed; re-run plan")
        if state.serial != plan.metadata.state_serial:
            raise StalePlanError("State serial changed; re-run plan")
        if compute_state_digest(state) != plan.metadata.state_digest:
            raise StalePlanError("State digest changed; re-run plan")

    def _execute(self, plan: Plan, progress: ProgressCallback | None) -> ApplyResult:
        self._executor = Executor(
            registry=self._registry,
            store=self._store,
            readiness_timeout=self._readiness_timeout,
            parallelism=self._parallelism,
            progress=progress,
        )
        try:
            results = self._executor.execute(plan)
        finally:
            self._executor = None
        return ApplyResult(plan=plan, results=results, state=self._store.snapshot())

    def apply_plan(self, plan: Plan, *, progress: ProgressCallback | None = None) -> ApplyResult:
        """Apply a previously computed (possibly saved) plan."""
        with self._lock():
            self._store.reload()
            self._check_stale(plan)
            return self._execute(plan, progress)

    def apply(
        self, specs: Sequence[ResourceSpec], *, progress: ProgressCallback | None = None
    ) -> ApplyResult:
        """Plan and apply *specs* under a single state lock."""
        with self._lock():
            self._store.reload()
            plan = self._plan(specs, destroy=False)
            return self._execute(plan, progress)

    def destroy_all(
        self, specs: Sequence[ResourceSpec] = (), *, progress: ProgressCallback | None = None
    ) -> ApplyResult:
        """Destroy every recorded resource in reverse dependency order.

        Recorded state is authoritative here: *specs* are not consulted, so a
        broken configuration never blocks teardown.
        """
        _ = specs
        with self._lock():
            self._store.reload()
            plan = self._plan([], destroy=True)
            return self._execute(plan, progress)

    def cancel(self) -> None:
        """Stop a running apply before its next operation."""
        if self._executor is not None:
            self._executor.cancel()

    # ── Drift ───────────────────────────────────────────────────────

    def refresh(self, *, persist: bool = False) -> list[ResourceChange]:
        """Read every recorded resource back from its provider.

        Returns the drift found: ``update`` for changed attributes/outputs and
        ``delete`` for resources that no longer exist.  With *persist*, the
        read values are written to state and vanished entries are dropped.
        """
        logger.debug("Refreshing state from providers")
        with self._lock():
            self._store.reload()
            state = self._store.snapshot()
            changes: list[ResourceChange] = []
            for address in sorted(state.resources):
                inst = state.resources[address]
                if not inst.exists:
                    continue
                assert inst.external_id is not None
                provider = self._registry.get(inst.kind)
                result = provider.read(ProviderContext(address, inst.kind), inst.external_id)
                if result is None:
                    changes.append(_drift_change(inst, Action.DELETE))
                    if persist:
                        self._store.remove(address)
                    continue

                # Only keys we manage are tracked; provider defaults are ignored.
                attrs = {k: result.attributes.get(k, v) for k, v in inst.attributes.items()}
                outputs = {**inst.outputs, **result.outputs}
                if attrs == inst.attributes and outputs == inst.outputs:
                    continue

                changes.append(_drift_change(inst, Action.UPDATE, attrs, outputs))
                if persist:
                    inst.attributes = attrs
                    inst.attributes_hash = compute_attributes_hash(attrs)
                    inst.outputs = outputs
                    inst.updated_at = datetime.now(UTC)
                    self._store.put(address, inst)

            logger.debug("Refresh found %d drifted resources", len(changes))
            return changes

    def drift(self) -> list[ResourceChange]:
        """Report drift without writing state."""
        return self.refresh(persist=False)

    def snapshot(self) -> State:
        self._store.reload()
        return self._store.snapshot()


def _drift_change(
    inst: ResourceState,
    action: Action,
    attrs: dict[str, Any] | None = None,
    outputs: dict[str, Any] | None = None,
) -> ResourceChange:
    if action == Action.DELETE:
        return ResourceChange(
            address=inst.address,
            kind=inst.kind,
            action=action,
            prior=dict(inst.attributes),
        )
    assert attrs is not None and outputs is not None
    old = {**inst.attributes, **{f"outputs.{k}": v for k, v in inst.outputs.items()}}
    new = {**attrs, **{f"outputs.{k}": v for k, v in outputs.items()}}
    diff = {
        k: {"from": old.get(k), "to": new.get(k)}
        for k in sorted(set(old) | set(new))
        if old.get(k) != new.get(k)
    }
    return ResourceChange(
        address=inst.address,
        kind=inst.kind,
        action=action,
        prior=dict(inst.attributes),
        planned=attrs,
        diff=diff,
    )
