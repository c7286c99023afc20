"""Apply operations.

Terraform runs apply by executing a graph of operations (resource nodes + other
nodes).  This module implements a minimal version of that idea: each operation
knows how to apply itself and lists dependencies on other operations.  A
replacement is two nodes (destroy, then create) so that dependents can be
ordered around each half.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from pydantic_core import to_jsonable_python

from infra_provisioner.core.state import ResourceState, ResourceStatus, compute_attributes_hash
from infra_provisioner.engine.compare import attribute_diff
from infra_provisioner.engine.errors import (
    ConflictError,
    ProviderError,
    ResourceExistsError,
    ResourceNotFoundError,
)
from infra_provisioner.engine.providers import ProviderContext
from infra_provisioner.engine.types import Action, ActionStatus
from infra_provisioner.resources.refs import UNKNOWN, lookup_output, resolve_references
from infra_provisioner.resources.spec import ResourceSpec

if TYPE_CHECKING:
    from infra_provisioner.core.store import StateStore
    from infra_provisioner.engine.registry import ProviderRegistry
    from infra_provisioner.engine.types import ResourceChange
    from infra_provisioner.resources.refs import Reference

logger = logging.getLogger(__name__)


class ExecutionContext:
    """Shared by all operations of one apply run."""

    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        store: StateStore,
        readiness_timeout: float,
    ) -> None:
        self.registry = registry
        self.store = store
        self.readiness_timeout = readiness_timeout
        self._changed: set[str] = set()
        self._mutex = threading.Lock()
        self._ready_locks: dict[str, threading.Lock] = {}

    def mark_changed(self, address: str) -> None:
        """Record that *address*'s outputs changed during this run."""
        with self._mutex:
            self._changed.add(address)

    def any_changed(self, addresses: list[str]) -> bool:
        with self._mutex:
            return any(a in self._changed for a in addresses)

    def _ready_lock(self, address: str) -> threading.Lock:
        with self._mutex:
            return self._ready_locks.setdefault(address, threading.Lock())

    def await_output(self, r: Reference) -> Any:
        """Return a recorded output, waiting for the owner's readiness if needed."""
        inst = self.store.get(r.address)
        if inst is None or not inst.exists:
            raise ProviderError(f"{r.address} has not been applied")
        value = lookup_output(inst.outputs, r.output)
        if value is not UNKNOWN:
            return value

        with self._ready_lock(r.address):
            inst = self.store.get(r.address)
            assert inst is not None and inst.external_id is not None
            value = lookup_output(inst.outputs, r.output)
            if value is not UNKNOWN:
                return value

            logger.info("Waiting for %s to become ready (output %s)", r.address, r.output)
            provider = self.registry.get(inst.kind)
            ctx = ProviderContext(address=inst.address, kind=inst.kind)
            outputs = provider.wait_ready(ctx, inst.external_id, self.readiness_timeout)
            inst.outputs = {**inst.outputs, **outputs}
            inst.updated_at = datetime.now(UTC)
            self.store.put(inst.address, inst)
            inst = self.store.get(r.address)
            assert inst is not None

        value = lookup_output(inst.outputs, r.output)
        if value is UNKNOWN:
            raise ProviderError(f"{r.address} is ready but did not report output '{r.output}'")
        return value

    def resolve(self, spec: ResourceSpec) -> dict[str, Any]:
        """Substitute references with outputs recorded so far."""
        return resolve_references(spec.attributes, self.await_output)


class Operation(Protocol):
    key: str
    deps: list[str]
    change: ResourceChange | None

    def run(self, ctx: ExecutionContext) -> ActionStatus | None:
        """Execute this operation.

        Returns:
            The status to report for ``change``, or ``None`` when this node
            reports nothing on its own (barriers, first half of a replacement).
        """


def _desired_spec(change: ResourceChange) -> ResourceSpec:
    if change.desired is None:
        raise ValueError(f"Missing desired config for {change.action.value}: {change.address}")

    spec = ResourceSpec.model_validate(change.desired)
    if spec.address != change.address:
        raise ValueError(f"Desired address mismatch: {change.address} != {spec.address}")
    return spec


def _provider_ctx(change: ResourceChange) -> ProviderContext:
    return ProviderContext(address=change.address, kind=change.kind)


def _update_in_place(
    ctx: ExecutionContext,
    change: ResourceChange,
    prior: ResourceState,
    attrs: dict[str, Any],
) -> None:
    assert prior.external_id is not None
    provider = ctx.registry.get(change.kind)
    try:
        outputs = provider.update(_provider_ctx(change), prior.external_id, attrs)
    except ResourceNotFoundError as e:
        raise ConflictError(change.address, f"expected {prior.external_id} to exist: {e}") from e
    except Exception:
        prior.status = ResourceStatus.FAILED
        prior.updated_at = datetime.now(UTC)
        ctx.store.put(change.address, prior)
        raise

    new_outputs = to_jsonable_python({**prior.outputs, **outputs})
    if new_outputs != prior.outputs:
        ctx.mark_changed(change.address)
    prior.attributes = attrs
    prior.attributes_hash = compute_attributes_hash(attrs)
    prior.outputs = new_outputs
    prior.dependencies = list(change.dependencies)
    prior.status = ResourceStatus.APPLIED
    prior.updated_at = datetime.now(UTC)
    ctx.store.put(change.address, prior)


@dataclass
class BarrierOperation:
    """A no-op node used to enforce ordering between operation phases."""

    key: str
    deps: list[str] = field(default_factory=list)
    change: ResourceChange | None = None

    def run(self, ctx: ExecutionContext) -> ActionStatus | None:
        _ = ctx
        return None


@dataclass
class CreateOperation:
    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)

    def run(self, ctx: ExecutionContext) -> ActionStatus | None:
        assert self.change is not None
        change = self.change
        provider = ctx.registry.get(change.kind)
        spec = _desired_spec(change)
        attrs = ctx.resolve(spec)

        now = datetime.now(UTC)
        inst = ResourceState(
            address=change.address,
            kind=spec.kind,
            name=spec.name,
            attributes=attrs,
            attributes_hash=compute_attributes_hash(attrs),
            dependencies=list(change.dependencies),
            status=ResourceStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        # Write-ahead: a crash during create leaves a pending entry, not nothing.
        ctx.store.put(change.address, inst)
        try:
            result = provider.create(_provider_ctx(change), attrs)
        except ResourceExistsError as e:
            ctx.store.remove(change.address)
            raise ConflictError(change.address, f"already exists: {e}") from e
        except Exception:
            ctx.store.remove(change.address)
            raise

        inst.external_id = result.external_id
        inst.outputs = dict(result.outputs)
        inst.status = ResourceStatus.APPLIED
        inst.updated_at = datetime.now(UTC)
        ctx.store.put(change.address, inst)
        ctx.mark_changed(change.address)
        return ActionStatus.APPLIED


@dataclass
class UpdateOperation:
    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)

    def run(self, ctx: ExecutionContext) -> ActionStatus | None:
        assert self.change is not None
        prior = ctx.store.get(self.change.address)
        if prior is None or not prior.exists:
            raise ConflictError(self.change.address, "missing from state; re-run plan")
        attrs = ctx.resolve(_desired_spec(self.change))
        _update_in_place(ctx, self.change, prior, attrs)
        return ActionStatus.APPLIED


@dataclass
class DestroyOperation:
    """Delete a resource; also the first half of a replacement."""

    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)
    replacing: bool = False

    def run(self, ctx: ExecutionContext) -> ActionStatus | None:
        assert self.change is not None
        address = self.change.address
        prior = ctx.store.get(address)
        if prior is None:
            raise ConflictError(address, "missing from state; re-run plan")

        if prior.external_id is not None:
            provider = ctx.registry.get(prior.kind)
            try:
                provider.delete(_provider_ctx(self.change), prior.external_id)
            except ResourceNotFoundError as e:
                raise ConflictError(address, f"expected {prior.external_id} to exist: {e}") from e
        ctx.store.remove(address)
        return None if self.replacing else ActionStatus.APPLIED


@dataclass
class RecheckOperation:
    """A planned no-op that is re-checked once its dependencies have run.

    If a dependency's outputs changed during this run and the re-resolved
    attributes now differ from the last-applied ones, the resource is updated
    in place; otherwise only the recorded dependency list is kept current.
    """

    key: str
    change: ResourceChange | None
    deps: list[str] = field(default_factory=list)

    def run(self, ctx: ExecutionContext) -> ActionStatus | None:
        assert self.change is not None
        change = self.change
        prior = ctx.store.get(change.address)
        if prior is None or not prior.exists:
            raise ConflictError(change.address, "missing from state; re-run plan")

        if ctx.any_changed(change.dependencies):
            attrs = ctx.resolve(_desired_spec(change))
            if attribute_diff(attrs, prior.attributes):
                logger.info("%s: dependency outputs changed, updating in place", change.address)
                _update_in_place(ctx, change, prior, attrs)
                return ActionStatus.APPLIED

        if sorted(prior.dependencies) != sorted(change.dependencies):
            prior.dependencies = list(change.dependencies)
            ctx.store.put(change.address, prior)
        return ActionStatus.NOOP


def result_action(change: ResourceChange, status: ActionStatus) -> Action:
    """Action to report: a promoted no-op is reported as an update."""
    if change.action == Action.NOOP and status == ActionStatus.APPLIED:
        return Action.UPDATE
    return change.action
