"""Plan execution: operation graph, fail-fast walk, optional sibling parallelism."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Literal

from infra_provisioner.engine.errors import ApplyCanceled, ApplyError
from infra_provisioner.engine.graph import DependencyGraph
from infra_provisioner.engine.operations import (
    BarrierOperation,
    CreateOperation,
    DestroyOperation,
    ExecutionContext,
    RecheckOperation,
    UpdateOperation,
    result_action,
)
from infra_provisioner.engine.readiness import DEFAULT_READINESS_TIMEOUT
from infra_provisioner.engine.types import Action, ActionResult, ActionStatus, ResourceChange

if TYPE_CHECKING:
    from infra_provisioner.core.state import State
    from infra_provisioner.core.store import StateStore
    from infra_provisioner.engine.operations import Operation
    from infra_provisioner.engine.registry import ProviderRegistry
    from infra_provisioner.engine.types import Plan

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ResourceChange, Literal["start", "done"]], None]

BARRIER_KEY = "__engine__.apply_barrier"


def _destroy_key(address: str) -> str:
    return f"{address}:destroy"


def build_operations(plan: Plan, state: State) -> dict[str, Operation]:
    """Turn plan changes into an operation graph keyed by operation key."""
    ops: dict[str, Operation] = {}
    forward: set[str] = set()
    deletes: set[str] = set()
    replaced: set[str] = set()

    for c in plan.changes:
        match c.action:
            case Action.NOOP:
                ops[c.address] = RecheckOperation(key=c.address, change=c)
                forward.add(c.address)
            case Action.CREATE:
                ops[c.address] = CreateOperation(key=c.address, change=c)
                forward.add(c.address)
            case Action.UPDATE if c.replace:
                destroy_key = _destroy_key(c.address)
                ops[destroy_key] = DestroyOperation(key=destroy_key, change=c, replacing=True)
                ops[c.address] = CreateOperation(key=c.address, change=c, deps=[destroy_key])
                forward.add(c.address)
                replaced.add(c.address)
            case Action.UPDATE:
                ops[c.address] = UpdateOperation(key=c.address, change=c)
                forward.add(c.address)
            case Action.DELETE:
                ops[c.address] = DestroyOperation(key=c.address, change=c)
                deletes.add(c.address)
            case _:
                raise ValueError(f"Unknown action: {c.action}")

    if len(ops) != len(plan.changes) + len(replaced):
        raise ValueError("Duplicate address in plan")

    # create/update: dependencies must run before dependents
    for address in forward:
        op = ops[address]
        assert op.change is not None
        op.deps.extend(d for d in op.change.dependencies if d in forward)

    # destroys: dependents must go before dependencies (invert recorded edges)
    destroying = {a: a for a in deletes} | {a: _destroy_key(a) for a in replaced}
    for address, key in destroying.items():
        inst = state.resources.get(address)
        if inst is None:
            raise ValueError(f"Missing state for destroy operation: {address}")
        for dep in inst.dependencies:
            if dep in destroying:
                ops[destroying[dep]].deps.append(key)

    # Deletes that must precede a replacement's destroy cannot wait for the barrier.
    early: set[str] = set()
    if replaced:
        dep_graph = DependencyGraph(
            destroying, {a: state.resources[a].dependencies for a in destroying}
        )
        for address in replaced:
            early |= dep_graph.transitive_dependents(address) & deletes

    # Ensure create/update runs before the remaining deletes (Terraform-like default ordering).
    late = deletes - early
    if forward and late:
        if BARRIER_KEY in ops:
            raise ValueError(f"Barrier operation key conflicts with plan: {BARRIER_KEY}")
        ops[BARRIER_KEY] = BarrierOperation(key=BARRIER_KEY, deps=sorted(forward))
        for address in late:
            ops[address].deps.append(BARRIER_KEY)

    return ops


def operation_priorities(plan: Plan, ops: dict[str, Operation]) -> dict[str, int]:
    """Plan position of each operation's change; ties between ready operations follow it."""
    position = {c.address: i for i, c in enumerate(plan.changes)}
    return {
        k: position[op.change.address] if op.change is not None else len(position)
        for k, op in ops.items()
    }


def operation_order(
    ops: dict[str, Operation], priorities: dict[str, int] | None = None
) -> list[Operation]:
    """Deterministic sequential order of an operation graph."""
    graph = DependencyGraph(ops.keys(), {k: op.deps for k, op in ops.items()}, priorities)
    return [ops[k] for k in graph.topological_order()]


class Executor:
    """Walk a plan's operations, persisting state after every completed action.

    The walk is fail-fast: the first failing action stops the run and
    :class:`ApplyError` names it.  ``cancel()`` stops the walk before the next
    operation starts; an operation in flight always completes.
    """

    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        store: StateStore,
        readiness_timeout: float = DEFAULT_READINESS_TIMEOUT,
        parallelism: int = 1,
        progress: ProgressCallback | None = None,
    ) -> None:
        if parallelism < 1:
            raise ValueError("parallelism must be >= 1")
        self._registry = registry
        self._store = store
        self._readiness_timeout = readiness_timeout
        self._parallelism = parallelism
        self._progress = progress
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Request the walk to stop before the next operation."""
        self._cancel.set()

    def execute(self, plan: Plan) -> list[ActionResult]:
        ops = build_operations(plan, self._store.snapshot())
        priorities = operation_priorities(plan, ops)
        ctx = ExecutionContext(
            registry=self._registry,
            store=self._store,
            readiness_timeout=self._readiness_timeout,
        )
        logger.info("Applying %d operations (parallelism=%d)", len(ops), self._parallelism)
        results: list[ActionResult] = []
        try:
            if self._parallelism == 1:
                self._run_sequential(ops, priorities, ctx, results)
            else:
                self._run_parallel(ops, priorities, ctx, results)
        except KeyboardInterrupt as e:  # pragma: no cover
            raise ApplyCanceled(results) from e
        return results

    def _start(self, op: Operation) -> None:
        logger.debug("Applying %s: %s", op.key, type(op).__name__)
        if self._progress and op.change is not None and op.change.action != Action.NOOP:
            self._progress(op.change, "start")

    def _finish(
        self, op: Operation, status: ActionStatus | None, results: list[ActionResult]
    ) -> None:
        if status is None or op.change is None:
            return
        results.append(
            ActionResult(
                address=op.change.address,
                action=result_action(op.change, status),
                status=status,
                replace=op.change.replace,
            )
        )
        if self._progress and status == ActionStatus.APPLIED:
            self._progress(op.change, "done")

    @staticmethod
    def _fail(op: Operation, exc: Exception, results: list[ActionResult]) -> ApplyError:
        address = op.change.address if op.change is not None else op.key
        action = op.change.action if op.change is not None else Action.NOOP
        logger.error("Apply failed on %s: %s", address, exc)
        results.append(
            ActionResult(
                address=address,
                action=action,
                status=ActionStatus.FAILED,
                replace=op.change.replace if op.change is not None else False,
                reason=str(exc),
            )
        )
        return ApplyError(results=results, address=address, message=str(exc))

    def _run_sequential(
        self,
        ops: dict[str, Operation],
        priorities: dict[str, int],
        ctx: ExecutionContext,
        results: list[ActionResult],
    ) -> None:
        for op in operation_order(ops, priorities):
            if self._cancel.is_set():
                raise ApplyCanceled(results)
            self._start(op)
            try:
                status = op.run(ctx)
            except Exception as e:
                raise self._fail(op, e, results) from e
            self._finish(op, status, results)

    def _run_parallel(
        self,
        ops: dict[str, Operation],
        priorities: dict[str, int],
        ctx: ExecutionContext,
        results: list[ActionResult],
    ) -> None:
        # Validates acyclicity up front.
        operation_order(ops, priorities)

        remaining = set(ops)
        done: set[str] = set()
        running: dict[Future[ActionStatus | None], Operation] = {}
        failure: tuple[Operation, Exception] | None = None

        with ThreadPoolExecutor(max_workers=self._parallelism) as pool:
            while True:
                if failure is None and not self._cancel.is_set():
                    in_flight = {op.key for op in running.values()}
                    ready = sorted(
                        (
                            k
                            for k in remaining
                            if k not in in_flight and all(d in done for d in ops[k].deps)
                        ),
                        key=lambda k: (priorities[k], k),
                    )
                    for key in ready[: self._parallelism - len(running)]:
                        op = ops[key]
                        self._start(op)
                        running[pool.submit(op.run, ctx)] = op

                if not running:
                    break

                finished, _ = wait(running, return_when=FIRST_COMPLETED)
                for fut in sorted(finished, key=lambda f: running[f].key):
                    op = running.pop(fut)
                    remaining.discard(op.key)
                    try:
                        status = fut.result()
                    except Exception as e:
                        # Report the first failure only; later ones are logged.
                        if failure is None:
                            failure = (op, e)
                        else:
                            logger.error("Also failed while draining: %s: %s", op.key, e)
                        continue
                    done.add(op.key)
                    self._finish(op, status, results)

        if failure is not None:
            op, exc = failure
            raise self._fail(op, exc, results) from exc
        if remaining:
            raise ApplyCanceled(results)
