"""State stores: the durable record the executor writes after every action."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from infra_provisioner.core.state import ResourceState, State

logger = logging.getLogger(__name__)


class StateStore(ABC):
    """Keyed access to a :class:`State` document.

    Every ``put``/``remove`` bumps the serial and persists the whole document
    before returning, so a crash between two actions leaves the store holding
    exactly the actions that completed.  The in-memory document only changes
    once the write has succeeded.  Writes are serialized with a mutex so
    concurrent executor workers never interleave a persist.
    """

    def __init__(self, state: State | None = None) -> None:
        self._state = state if state is not None else State()
        self._mutex = threading.RLock()

    @property
    def lineage(self) -> str:
        return self._state.lineage

    @property
    def serial(self) -> int:
        return self._state.serial

    def get(self, address: str) -> ResourceState | None:
        with self._mutex:
            inst = self._state.resources.get(address)
            return inst.model_copy(deep=True) if inst is not None else None

    def put(self, address: str, resource: ResourceState) -> None:
        if resource.address != address:
            raise ValueError(f"Address mismatch: {address} != {resource.address}")
        # Keep exactly what a reload from disk would give back.
        stored = ResourceState.model_validate(resource.model_dump(mode="json"))
        with self._mutex:
            state = self._state.model_copy(deep=True)
            state.resources[address] = stored
            self._commit(state)

    def remove(self, address: str) -> None:
        with self._mutex:
            if address not in self._state.resources:
                return
            state = self._state.model_copy(deep=True)
            del state.resources[address]
            self._commit(state)

    def snapshot(self) -> State:
        """Deep copy of the current document."""
        with self._mutex:
            return self._state.model_copy(deep=True)

    def addresses(self) -> list[str]:
        with self._mutex:
            return sorted(self._state.resources)

    def reload(self) -> None:
        """Re-read the backing medium (no-op for in-memory stores)."""

    def _commit(self, state: State) -> None:
        """Persist *state* with the next serial, then make it current."""
        state.serial += 1
        self._persist(state)
        self._state = state

    @abstractmethod
    def _persist(self, state: State) -> None: ...


class MemoryStateStore(StateStore):
    """Process-local store; useful for tests and embedding."""

    def _persist(self, state: State) -> None:
        _ = state


class LocalStateStore(StateStore):
    """JSON state file on local disk, written atomically."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        super().__init__(State.load_or_create(self._path))

    @property
    def path(self) -> Path:
        return self._path

    def reload(self) -> None:
        with self._mutex:
            self._state = State.load_or_create(self._path)
            logger.debug(
                "State loaded: serial=%d, %d resources",
                self._state.serial,
                len(self._state.resources),
            )

    def _persist(self, state: State) -> None:
        state.save(self._path)
