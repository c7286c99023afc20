"""YAML configuration loading and convenience plan/apply API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from infra_provisioner.config.loader import ConfigError, load_config
from infra_provisioner.config.registry import BackendError, build_registry
from infra_provisioner.config.schema import Config, MemoryKindOptions
from infra_provisioner.core.state import State
from infra_provisioner.core.store import LocalStateStore
from infra_provisioner.engine.engine import ProgressCallback, ProvisioningEngine

if TYPE_CHECKING:
    from pathlib import Path

    from infra_provisioner.engine.types import ApplyResult, Plan, ResourceChange

__all__ = [
    "Config",
    "ConfigError",
    "MemoryKindOptions",
    "apply",
    "destroy",
    "drift",
    "engine_from_config",
    "load",
    "load_config",
    "plan",
    "plan_and_apply",
    "refresh",
]


def load(path: Path | str) -> Config:
    """Load a YAML configuration file."""
    return load_config(path)


def engine_from_config(config: Config) -> ProvisioningEngine:
    """Build a ``ProvisioningEngine`` from a ``Config`` instance.

    Providers are registered for every kind declared in the config and every
    kind already recorded in state, so removed kinds can still be destroyed.
    """
    state_path = config.resolved_state_path
    recorded = State.load_or_create(state_path)
    kinds = config.kinds() | {inst.kind for inst in recorded.resources.values()}
    try:
        registry = build_registry(config.provider, kinds, config.config_dir)
    except BackendError as exc:
        raise ConfigError(str(exc)) from exc
    return ProvisioningEngine(
        registry=registry,
        store=LocalStateStore(state_path),
        readiness_timeout=config.readiness_timeout,
        parallelism=config.parallelism,
        lock_timeout=config.lock_timeout,
    )


def plan(config: Config, *, destroy: bool = False) -> Plan:
    """Plan changes for the given configuration."""
    engine = engine_from_config(config)
    return engine.plan(config.resources, destroy=destroy)


def apply(
    plan_obj: Plan, config: Config, *, progress: ProgressCallback | None = None
) -> ApplyResult:
    """Apply a previously computed plan."""
    engine = engine_from_config(config)
    return engine.apply_plan(plan_obj, progress=progress)


def plan_and_apply(config: Config, *, progress: ProgressCallback | None = None) -> ApplyResult:
    """Plan and apply in one step, under a single state lock."""
    engine = engine_from_config(config)
    return engine.apply(config.resources, progress=progress)


def destroy(config: Config, *, progress: ProgressCallback | None = None) -> ApplyResult:
    """Destroy every resource recorded in state, dependents first."""
    engine = engine_from_config(config)
    return engine.destroy_all(progress=progress)


def refresh(config: Config) -> list[ResourceChange]:
    """Read every recorded resource back and persist what was found."""
    engine = engine_from_config(config)
    return engine.refresh(persist=True)


def drift(config: Config) -> list[ResourceChange]:
    """Detect drift between the state file and the live provider (read-only)."""
    engine = engine_from_config(config)
    return engine.drift()
