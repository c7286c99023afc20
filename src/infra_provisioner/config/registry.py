"""Provider registry factories, selected by ``provider.backend``."""

from __future__ import annotations

import importlib
import importlib.metadata
import importlib.util
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from infra_provisioner.config.schema import MemoryKindOptions
from infra_provisioner.engine.registry import ProviderRegistry
from infra_provisioner.providers.memory import InMemoryCloud, InMemoryProvider

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from types import ModuleType

    from infra_provisioner.core.provider import ProviderSettings

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "infra_provisioner.backends"


class BackendError(Exception):
    """Raised when a provider backend cannot be resolved or built."""


def memory_registry(
    settings: ProviderSettings, kinds: Iterable[str], config_dir: Path = Path()
) -> ProviderRegistry:
    """Register an :class:`InMemoryProvider` for every kind in *kinds*.

    ``settings.options`` may hold ``path`` (a JSON file that persists the
    simulated cloud between runs) and ``kinds`` (per-kind
    :class:`MemoryKindOptions`).
    """
    options = dict(settings.options)
    path = options.get("path")
    cloud_path = None
    if path is not None:
        cloud_path = Path(path) if Path(path).is_absolute() else config_dir / path
    cloud = InMemoryCloud(cloud_path)

    per_kind: dict[str, Any] = options.get("kinds") or {}
    registry = ProviderRegistry()
    for kind in sorted(set(kinds) | set(per_kind)):
        try:
            opts = MemoryKindOptions.model_validate(per_kind.get(kind) or {})
        except ValidationError as exc:
            raise BackendError(f"Invalid memory options for kind '{kind}': {exc}") from exc
        registry.register(
            kind,
            InMemoryProvider(
                cloud,
                settings,
                force_new=opts.force_new,
                deferred_outputs=opts.deferred_outputs,
                ready_after=opts.ready_after,
                required=opts.required,
            ),
        )
    return registry


def _load_local_module(module_path: str, config_dir: Path) -> ModuleType:
    """Load a Python module from a file relative to *config_dir*."""
    parts = module_path.split(".")
    candidates = [
        config_dir / Path(*parts).with_suffix(".py"),
        config_dir / Path(*parts) / "__init__.py",
    ]
    file_path = next((p for p in candidates if p.exists()), None)
    if file_path is None:
        raise BackendError(f"Module '{module_path}' not found relative to {config_dir}")

    spec = importlib.util.spec_from_file_location(module_path, file_path)
    if spec is None or spec.loader is None:
        raise BackendError(f"Failed to create module spec for '{file_path}'")
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)
    return mod


def _resolve_factory(backend: str, config_dir: Path) -> Callable[..., Any]:
    """Resolve a *backend* string to a registry factory.

    Resolution order:

    1. No ``:``: entry-point lookup (group ``infra_provisioner.backends``).
    2. Has ``:``: split into ``module_path:function_name``.
       a. Try ``importlib.import_module`` (installed packages).
       b. Fall back to ``spec_from_file_location`` (local files relative to *config_dir*).
    """
    if ":" not in backend:
        eps = list(importlib.metadata.entry_points(group=ENTRY_POINT_GROUP, name=backend))
        if not eps:
            raise BackendError(
                f"Unknown provider backend '{backend}' "
                f"(no entry point in group '{ENTRY_POINT_GROUP}')"
            )
        return eps[0].load()

    module_path, _, function_name = backend.rpartition(":")
    if not module_path or not function_name:
        raise BackendError(
            f"Invalid backend syntax '{backend}': expected 'module.path:function_name'"
        )

    try:
        mod = importlib.import_module(module_path)
    except ModuleNotFoundError:
        mod = _load_local_module(module_path, config_dir)

    fn = getattr(mod, function_name, None)
    if not callable(fn):
        raise BackendError(f"'{backend}' is not a callable attribute")
    return fn


def build_registry(
    settings: ProviderSettings, kinds: Iterable[str], config_dir: Path = Path()
) -> ProviderRegistry:
    """Build the provider registry for *settings.backend*.

    Plugin factories are called as ``factory(settings=..., kinds=...)`` and
    must return a :class:`ProviderRegistry`.
    """
    kinds = sorted(set(kinds))
    if settings.backend == "memory":
        logger.debug("Using in-memory backend for kinds: %s", ", ".join(kinds))
        return memory_registry(settings, kinds, config_dir)

    factory = _resolve_factory(settings.backend, config_dir)
    try:
        registry = factory(settings=settings, kinds=kinds)
    except BackendError:
        raise
    except Exception as exc:
        raise BackendError(
            f"Backend '{settings.backend}' raised {type(exc).__name__}: {exc}"
        ) from exc

    if not isinstance(registry, ProviderRegistry):
        raise BackendError(f"Backend '{settings.backend}' must return a ProviderRegistry")
    logger.debug("Using backend %s for kinds: %s", settings.backend, ", ".join(registry.kinds()))
    return registry
