"""Engine error types."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from infra_provisioner.engine.types import ActionResult


class EngineError(Exception):
    """Base exception for engine errors."""


# ── Configuration-time errors (nothing attempted) ──────────────────


class ConfigurationError(EngineError):
    """Fatal problem with the desired resource set, detected before provisioning."""


class UnknownResourceKindError(ConfigurationError):
    """Raised when a resource kind has no registered provider."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"Unknown resource kind: {kind}")
        self.kind = kind


class DuplicateAddressError(ConfigurationError):
    """Raised when multiple desired resources share the same address."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Duplicate resource address: {address}")
        self.address = address


class UnresolvedReferenceError(ConfigurationError):
    """Raised when a reference or dependency names an address outside the plan."""

    def __init__(self, address: str, target: str) -> None:
        super().__init__(f"Resource '{address}' references unknown address '{target}'")
        self.address = address
        self.target = target


class CycleError(ConfigurationError):
    """Raised when dependencies contain a cycle.

    ``cycle`` lists one offending cycle in edge order, with the first address
    repeated at the end (``a -> b -> a``).
    """

    def __init__(self, cycle: list[str]) -> None:
        msg = "Dependency cycle detected"
        if cycle:
            msg += f": {' -> '.join(cycle)}"
        super().__init__(msg)
        self.cycle = cycle


class ValidationError(ConfigurationError):
    """One or more resources failed provider validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        msg = "Validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


# ── Execution-time errors ───────────────────────────────────────────


class ProviderError(EngineError):
    """A provider rejected a create/read/update/delete call."""


class ReadinessTimeoutError(ProviderError):
    """A resource did not become ready within the readiness timeout."""

    def __init__(self, address: str, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:g}s waiting for {address} to become ready")
        self.address = address
        self.timeout = timeout


class ConflictError(EngineError):
    """Recorded state disagrees with the provider (drift); never auto-resolved."""

    def __init__(self, address: str, message: str) -> None:
        super().__init__(f"Conflict on {address}: {message}")
        self.address = address


class StalePlanError(EngineError):
    """Raised when applying a plan against a different state than planned."""


class StateLockError(EngineError):
    """Raised when the state lock cannot be acquired or released."""


class ApplyError(EngineError):
    """Raised when an apply fails mid-way through.

    Carries every per-action result (what completed before the failure plus
    the single failed action) so callers can report how far the run got.  The
    original exception is chained via ``__cause__``.
    """

    def __init__(self, *, results: list[ActionResult], address: str, message: str) -> None:
        self.results = results
        self.address = address
        self.reason = message
        super().__init__(f"Apply failed on {address}: {message}")


class ApplyCanceled(EngineError):
    """Raised when an apply is canceled between operations (e.g., Ctrl-C)."""

    def __init__(self, results: list[ActionResult] | None = None) -> None:
        super().__init__("Apply canceled")
        self.results = list(results or [])


# ── Signals raised by providers ─────────────────────────────────────


class ResourceNotFoundError(ProviderError):
    """The provider has no object for an id the engine expects to exist."""


class ResourceExistsError(ProviderError):
    """The provider already holds an object the engine expects to be absent."""
