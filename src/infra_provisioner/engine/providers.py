"""Provider interface consumed by the executor."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from infra_provisioner.engine.compare import values_differ
from infra_provisioner.engine.errors import ResourceNotFoundError
from infra_provisioner.engine.readiness import DEFAULT_POLL_INTERVAL, poll_until

if TYPE_CHECKING:
    from collections.abc import Mapping

    from infra_provisioner.core.provider import ProviderSettings


@dataclass(frozen=True)
class ProviderContext:
    """Per-call context passed to providers."""

    address: str
    kind: str


@dataclass(frozen=True)
class ProvisionResult:
    external_id: str
    outputs: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ReadResult:
    attributes: dict[str, Any]
    outputs: dict[str, Any] = field(default_factory=dict)


class ResourceProvider:
    """Base class for resource providers (one instance per resource kind).

    Providers translate attribute dicts into vendor API calls.  Credentials
    and region come in through ``settings`` at construction time.  Subclass
    and override the CRUD methods; ``validate``, ``is_ready`` and
    ``force_new`` are optional.

    Providers report drift by raising :class:`ResourceNotFoundError` or
    :class:`ResourceExistsError`; any other exception is treated as a
    rejected call.  Transient retries are the provider's own business.
    """

    #: Attribute keys whose change cannot be applied in place.
    force_new: frozenset[str] = frozenset()
    poll_interval: float = DEFAULT_POLL_INTERVAL

    def __init__(self, settings: ProviderSettings | None = None) -> None:
        self.settings = settings

    def validate(self, attributes: Mapping[str, Any]) -> list[str]:
        """Static validation of desired attributes.

        Return list of error messages (empty = valid).
        """
        _ = attributes
        return []

    def create(self, ctx: ProviderContext, attributes: dict[str, Any]) -> ProvisionResult:
        """Create the resource. Return its external id and known outputs."""
        raise NotImplementedError

    def read(self, ctx: ProviderContext, external_id: str) -> ReadResult | None:
        """Read the resource. Return None if it no longer exists."""
        raise NotImplementedError

    def update(
        self, ctx: ProviderContext, external_id: str, attributes: dict[str, Any]
    ) -> dict[str, Any]:
        """Update the resource in place. Return its outputs."""
        raise NotImplementedError

    def delete(self, ctx: ProviderContext, external_id: str) -> None:
        """Delete the resource."""
        raise NotImplementedError

    def is_ready(self, result: ReadResult) -> bool:
        """Whether a read resource has reached its usable condition."""
        _ = result
        return True

    def wait_ready(self, ctx: ProviderContext, external_id: str, timeout: float) -> dict[str, Any]:
        """Poll :meth:`read` until :meth:`is_ready`; return the outputs then reported."""

        def _probe() -> dict[str, Any] | None:
            result = self.read(ctx, external_id)
            if result is None:
                raise ResourceNotFoundError(f"{ctx.address} ({external_id}) no longer exists")
            return result.outputs if self.is_ready(result) else None

        return poll_until(
            _probe, address=ctx.address, timeout=timeout, interval=self.poll_interval
        )

    def requires_replacement(self, prior: Mapping[str, Any], desired: Mapping[str, Any]) -> bool:
        """Whether moving from *prior* to *desired* needs delete-then-create."""
        return any(values_differ(desired.get(k), prior.get(k)) for k in self.force_new)
