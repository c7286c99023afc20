"""Configuration models for YAML-based provisioning."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PositiveInt

from infra_provisioner.core.provider import ProviderSettings
from infra_provisioner.engine.readiness import DEFAULT_READINESS_TIMEOUT
from infra_provisioner.resources.spec import (
    ResourceSpec,  # noqa: TC001 — Pydantic needs this at runtime
)


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


class MemoryKindOptions(BaseModel):
    """Per-kind behaviour of the built-in ``memory`` backend.

    Set under ``provider.options.kinds.<kind>`` in YAML.
    """

    model_config = ConfigDict(extra="forbid")

    force_new: list[str] = Field(default_factory=list)
    ready_after: int = Field(default=0, ge=0)
    deferred_outputs: dict[str, Any] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)


class Config(BaseModel):
    """Provisioning configuration, validated straight from the YAML document."""

    model_config = ConfigDict(extra="forbid")

    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    state_path: Path = Path(".infra-state.json")
    readiness_timeout: float = Field(default=DEFAULT_READINESS_TIMEOUT, gt=0)
    parallelism: PositiveInt = 1
    lock_timeout: float | None = Field(default=None, gt=0)
    resources: Annotated[list[ResourceSpec], BeforeValidator(_none_to_list)] = []
    config_dir: Path = Path()

    @property
    def resolved_state_path(self) -> Path:
        """``state_path`` interpreted relative to the config file's directory."""
        if self.state_path.is_absolute():
            return self.state_path
        return self.config_dir / self.state_path

    def kinds(self) -> set[str]:
        return {r.kind for r in self.resources}
