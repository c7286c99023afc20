"""Shared fixtures for unit tests."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from infra_provisioner.config import load
from infra_provisioner.core.store import LocalStateStore
from infra_provisioner.engine import ProviderRegistry, ProvisioningEngine
from infra_provisioner.providers import InMemoryCloud, InMemoryProvider
from infra_provisioner.resources import ResourceSpec

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from infra_provisioner.config.schema import Config
    from infra_provisioner.core.store import StateStore

_INFRA_ENV_VARS = (
    "INFRA_BACKEND",
    "INFRA_REGION",
    "INFRA_PROFILE",
    "INFRA_ACCESS_KEY",
    "INFRA_SECRET_KEY",
    "INFRA_OPTIONS",
    "INFRA_LOG",
)

# Cluster outputs its issuer only once ready; the add-on consumes it.
TOPOLOGY_KINDS: dict[str, dict[str, Any]] = {
    "network": {},
    "role": {},
    "cluster": {
        "ready_after": 2,
        "deferred_outputs": {"oidc_issuer": "https://oidc.{region}.example.com/id/{id}"},
    },
    "addon": {},
}


@pytest.fixture(autouse=True)
def _clean_infra_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove INFRA_* env vars so unit tests don't leak host config."""
    for var in _INFRA_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Factory fixture: write YAML + optional .env, return loaded Config."""

    def _make(yaml_str: str, *, dotenv: str | None = None) -> Config:
        (tmp_path / "config.yaml").write_text(yaml_str)
        if dotenv is not None:
            (tmp_path / ".env").write_text(dotenv)
        return load(tmp_path / "config.yaml")

    return _make


@pytest.fixture
def cloud() -> InMemoryCloud:
    return InMemoryCloud()


@pytest.fixture
def make_engine(tmp_path: Path, cloud: InMemoryCloud) -> Callable[..., ProvisioningEngine]:
    """Factory fixture: engine over the shared in-memory cloud and a state file.

    *kinds* maps each kind to ``InMemoryProvider`` keyword options (or to a
    ready-made provider instance).
    """

    def _make(
        kinds: dict[str, Any] | None = None,
        *,
        store: StateStore | None = None,
        readiness_timeout: float = 5.0,
        parallelism: int = 1,
    ) -> ProvisioningEngine:
        registry = ProviderRegistry()
        for kind, opts in (kinds if kinds is not None else TOPOLOGY_KINDS).items():
            if isinstance(opts, InMemoryProvider):
                provider = opts
            else:
                provider = InMemoryProvider(cloud, **opts)
            registry.register(kind, provider)
        return ProvisioningEngine(
            registry=registry,
            store=store if store is not None else LocalStateStore(tmp_path / "state.json"),
            readiness_timeout=readiness_timeout,
            parallelism=parallelism,
        )

    return _make


def topology(cidr: str = "10.0.0.0/16") -> list[ResourceSpec]:
    return [
        ResourceSpec(kind="network", name="main", attributes={"cidr": cidr}),
        ResourceSpec(kind="role", name="cluster", attributes={"policy": "eks-cluster"}),
        ResourceSpec(
            kind="cluster",
            name="main",
            attributes={
                "version": "1.29",
                "subnet": "${network.main.id}",
                "role_arn": "${role.cluster.arn}",
            },
        ),
        ResourceSpec(
            kind="addon",
            name="x",
            attributes={"issuer": "${cluster.main.oidc_issuer}", "mode": "default"},
        ),
    ]


@pytest.fixture
def make_topology() -> Callable[..., list[ResourceSpec]]:
    """Network, Role, Cluster (consumes both) and AddonX (consumes the cluster issuer)."""
    return topology


@pytest.fixture
def make_kinds() -> Callable[..., dict[str, dict[str, Any]]]:
    """Factory fixture: topology provider options with per-kind overrides."""

    def _make(**overrides: dict[str, Any]) -> dict[str, dict[str, Any]]:
        kinds = {k: dict(v) for k, v in TOPOLOGY_KINDS.items()}
        for kind, opts in overrides.items():
            kinds[kind].update(opts)
        return kinds

    return _make
