from __future__ import annotations

from datetime import date

import pytest
from pydantic import ValidationError

from infra_provisioner.resources import ResourceSpec


def test_address() -> None:
    spec = ResourceSpec(kind="network", name="main")
    assert spec.address == "network.main"


@pytest.mark.parametrize(
    ("kind", "name"),
    [("Network", "main"), ("1net", "main"), ("network", "has space"), ("network", "a.b")],
)
def test_invalid_identity_rejected(kind: str, name: str) -> None:
    with pytest.raises(ValidationError):
        ResourceSpec(kind=kind, name=name)


def test_extra_fields_forbidden() -> None:
    with pytest.raises(ValidationError):
        ResourceSpec.model_validate({"kind": "network", "name": "main", "cidr": "10.0.0.0/8"})


def test_depends_on_must_be_addresses() -> None:
    with pytest.raises(ValidationError, match="Invalid resource address"):
        ResourceSpec(kind="cluster", name="main", depends_on=["network"])


def test_dependency_addresses_explicit_then_references() -> None:
    spec = ResourceSpec(
        kind="cluster",
        name="main",
        attributes={"role_arn": "${role.cluster.arn}", "subnet": "${network.main.id}"},
        depends_on=["network.main", "network.main", "log_group.main"],
    )
    assert spec.dependency_addresses() == ["network.main", "log_group.main", "role.cluster"]


def test_model_dump_roundtrip_keeps_address() -> None:
    spec = ResourceSpec(kind="addon", name="x", attributes={"issuer": "${cluster.main.oidc}"})
    dumped = spec.model_dump(exclude={"address"})
    assert ResourceSpec.model_validate(dumped) == spec


def test_attributes_take_their_json_form() -> None:
    spec = ResourceSpec(
        kind="security_group",
        name="web",
        attributes={
            "ports": {80: "allow", 443: "allow"},
            "expires": date(2025, 1, 1),
            "zones": ("a", "b"),
        },
    )
    assert spec.attributes == {
        "ports": {"80": "allow", "443": "allow"},
        "expires": "2025-01-01",
        "zones": ["a", "b"],
    }


def test_attributes_must_be_json_compatible() -> None:
    with pytest.raises(ValidationError, match="JSON-compatible"):
        ResourceSpec(kind="network", name="main", attributes={"handle": object()})
