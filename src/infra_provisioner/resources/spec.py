"""Desired-state description of one provisionable resource."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic_core import PydanticSerializationError, to_jsonable_python

from infra_provisioner.resources.refs import Reference, find_references, parse_address


class ResourceSpec(BaseModel):
    """A resource as declared by the user.

    Specs are pure data: ``kind`` selects the provider, ``attributes`` hold
    literal values and ``${kind.name.output}`` references, and ``depends_on``
    lists addresses that must be applied first even when no output is consumed.
    """

    model_config = ConfigDict(extra="forbid")

    kind: str = Field(pattern=r"^[a-z][a-z0-9_]*$")
    name: str = Field(pattern=r"^[A-Za-z0-9_-]+$")
    attributes: dict[str, Any] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)

    @field_validator("attributes")
    @classmethod
    def _to_json_values(cls, v: dict[str, Any]) -> dict[str, Any]:
        # State holds attributes as JSON; dates, tuples and non-string keys
        # are converted up front so a reloaded state compares equal.
        try:
            return to_jsonable_python(v)
        except PydanticSerializationError as e:
            raise ValueError(f"attribute values must be JSON-compatible: {e}") from e

    @field_validator("depends_on")
    @classmethod
    def _check_addresses(cls, v: list[str]) -> list[str]:
        for address in v:
            parse_address(address)
        return v

    @computed_field  # type: ignore[prop-decorator]
    @property
    def address(self) -> str:
        """Unique address for this resource (e.g., 'network.main')."""
        return f"{self.kind}.{self.name}"

    def references(self) -> list[Reference]:
        """References found in the attribute values."""
        return find_references(self.attributes)

    def dependency_addresses(self) -> list[str]:
        """Explicit dependencies followed by referenced addresses, deduplicated."""
        deps = list(dict.fromkeys(self.depends_on))
        for r in self.references():
            if r.address not in deps:
                deps.append(r.address)
        return deps
