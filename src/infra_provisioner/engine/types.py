"""Engine types (plan, changes, metadata, results)."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from infra_provisioner.core.state import State  # noqa: TC001 — Pydantic needs this at runtime


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "no-op"


class ActionStatus(str, Enum):
    APPLIED = "applied"
    NOOP = "no-op"
    FAILED = "failed"


class PlanMetadata(BaseModel):
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    destroy: bool
    state_lineage: str
    state_serial: int
    state_digest: str
    config_digest: str
    engine_version: str


class ResourceChange(BaseModel):
    address: str
    kind: str
    action: Action
    replace: bool = False
    desired: dict[str, Any] | None = None
    prior: dict[str, Any] | None = None
    planned: dict[str, Any] | None = None
    diff: dict[str, Any] | None = None
    forces_replacement: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)

    @property
    def symbol(self) -> str:
        if self.replace:
            return "-/+"
        return {"create": "+", "update": "~", "delete": "-", "no-op": " "}[self.action.value]


class Plan(BaseModel):
    metadata: PlanMetadata
    changes: list[ResourceChange]

    @property
    def order(self) -> list[str]:
        return [c.address for c in self.changes]

    def get(self, address: str) -> ResourceChange | None:
        return next((c for c in self.changes if c.address == address), None)

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for c in self.changes:
            counts[c.action.value] += 1
        return counts

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json")
        path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> Plan:
        path = Path(path)
        return cls.model_validate_json(path.read_text(encoding="utf-8"))


class ActionResult(BaseModel):
    """Outcome of one plan entry: ``applied``, ``no-op`` or ``failed(reason)``."""

    address: str
    action: Action
    status: ActionStatus
    replace: bool = False
    reason: str | None = None

    def __str__(self) -> str:
        if self.status == ActionStatus.FAILED:
            return f"{self.address}: failed({self.reason})"
        return f"{self.address}: {self.status.value}"


class ApplyResult(BaseModel):
    plan: Plan
    results: list[ActionResult] = Field(default_factory=list)
    state: State | None = None

    @property
    def applied(self) -> list[ActionResult]:
        return [r for r in self.results if r.status == ActionStatus.APPLIED]

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for r in self.applied:
            counts[r.action.value] += 1
        return counts
