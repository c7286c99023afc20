"""State document for tracking provisioned resources."""

import contextlib
import hashlib
import json
import logging
import os
import tempfile
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


def write_atomic(path: Path, content: str) -> None:
    """Replace *path* with *content* via temp file + fsync + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    tmp_file = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        tmp_file.replace(path)
    finally:
        with contextlib.suppress(FileNotFoundError):
            tmp_file.unlink()


def _canonical_json(obj: Any) -> str:
    # Stable encoding for hashes/digests. `default=str` keeps it robust for
    # datetimes/paths/etc while staying deterministic enough for our use.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def compute_attributes_hash(attrs: Mapping[str, Any]) -> str:
    """Compute a stable hash for a resource's stored attributes."""
    payload = _canonical_json(attrs)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ResourceStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    FAILED = "failed"
    DESTROYED = "destroyed"


class ResourceState(BaseModel):
    """A provisioned resource as recorded in the state file.

    Attributes:
        address: Unique resource address (e.g., "cluster.main")
        kind: Resource kind (e.g., "cluster")
        name: Resource name (e.g., "main")
        external_id: Identifier assigned by the provider, ``None`` while pending
        attributes: Last-applied attribute values (references substituted)
        outputs: Values reported by the provider (ids, ARNs, endpoints, ...)
        attributes_hash: SHA256 of ``attributes`` for change detection
        dependencies: Addresses this resource depended on when last applied
        status: Lifecycle tag
        created_at: When the resource was created
        updated_at: When the resource was last written
    """

    address: str
    kind: str
    name: str
    external_id: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)
    attributes_hash: str = ""
    dependencies: list[str] = Field(default_factory=list)
    status: ResourceStatus = ResourceStatus.APPLIED
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def exists(self) -> bool:
        """True when the provider holds a live object for this entry."""
        return self.external_id is not None and self.status != ResourceStatus.DESTROYED


class State(BaseModel):
    """Terraform-style state document.

    Attributes:
        version: State file format version
        serial: Incremented on every persisted write
        lineage: Random id fixed at creation; identifies this state's history
        resources: Mapping of resource addresses to recorded state
    """

    version: int = 1
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    resources: dict[str, ResourceState] = Field(default_factory=dict)

    def save(self, path: Path) -> None:
        """Save state to a JSON file.

        - Writes atomically (temp file + fsync + rename)
        - Writes a `.backup` copy of the previous state when overwriting
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        backup_path = Path(str(path) + ".backup")
        # Avoid TOCTOU race between exists() and read_bytes().
        with contextlib.suppress(FileNotFoundError):
            backup_path.write_bytes(path.read_bytes())

        data = self.model_dump(mode="json")
        write_atomic(path, json.dumps(data, indent=2, sort_keys=True) + "\n")
        logger.debug("State saved: serial=%d path=%s", self.serial, path)

    @classmethod
    def load(cls, path: Path) -> "State":
        """Load state from a JSON file."""
        state = cls.model_validate_json(path.read_text(encoding="utf-8"))
        logger.debug("State loaded from %s", path)
        return state

    @classmethod
    def load_or_create(cls, path: Path) -> "State":
        """Load existing state or create a new one."""
        if path.exists():
            return cls.load(path)
        logger.debug("No state at %s, starting empty", path)
        return cls()


def compute_state_digest(state: State) -> str:
    """Compute a stable digest of state content (excluding timestamps).

    Used for stale-plan detection; `created_at`/`updated_at` do not force a
    re-plan.
    """
    resources = []
    for address, inst in sorted(state.resources.items(), key=lambda kv: kv[0]):
        resources.append(
            {
                "address": address,
                "kind": inst.kind,
                "external_id": inst.external_id,
                "status": inst.status.value,
                "attributes_hash": inst.attributes_hash,
                "outputs_hash": compute_attributes_hash(inst.outputs),
                "dependencies": sorted(inst.dependencies),
            }
        )

    digestable = {
        "version": state.version,
        "lineage": state.lineage,
        "serial": state.serial,
        "resources": resources,
    }
    payload = _canonical_json(digestable)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
