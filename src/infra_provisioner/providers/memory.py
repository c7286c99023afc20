"""In-memory provider: a simulated cloud for dry runs and tests.

``InMemoryCloud`` holds objects keyed by a generated id.  It can persist
itself to a JSON file so that separate CLI invocations see the same
"cloud".  ``InMemoryProvider`` exposes one resource kind of that cloud
through the :class:`ResourceProvider` interface, including outputs that
only appear once the object reports ``status: ready``.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from infra_provisioner.core.state import write_atomic
from infra_provisioner.engine.errors import (
    ProviderError,
    ResourceExistsError,
    ResourceNotFoundError,
)
from infra_provisioner.engine.providers import ProvisionResult, ReadResult, ResourceProvider

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from infra_provisioner.core.provider import ProviderSettings
    from infra_provisioner.engine.providers import ProviderContext

logger = logging.getLogger(__name__)


class CloudObject(BaseModel):
    external_id: str
    kind: str
    address: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)
    deferred_outputs: dict[str, Any] = Field(default_factory=dict)
    polls_until_ready: int = 0


class _CloudDocument(BaseModel):
    next_id: int = 1
    objects: dict[str, CloudObject] = Field(default_factory=dict)


class InMemoryCloud:
    """Thread-safe object store standing in for a vendor API.

    ``failures`` maps ``(operation, kind)`` to an error message; the next
    matching call raises :class:`ProviderError` with it.  ``calls`` records
    every mutating call as ``(operation, address)``.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._lock = threading.RLock()
        self.failures: dict[tuple[str, str], str] = {}
        self.calls: list[tuple[str, str]] = []
        if self._path is not None and self._path.exists():
            self._doc = _CloudDocument.model_validate_json(self._path.read_text(encoding="utf-8"))
        else:
            self._doc = _CloudDocument()

    def _save(self) -> None:
        if self._path is None:
            return
        write_atomic(
            self._path,
            json.dumps(self._doc.model_dump(mode="json"), indent=2, sort_keys=True) + "\n",
        )

    def _check_failure(self, operation: str, kind: str) -> None:
        message = self.failures.pop((operation, kind), None)
        if message is not None:
            raise ProviderError(message)

    def objects(self, kind: str | None = None) -> list[CloudObject]:
        with self._lock:
            return [
                o.model_copy(deep=True)
                for o in self._doc.objects.values()
                if kind is None or o.kind == kind
            ]

    def get(self, external_id: str) -> CloudObject | None:
        with self._lock:
            obj = self._doc.objects.get(external_id)
            return obj.model_copy(deep=True) if obj is not None else None

    def find(self, address: str) -> CloudObject | None:
        with self._lock:
            return next((o for o in self._doc.objects.values() if o.address == address), None)

    def insert(self, obj_without_id: dict[str, Any]) -> CloudObject:
        with self._lock:
            self._check_failure("create", obj_without_id["kind"])
            if self.find(obj_without_id["address"]) is not None:
                raise ResourceExistsError(f"an object for {obj_without_id['address']} exists")
            prefix = obj_without_id["kind"].replace("_", "-")
            external_id = f"{prefix}-{self._doc.next_id:06d}"
            self._doc.next_id += 1
            obj = CloudObject(external_id=external_id, **obj_without_id)
            self._doc.objects[external_id] = obj
            self.calls.append(("create", obj.address))
            self._save()
            return obj.model_copy(deep=True)

    def modify(self, external_id: str, kind: str, attributes: dict[str, Any]) -> CloudObject:
        with self._lock:
            self._check_failure("update", kind)
            obj = self._doc.objects.get(external_id)
            if obj is None:
                raise ResourceNotFoundError(f"no object {external_id}")
            obj.attributes = dict(attributes)
            self.calls.append(("update", obj.address))
            self._save()
            return obj.model_copy(deep=True)

    def set_outputs(
        self, external_id: str, outputs: dict[str, Any], deferred: dict[str, Any]
    ) -> None:
        with self._lock:
            obj = self._doc.objects[external_id]
            obj.outputs = dict(outputs)
            obj.deferred_outputs = dict(deferred)
            self._save()

    def poll(self, external_id: str) -> CloudObject | None:
        """Read an object, advancing its readiness countdown by one poll."""
        with self._lock:
            obj = self._doc.objects.get(external_id)
            if obj is None:
                return None
            if obj.polls_until_ready > 0:
                obj.polls_until_ready -= 1
                if obj.polls_until_ready == 0:
                    obj.outputs.update(obj.deferred_outputs)
                    obj.outputs["status"] = "ready"
                self._save()
            return obj.model_copy(deep=True)

    def remove(self, external_id: str, kind: str) -> None:
        with self._lock:
            self._check_failure("delete", kind)
            obj = self._doc.objects.pop(external_id, None)
            if obj is None:
                raise ResourceNotFoundError(f"no object {external_id}")
            self.calls.append(("delete", obj.address))
            self._save()

    def vanish(self, address: str) -> None:
        """Drop an object behind the engine's back (simulates external deletion)."""
        with self._lock:
            obj = self.find(address)
            if obj is not None:
                del self._doc.objects[obj.external_id]
                self._save()


class InMemoryProvider(ResourceProvider):
    """One resource kind backed by an :class:`InMemoryCloud`.

    Args:
        cloud: Object store shared by all kinds of one registry.
        settings: Connection settings; ``region`` is embedded in ARNs.
        force_new: Attribute keys whose change requires replacement.
        deferred_outputs: Output names (mapped to attribute-derived values
            via ``"{attr}"`` templates or literals) only reported once ready.
        ready_after: Number of reads before the object reports ready.
        required: Attribute keys that must be present.
    """

    poll_interval = 0.05

    def __init__(
        self,
        cloud: InMemoryCloud,
        settings: ProviderSettings | None = None,
        *,
        force_new: Iterable[str] = (),
        deferred_outputs: Mapping[str, Any] | None = None,
        ready_after: int = 0,
        required: Iterable[str] = (),
    ) -> None:
        super().__init__(settings)
        self.cloud = cloud
        self.force_new = frozenset(force_new)
        self._deferred = dict(deferred_outputs or {})
        self._ready_after = ready_after
        self._required = list(required)

    @property
    def region(self) -> str:
        if self.settings is not None and self.settings.region:
            return self.settings.region
        return "local"

    def validate(self, attributes: Mapping[str, Any]) -> list[str]:
        errors = [
            f"missing required attribute '{k}'" for k in self._required if k not in attributes
        ]
        return errors + self._template_errors(attributes)

    def _render(self, template: Any, external_id: str, attributes: Mapping[str, Any]) -> Any:
        if isinstance(template, str):
            return template.format_map({**attributes, "id": external_id, "region": self.region})
        return template

    def _template_errors(self, attributes: Mapping[str, Any]) -> list[str]:
        errors: list[str] = []
        for name, template in self._deferred.items():
            try:
                self._render(template, "", attributes)
            except KeyError as e:
                errors.append(f"output '{name}' names unknown attribute {e}")
            except (AttributeError, IndexError, ValueError) as e:
                errors.append(f"output '{name}' has an invalid template: {e}")
        return errors

    def create(self, ctx: ProviderContext, attributes: dict[str, Any]) -> ProvisionResult:
        logger.debug("Creating %s in memory cloud", ctx.address)
        # Nothing may reach the cloud unless every output can be rendered.
        errors = self._template_errors(attributes)
        if errors:
            raise ProviderError("; ".join(errors))

        pending = self._ready_after > 0
        obj = self.cloud.insert(
            {
                "kind": ctx.kind,
                "address": ctx.address,
                "attributes": dict(attributes),
                "polls_until_ready": self._ready_after,
            }
        )
        outputs: dict[str, Any] = {
            "id": obj.external_id,
            "arn": f"arn:memory:{self.region}:{ctx.kind}/{obj.external_id}",
            "status": "creating" if pending else "ready",
        }
        deferred = {
            k: self._render(v, obj.external_id, attributes) for k, v in self._deferred.items()
        }
        if not pending:
            outputs.update(deferred)
            deferred = {}
        self.cloud.set_outputs(obj.external_id, outputs, deferred)
        return ProvisionResult(external_id=obj.external_id, outputs=outputs)

    def read(self, ctx: ProviderContext, external_id: str) -> ReadResult | None:
        _ = ctx
        obj = self.cloud.poll(external_id)
        if obj is None:
            return None
        return ReadResult(attributes=dict(obj.attributes), outputs=dict(obj.outputs))

    def update(
        self, ctx: ProviderContext, external_id: str, attributes: dict[str, Any]
    ) -> dict[str, Any]:
        logger.debug("Updating %s (%s) in memory cloud", ctx.address, external_id)
        obj = self.cloud.modify(external_id, ctx.kind, attributes)
        return dict(obj.outputs)

    def delete(self, ctx: ProviderContext, external_id: str) -> None:
        logger.debug("Deleting %s (%s) from memory cloud", ctx.address, external_id)
        self.cloud.remove(external_id, ctx.kind)

    def is_ready(self, result: ReadResult) -> bool:
        return result.outputs.get("status") == "ready"
