"""Backend factory referenced by examples/custom_backend/infra-provisioner.yaml."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from infra_provisioner.engine.registry import ProviderRegistry
from infra_provisioner.providers import InMemoryCloud, InMemoryProvider

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from infra_provisioner.core.provider import ProviderSettings

ACLS = {"private", "public-read"}


class BucketProvider(InMemoryProvider):
    """Buckets must carry a known ACL; changing it recreates the bucket."""

    def validate(self, attributes: Mapping[str, Any]) -> list[str]:
        acl = attributes.get("acl")
        if acl not in ACLS:
            return [f"acl must be one of {sorted(ACLS)}, got {acl!r}"]
        return []


def registry(*, settings: ProviderSettings, kinds: Iterable[str]) -> ProviderRegistry:
    # Relative paths resolve against the working directory here.
    cloud = InMemoryCloud(settings.options.get("path"))
    reg = ProviderRegistry()
    for kind in kinds:
        if kind == "bucket":
            reg.register(kind, BucketProvider(cloud, settings, force_new=["acl"]))
        else:
            reg.register(kind, InMemoryProvider(cloud, settings))
    return reg
