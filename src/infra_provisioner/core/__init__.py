"""Core infrastructure components for infra-provisioner."""

from infra_provisioner.core.provider import ProviderSettings
from infra_provisioner.core.state import ResourceState, ResourceStatus, State
from infra_provisioner.core.store import LocalStateStore, MemoryStateStore, StateStore

__all__ = [
    "LocalStateStore",
    "MemoryStateStore",
    "ProviderSettings",
    "ResourceState",
    "ResourceStatus",
    "State",
    "StateStore",
]
