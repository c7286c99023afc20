"""Built-in providers."""

from infra_provisioner.providers.memory import CloudObject, InMemoryCloud, InMemoryProvider

__all__ = ["CloudObject", "InMemoryCloud", "InMemoryProvider"]
