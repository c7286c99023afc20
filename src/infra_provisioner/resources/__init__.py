"""Resource model: desired-state specs and cross-resource references."""

from infra_provisioner.resources.refs import UNKNOWN, Reference, find_references, ref
from infra_provisioner.resources.spec import ResourceSpec

__all__ = ["UNKNOWN", "Reference", "ResourceSpec", "find_references", "ref"]
