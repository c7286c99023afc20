"""Graph, scheduling, reconciliation and execution for resource provisioning."""

from infra_provisioner.engine.engine import ProvisioningEngine
from infra_provisioner.engine.errors import (
    ApplyCanceled,
    ApplyError,
    ConfigurationError,
    ConflictError,
    CycleError,
    DuplicateAddressError,
    EngineError,
    ProviderError,
    ReadinessTimeoutError,
    ResourceExistsError,
    ResourceNotFoundError,
    StalePlanError,
    StateLockError,
    UnknownResourceKindError,
    UnresolvedReferenceError,
    ValidationError,
)
from infra_provisioner.engine.executor import Executor, ProgressCallback
from infra_provisioner.engine.graph import DependencyGraph, build_dependency_graph
from infra_provisioner.engine.providers import (
    ProviderContext,
    ProvisionResult,
    ReadResult,
    ResourceProvider,
)
from infra_provisioner.engine.registry import ProviderRegistry
from infra_provisioner.engine.scheduler import Schedule, schedule, schedule_specs
from infra_provisioner.engine.types import (
    Action,
    ActionResult,
    ActionStatus,
    ApplyResult,
    Plan,
    PlanMetadata,
    ResourceChange,
)

__all__ = [
    "Action",
    "ActionResult",
    "ActionStatus",
    "ApplyCanceled",
    "ApplyError",
    "ApplyResult",
    "ConfigurationError",
    "ConflictError",
    "CycleError",
    "DependencyGraph",
    "DuplicateAddressError",
    "EngineError",
    "Executor",
    "Plan",
    "PlanMetadata",
    "ProgressCallback",
    "ProviderContext",
    "ProviderError",
    "ProviderRegistry",
    "ProvisionResult",
    "ProvisioningEngine",
    "ReadResult",
    "ReadinessTimeoutError",
    "ResourceChange",
    "ResourceExistsError",
    "ResourceNotFoundError",
    "ResourceProvider",
    "Schedule",
    "StalePlanError",
    "StateLockError",
    "UnknownResourceKindError",
    "UnresolvedReferenceError",
    "ValidationError",
    "build_dependency_graph",
    "schedule",
    "schedule_specs",
]
