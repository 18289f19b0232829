"""Environment context, state backend resolution and parameter store access."""

from .locator import locate_backend, resolve_backend
from .models import (
    EnvironmentContext,
    FailureRecord,
    ManagedResourceRef,
    ReconciliationOutcome,
    ResourceKind,
    StateBackendHandle,
)
from .parameter_store import ParameterStore, backend_parameter, project_parameter

__all__ = [
    "EnvironmentContext",
    "FailureRecord",
    "ManagedResourceRef",
    "ReconciliationOutcome",
    "ResourceKind",
    "StateBackendHandle",
    "ParameterStore",
    "backend_parameter",
    "project_parameter",
    "locate_backend",
    "resolve_backend",
]
