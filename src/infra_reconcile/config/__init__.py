"""Configuration management for reconciliation runs."""

from .models import (
    BackendConfig,
    DestroyConfig,
    ImportTargetConfig,
    OutputsConfig,
    ProjectConfig,
    ReconcileConfig,
    TerraformConfig,
)
from .parser import Config, ConfigValidationError

__all__ = [
    "BackendConfig",
    "DestroyConfig",
    "ImportTargetConfig",
    "OutputsConfig",
    "ProjectConfig",
    "ReconcileConfig",
    "TerraformConfig",
    "Config",
    "ConfigValidationError",
]
