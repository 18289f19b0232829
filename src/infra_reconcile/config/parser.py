"""YAML configuration parser with environment variable overrides."""

import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import yaml
from pydantic import ValidationError

from infra_reconcile.state.models import EnvironmentContext
from .models import ReconcileConfig

DEFAULT_CONFIG_PATH = "reconcile.yaml"

# Environment variable -> (section, key). Set by CI from repository variables.
ENV_OVERRIDES = {
    "TF_STATE_BUCKET": ("backend", "bucket"),
    "TF_LOCK_TABLE": ("backend", "lock_table"),
    "AWS_REGION": ("project", "region"),
}


class ConfigValidationError(Exception):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, errors: Optional[List[Dict]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  - {location}: {msg}")

        return "\n".join(error_lines)


class Config:
    """Configuration manager for reconciliation runs."""

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to the YAML configuration file. When None, the
                default file is used if present, otherwise built-in defaults.
            environ: Environment mapping for overrides (defaults to os.environ)
        """
        self.explicit_path = config_path is not None
        self.config_path = Path(config_path or DEFAULT_CONFIG_PATH)
        self.environ = os.environ if environ is None else environ
        self.data: Dict = {}
        self.settings: Optional[ReconcileConfig] = None

    def load(self) -> "Config":
        """Load and validate configuration.

        Returns:
            Self for method chaining

        Raises:
            ConfigValidationError: If configuration is invalid
            FileNotFoundError: If an explicitly given file doesn't exist
        """
        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    self.data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigValidationError(f"Failed to parse YAML: {e}")
        elif self.explicit_path:
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        if not isinstance(self.data, dict):
            raise ConfigValidationError("Configuration root must be a mapping")

        self._apply_env_overrides()

        validation_errors = self.validate()
        if validation_errors:
            raise ConfigValidationError(
                f"Configuration validation failed with {len(validation_errors)} error(s)",
                validation_errors,
            )

        self.settings = ReconcileConfig(**self.data)
        return self

    def validate(self) -> List[Dict]:
        """Validate configuration against schema.

        Returns:
            List of validation errors (empty if valid)
        """
        try:
            ReconcileConfig(**self.data)
        except ValidationError as e:
            return [{"loc": list(error["loc"]), "msg": error["msg"]} for error in e.errors()]
        return []

    def context(self, environment: str, region: Optional[str] = None) -> EnvironmentContext:
        """Build the environment context for a run.

        Args:
            environment: Environment name
            region: Region override (e.g. from --region)

        Returns:
            EnvironmentContext

        Raises:
            ConfigValidationError: If the environment is not declared
        """
        settings = self._require_settings()
        if environment not in settings.project.environments:
            available = ", ".join(settings.project.environments)
            raise ConfigValidationError(
                f"Environment '{environment}' not found. Available environments: {available}"
            )

        return EnvironmentContext(
            environment=environment,
            region=region or settings.project.region,
            prefix=settings.project.prefix,
        )

    def backend_overrides(self) -> Dict[str, Optional[str]]:
        """Explicit backend overrides from file and environment."""
        return self._require_settings().backend.overrides()

    def _require_settings(self) -> ReconcileConfig:
        if self.settings is None:
            raise ConfigValidationError("Configuration not loaded. Call load() first.")
        return self.settings

    def _apply_env_overrides(self):
        """Copy non-empty override variables into the raw document."""
        for variable, (section, key) in ENV_OVERRIDES.items():
            value = self.environ.get(variable, "").strip()
            if not value:
                continue
            section_data = self.data.setdefault(section, {}) or {}
            section_data[key] = value
            self.data[section] = section_data
