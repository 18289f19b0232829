"""Reconciliation flows and the components they are built from."""

from .conflict_resolver import ConflictResolver
from .handoff import DeploySettings, build_id, publish_image, read_deploy_settings, read_parameter
from .importer import ImportReconciler, ResourceProbe
from .orchestrator import ReconciliationOrchestrator
from .publisher import OutputPublisher, ParameterEntry, backend_entries, infrastructure_entries
from .results import record_step_results

__all__ = [
    "ConflictResolver",
    "DeploySettings",
    "build_id",
    "publish_image",
    "read_deploy_settings",
    "read_parameter",
    "ImportReconciler",
    "ResourceProbe",
    "ReconciliationOrchestrator",
    "OutputPublisher",
    "ParameterEntry",
    "backend_entries",
    "infrastructure_entries",
    "record_step_results",
]
