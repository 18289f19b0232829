"""Publication of infrastructure identifiers to the parameter store."""

from dataclasses import dataclass
from typing import Iterable, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from infra_reconcile.config.models import OutputsConfig
from infra_reconcile.state.models import (
    EnvironmentContext,
    ManagedResourceRef,
    ReconciliationOutcome,
    ResourceKind,
    StateBackendHandle,
)
from infra_reconcile.state.locator import PUBLISHED_BACKEND_PARAMETERS
from infra_reconcile.state.parameter_store import ParameterStore, backend_parameter, project_parameter
from infra_reconcile.utils.errors import ErrorCategory, PublishError, get_error_code
from infra_reconcile.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

STEP = "publish"


@dataclass(frozen=True)
class ParameterEntry:
    """A single parameter to publish."""
    name: str
    value: str
    secure: bool = False
    # Skip the write when the parameter already exists
    if_absent: bool = False


def backend_entries(ctx: EnvironmentContext, handle: StateBackendHandle) -> List[ParameterEntry]:
    """Entries announcing a freshly bootstrapped state backend."""
    values = {'bucket': handle.bucket, 'lock_table': handle.lock_table}
    return [
        ParameterEntry(name=backend_parameter(ctx.environment, parameter), value=values[key])
        for key, parameter in PUBLISHED_BACKEND_PARAMETERS.items()
    ]


def infrastructure_entries(
    ctx: EnvironmentContext,
    outputs: OutputsConfig,
    terraform_outputs: Optional[dict] = None
) -> List[ParameterEntry]:
    """Entries consumed by the demo deployment pipeline.

    A ``cluster_name`` Terraform output takes precedence over the configured
    cluster name. The database password is only written when absent.
    """
    terraform_outputs = terraform_outputs or {}
    cluster_name = terraform_outputs.get('cluster_name') or outputs.cluster_name

    def name(key: str) -> str:
        return project_parameter(ctx.prefix, ctx.environment, key)

    entries = [
        ParameterEntry(name('eks-cluster-name'), str(cluster_name)),
        ParameterEntry(name('domain-name'), outputs.domain_name),
        ParameterEntry(name('neo4j-version'), outputs.neo4j_version),
        ParameterEntry(name('app-replicas'), str(outputs.app_replicas)),
    ]
    if outputs.neo4j_password:
        entries.append(ParameterEntry(name('neo4j-password'), outputs.neo4j_password, secure=True, if_absent=True))
    return entries


class OutputPublisher:
    """Writes parameter entries; failures are recorded, never raised."""

    def __init__(self, store: ParameterStore):
        self.store = store

    def publish(self, entries: Iterable[ParameterEntry], outcome: ReconciliationOutcome) -> List[str]:
        """Publish entries with last-writer-wins semantics.

        Args:
            entries: Parameters to write
            outcome: Run outcome collecting written and stale names

        Returns:
            Names written by this call
        """
        written = []
        for entry in entries:
            with LogContext(logger, step=STEP, resource_id=entry.name):
                try:
                    if self._publish_one(entry):
                        written.append(entry.name)
                        outcome.published.append(entry.name)
                except PublishError as e:
                    logger.warning(e.message)
                    outcome.stale_parameters.append(entry.name)
                    outcome.record_failure(
                        STEP,
                        e.message,
                        resource=ManagedResourceRef(resource_type=ResourceKind.PARAMETER, external_id=entry.name),
                        category=ErrorCategory.PUBLISH.value,
                        error_code=get_error_code(e.cause) or None,
                    )

        if outcome.stale_parameters:
            logger.warning(f"{len(outcome.stale_parameters)} parameter(s) may be stale: "
                           f"{', '.join(outcome.stale_parameters)}")
        return written

    def _publish_one(self, entry: ParameterEntry) -> bool:
        try:
            if entry.if_absent and self.store.exists(entry.name):
                logger.info(f"{entry.name} already set, leaving it unchanged")
                return False
            self.store.put(entry.name, entry.value, secure=entry.secure)
        except (ClientError, BotoCoreError) as e:
            raise PublishError(f"Failed to publish {entry.name}: {e}", cause=e)

        logger.info(f"Published {entry.name}")
        return True
