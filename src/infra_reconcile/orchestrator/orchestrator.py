"""Main orchestrator that runs bootstrap, apply and destroy reconciliations."""

from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from infra_reconcile.cleaners import (
    BaseCleaner,
    ECRImageCleaner,
    KubernetesCleaner,
    LoadBalancerCleaner,
    NetworkCleaner,
    NodegroupCleaner,
)
from infra_reconcile.config.models import ReconcileConfig
from infra_reconcile.orchestrator.conflict_resolver import ConflictResolver
from infra_reconcile.orchestrator.handoff import read_parameter
from infra_reconcile.orchestrator.importer import ImportReconciler, ResourceProbe
from infra_reconcile.orchestrator.publisher import OutputPublisher, backend_entries, infrastructure_entries
from infra_reconcile.orchestrator.results import record_step_results
from infra_reconcile.state.locator import locate_backend
from infra_reconcile.state.models import EnvironmentContext, ReconciliationOutcome, StateBackendHandle
from infra_reconcile.state.parameter_store import ParameterStore, project_parameter
from infra_reconcile.terraform.backend import BackendInitializer
from infra_reconcile.terraform.runner import CommandRunner, TerraformRunner
from infra_reconcile.utils.errors import CleanupError, ErrorContext, TerraformError
from infra_reconcile.utils.logging import LogContext, get_logger
from infra_reconcile.utils.retry import RetryStrategy

logger = get_logger(__name__)

PLAN_FILE = "tfplan"

# (step name, message)
ProgressCallback = Callable[[str, str], None]

TerraformFactory = Callable[[str, str, CommandRunner], TerraformRunner]


class ReconciliationOrchestrator:
    """Runs one reconciliation per call against a single environment.

    Every flow resolves the state backend through :func:`locate_backend`.
    Terraform failures propagate as ``TerraformError``; everything else is
    recorded in ``self.outcome``, which stays readable after a failure.
    """

    def __init__(
        self,
        config: ReconcileConfig,
        ctx: EnvironmentContext,
        boto_session,
        overrides: Optional[Mapping[str, Optional[str]]] = None,
        terraform_factory: Optional[TerraformFactory] = None,
        retry: Optional[RetryStrategy] = None,
        command_runner: Optional[CommandRunner] = None,
        progress_callback: Optional[ProgressCallback] = None
    ):
        """Initialize reconciliation orchestrator.

        Args:
            config: Validated configuration
            ctx: Environment the run targets
            boto_session: Configured boto3 session
            overrides: Explicit state backend overrides
            terraform_factory: Builds a TerraformRunner for a directory (injectable for tests)
            retry: Bounded retry strategy for cleanup calls
            command_runner: Runner for aws and kubectl commands
            progress_callback: Optional callback for progress updates
        """
        self.config = config
        self.ctx = ctx
        self.session = boto_session
        self.overrides = dict(overrides or {})
        self.terraform_factory = terraform_factory or TerraformRunner
        self.retry = retry or RetryStrategy(
            max_retries=config.destroy.max_retries,
            delay=config.destroy.retry_delay,
        )
        self.command_runner = command_runner
        self.progress_callback = progress_callback

        self.store = ParameterStore(boto_session.client('ssm'))
        self.publisher = OutputPublisher(self.store)
        self.outcome: Optional[ReconciliationOutcome] = None

    def locate(self) -> StateBackendHandle:
        """Resolve the state backend for this environment."""
        return locate_backend(self.ctx, self.overrides, self.store)

    def bootstrap(self) -> ReconciliationOutcome:
        """Create the state backend from scratch and publish its names.

        Any existing bucket or table with the resolved names is removed first.

        Raises:
            TerraformError: If init or apply of the bootstrap module fails
        """
        outcome = self._start('bootstrap')
        with LogContext(logger, environment=self.ctx.environment, operation='bootstrap'):
            handle = self.locate()

            self._progress('conflict_resolver', f"Removing stale backend {handle.bucket}")
            ConflictResolver(
                self.session,
                retry=self.retry,
                table_timeout=self.config.destroy.table_timeout,
            ).resolve(handle, outcome)

            variables = {
                'state_bucket_name': handle.bucket,
                'lock_table_name': handle.lock_table,
                'environment': self.ctx.environment,
                'region': self.ctx.region,
            }
            terraform = self._terraform(self.config.terraform.bootstrap_dir, variables)

            self._progress('terraform', "Initializing bootstrap module")
            result = terraform.init()
            if not result.ok:
                raise TerraformError(
                    f"terraform init failed for bootstrap module: {result.stderr.strip() or 'no output'}",
                    exit_code=result.exit_code,
                )

            self._progress('terraform', "Creating state bucket and lock table")
            terraform.apply()
            outcome.applied = True

            self._progress('publish', "Publishing backend names")
            self.publisher.publish(backend_entries(self.ctx, handle), outcome)

        return self._finish(outcome)

    def apply(self) -> ReconciliationOutcome:
        """Converge the main infrastructure and publish its identifiers.

        Existing untracked resources are imported before planning so the
        saved plan reflects them.

        Raises:
            TerraformError: If init (after one retry), plan or apply fails
        """
        outcome = self._start('apply')
        with LogContext(logger, environment=self.ctx.environment, operation='apply'):
            handle = self.locate()
            terraform = self._terraform(self.config.terraform.infrastructure_dir)

            self._progress('terraform', f"Initializing backend {handle.bucket}")
            BackendInitializer(self.session, terraform).initialize(handle)

            self._progress('import', "Importing existing resources")
            refs = [target.to_ref() for target in self.config.import_targets()]
            ImportReconciler(ResourceProbe(self.session), terraform).reconcile(refs, outcome)

            self._progress('terraform', "Planning")
            terraform.plan(out=PLAN_FILE)

            self._progress('terraform', "Applying")
            terraform.apply(plan_file=PLAN_FILE)
            outcome.applied = True

            self._progress('publish', "Publishing infrastructure outputs")
            entries = infrastructure_entries(self.ctx, self.config.outputs, terraform.output())
            self.publisher.publish(entries, outcome)

        return self._finish(outcome)

    def destroy(self, cleaners: Optional[List[BaseCleaner]] = None) -> ReconciliationOutcome:
        """Tear down the environment.

        Pre-cleaners run in dependency order. The first step left with
        failures aborts the run before Terraform is invoked.
        When the state bucket is already gone nothing is tracked, so
        Terraform is skipped and only the backend teardown runs.

        Args:
            cleaners: Pre-destroy cleaners to run instead of the default chain

        Raises:
            CleanupError: If a pre-destroy step failed after bounded retry
            TerraformError: If init or destroy fails
        """
        outcome = self._start('destroy')
        with LogContext(logger, environment=self.ctx.environment, operation='destroy'):
            handle = self.locate()

            if cleaners is None:
                cleaners = self.destroy_cleaners(self.cluster_name())

            for cleaner in cleaners:
                self._progress(cleaner.step, f"Cleaning {cleaner.step.replace('_', ' ')}")
                failed = record_step_results(outcome, cleaner.step, cleaner.cleanup())
                if failed:
                    self._finish(outcome)
                    raise CleanupError(
                        f"Pre-destroy step '{cleaner.step}' failed for {len(failed)} resource(s); "
                        "terraform destroy was not run",
                        context=ErrorContext(operation='destroy', resource_id=str(failed[0].ref)),
                        suggestions=[
                            "Inspect the failed resources in the AWS console",
                            "Re-run destroy once the blocking resources are removed",
                        ],
                    )

            terraform = self._terraform(self.config.terraform.infrastructure_dir)
            initializer = BackendInitializer(self.session, terraform)
            if initializer.state_bucket_exists(handle):
                self._progress('terraform', f"Initializing backend {handle.bucket}")
                initializer.initialize(handle)

                self._progress('terraform', "Destroying infrastructure")
                terraform.destroy()
            else:
                # No bucket means no state: nothing is tracked, only leftovers remain
                self._progress('terraform', f"State bucket {handle.bucket} is gone, skipping terraform destroy")
            outcome.applied = True

            if self.config.destroy.destroy_state_backend:
                self._progress('state_backend', f"Removing state backend {handle.bucket}")
                ConflictResolver(
                    self.session,
                    retry=self.retry,
                    table_timeout=self.config.destroy.table_timeout,
                ).resolve(handle, outcome)

        return self._finish(outcome)

    def cluster_name(self) -> str:
        """Cluster name as published by the last apply, else the configured one."""
        return read_parameter(
            self.store,
            project_parameter(self.ctx.prefix, self.ctx.environment, 'eks-cluster-name'),
            self.config.outputs.cluster_name,
        )

    def destroy_cleaners(self, cluster_name: str) -> List[BaseCleaner]:
        """Default pre-destroy chain in dependency order."""
        destroy = self.config.destroy
        name_match = destroy.load_balancer_match or [self.ctx.prefix]

        return [
            KubernetesCleaner(
                cluster_name,
                self.ctx.region,
                namespace_pattern=destroy.namespace_pattern,
                runner=self.command_runner,
            ),
            ECRImageCleaner(self.session, self.config.project.demos, retry=self.retry),
            NodegroupCleaner(
                self.session,
                cluster_name,
                retry=self.retry,
                timeout=destroy.nodegroup_timeout,
                poll_interval=destroy.poll_interval,
            ),
            LoadBalancerCleaner(
                self.session,
                name_match,
                cluster_name=cluster_name,
                retry=self.retry,
                poll_interval=destroy.poll_interval,
            ),
            NetworkCleaner(
                self.session,
                destroy.vpc_name_filter or f"*{self.ctx.prefix}*",
                retry=self.retry,
                nat_timeout=destroy.nat_gateway_timeout,
                poll_interval=destroy.poll_interval,
            ),
        ]

    def _terraform(self, directory: str, variables: Optional[Dict[str, str]] = None) -> TerraformRunner:
        # Passed as TF_VAR_* so undeclared variables are ignored
        env = {f"TF_VAR_{key}": value for key, value in (variables or {}).items()}
        runner = CommandRunner(timeout=self.config.terraform.timeout, env=env)
        return self.terraform_factory(str(Path(directory)), self.config.terraform.binary, runner)

    def _start(self, operation: str) -> ReconciliationOutcome:
        logger.info(f"Starting {operation} for {self.ctx.environment} in {self.ctx.region}")
        self.outcome = ReconciliationOutcome(operation=operation, environment=self.ctx.environment)
        return self.outcome

    def _finish(self, outcome: ReconciliationOutcome) -> ReconciliationOutcome:
        outcome.finish()
        logger.info(f"{outcome.operation} finished in {outcome.duration:.1f}s "
                    f"with {len(outcome.errors)} error(s)")
        logger.debug(f"Outcome: {outcome.to_dict()}")
        return outcome

    def _progress(self, step: str, message: str) -> None:
        logger.info(message)
        if self.progress_callback:
            self.progress_callback(step, message)
