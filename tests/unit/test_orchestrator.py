"""
End-to-end tests for the bootstrap, apply and destroy flows.

AWS runs under moto; Terraform is a MagicMock whose apply creates what the
real module would.
"""
from unittest.mock import MagicMock

import pytest

from conftest import create_backend, create_lock_table, failed, ok
from infra_reconcile.cleaners.base import BaseCleaner, StepResult, StepStatus
from infra_reconcile.config.models import ReconcileConfig
from infra_reconcile.orchestrator.orchestrator import ReconciliationOrchestrator
from infra_reconcile.state.models import ManagedResourceRef, ResourceKind
from infra_reconcile.utils.errors import CleanupError, TerraformError


class FakeTerraformFactory:
    """Records the runners it builds and hands out a shared MagicMock."""

    def __init__(self, terraform):
        self.terraform = terraform
        self.calls = []

    def __call__(self, working_dir, binary, runner):
        self.calls.append((working_dir, binary, runner))
        return self.terraform


def orchestrator_for(session, ctx, no_retry, terraform, config=None, overrides=None):
    factory = FakeTerraformFactory(terraform)
    orchestrator = ReconciliationOrchestrator(
        config or ReconcileConfig(),
        ctx,
        session,
        overrides=overrides,
        terraform_factory=factory,
        retry=no_retry,
    )
    return orchestrator, factory


def test_dev_bootstrap_end_to_end(session, ctx, no_retry):
    terraform = MagicMock()
    terraform.init.return_value = ok()
    terraform.apply.side_effect = lambda **kwargs: create_backend(
        session, "neo4j-demos-terraform-state-dev", "neo4j-demos-terraform-locks-dev"
    )
    orchestrator, factory = orchestrator_for(session, ctx, no_retry, terraform)

    outcome = orchestrator.bootstrap()

    assert outcome.succeeded
    assert outcome.destroyed == []
    working_dir, _, runner = factory.calls[0]
    assert working_dir == "bootstrap"
    assert runner.env["TF_VAR_state_bucket_name"] == "neo4j-demos-terraform-state-dev"
    assert runner.env["TF_VAR_lock_table_name"] == "neo4j-demos-terraform-locks-dev"

    ssm = session.client("ssm")
    assert ssm.get_parameter(Name="/terraform/dev/state_bucket")["Parameter"]["Value"] == \
        "neo4j-demos-terraform-state-dev"
    assert ssm.get_parameter(Name="/terraform/dev/lock_table")["Parameter"]["Value"] == \
        "neo4j-demos-terraform-locks-dev"


def test_bootstrap_removes_stale_backend_first(session, ctx, no_retry):
    create_backend(session, "custom-bucket", "neo4j-demos-terraform-locks-dev")
    terraform = MagicMock()
    terraform.init.return_value = ok()
    orchestrator, _ = orchestrator_for(session, ctx, no_retry, terraform, overrides={"bucket": "custom-bucket"})

    outcome = orchestrator.bootstrap()

    assert {ref.external_id for ref in outcome.destroyed} == {"custom-bucket", "neo4j-demos-terraform-locks-dev"}
    value = session.client("ssm").get_parameter(Name="/terraform/dev/state_bucket")["Parameter"]["Value"]
    assert value == "custom-bucket"


def test_bootstrap_init_failure_is_fatal(session, ctx, no_retry):
    terraform = MagicMock()
    terraform.init.return_value = failed("provider download failed")
    orchestrator, _ = orchestrator_for(session, ctx, no_retry, terraform)

    with pytest.raises(TerraformError):
        orchestrator.bootstrap()

    terraform.apply.assert_not_called()
    assert not orchestrator.outcome.applied


def test_apply_imports_before_plan_and_publishes(session, ctx, no_retry):
    session.client("ecr").create_repository(repositoryName="neo4j-basic-demo")
    terraform = MagicMock()
    terraform.init.return_value = ok()
    terraform.state_show.return_value = False
    terraform.import_resource.return_value = ok()
    terraform.output.return_value = {}
    orchestrator, factory = orchestrator_for(session, ctx, no_retry, terraform)

    outcome = orchestrator.apply()

    assert outcome.applied
    assert [ref.external_id for ref in outcome.imported] == ["neo4j-basic-demo"]
    assert factory.calls[0][0] == "Terraform"

    order = [name for name, _, _ in terraform.mock_calls]
    assert order.index("import_resource") < order.index("plan") < order.index("apply")
    terraform.apply.assert_called_once_with(plan_file="tfplan")

    ssm = session.client("ssm")
    assert ssm.get_parameter(Name="/neo4j-demos/dev/eks-cluster-name")["Parameter"]["Value"] == "neo4j-demo-cluster"
    assert ssm.get_parameter(Name="/neo4j-demos/dev/neo4j-password", WithDecryption=True)["Parameter"]["Value"] == \
        "Neo4jDemo2024!"


def test_apply_failure_propagates_without_publishing(session, ctx, no_retry):
    terraform = MagicMock()
    terraform.init.return_value = ok()
    terraform.plan.side_effect = TerraformError("terraform plan failed", exit_code=1)
    orchestrator, _ = orchestrator_for(session, ctx, no_retry, terraform)

    with pytest.raises(TerraformError):
        orchestrator.apply()

    terraform.apply.assert_not_called()
    assert orchestrator.outcome.published == []


class StaticCleaner(BaseCleaner):
    def __init__(self, step, status):
        super().__init__()
        self.step = step
        self.status = status

    def cleanup(self):
        ref = ManagedResourceRef(resource_type=ResourceKind.NAT_GATEWAY, external_id="nat-1")
        return [StepResult(ref=ref, action="delete_nat_gateway", status=self.status)]


def test_destroy_aborts_before_terraform_when_cleanup_fails(session, ctx, no_retry):
    terraform = MagicMock()
    orchestrator, factory = orchestrator_for(session, ctx, no_retry, terraform)
    later = MagicMock()

    with pytest.raises(CleanupError):
        orchestrator.destroy(cleaners=[StaticCleaner("network", StepStatus.FAILED), later])

    assert factory.calls == []
    later.cleanup.assert_not_called()
    assert orchestrator.outcome.failures_for("network")


def test_destroy_runs_terraform_and_removes_state_backend(session, ctx, no_retry):
    create_backend(session, "neo4j-demos-terraform-state-dev", "neo4j-demos-terraform-locks-dev")
    terraform = MagicMock()
    terraform.init.return_value = ok()
    orchestrator, _ = orchestrator_for(session, ctx, no_retry, terraform)

    outcome = orchestrator.destroy(cleaners=[StaticCleaner("network", StepStatus.DONE)])

    assert outcome.succeeded
    terraform.destroy.assert_called_once_with()
    destroyed = {ref.external_id for ref in outcome.destroyed}
    assert {"nat-1", "neo4j-demos-terraform-state-dev", "neo4j-demos-terraform-locks-dev"} <= destroyed


def test_destroy_rerun_removes_leftover_lock_table(session, ctx, no_retry):
    create_lock_table(session, "neo4j-demos-terraform-locks-dev")
    terraform = MagicMock()
    terraform.init.return_value = failed("S3 bucket does not exist")
    orchestrator, _ = orchestrator_for(session, ctx, no_retry, terraform)

    outcome = orchestrator.destroy(cleaners=[])

    assert outcome.succeeded
    terraform.init.assert_not_called()
    terraform.destroy.assert_not_called()
    assert [ref.external_id for ref in outcome.destroyed] == ["neo4j-demos-terraform-locks-dev"]
    assert session.client("dynamodb").list_tables()["TableNames"] == []


def test_destroy_without_state_bucket_can_keep_lock_table(session, ctx, no_retry):
    create_lock_table(session, "neo4j-demos-terraform-locks-dev")
    terraform = MagicMock()
    config = ReconcileConfig(destroy={"destroy_state_backend": False})
    orchestrator, _ = orchestrator_for(session, ctx, no_retry, terraform, config=config)

    outcome = orchestrator.destroy(cleaners=[])

    assert outcome.applied
    terraform.destroy.assert_not_called()
    assert session.client("dynamodb").list_tables()["TableNames"] == ["neo4j-demos-terraform-locks-dev"]


def test_destroy_can_keep_state_backend(session, ctx, no_retry):
    create_backend(session, "neo4j-demos-terraform-state-dev", "neo4j-demos-terraform-locks-dev")
    terraform = MagicMock()
    terraform.init.return_value = ok()
    config = ReconcileConfig(destroy={"destroy_state_backend": False})
    orchestrator, _ = orchestrator_for(session, ctx, no_retry, terraform, config=config)

    orchestrator.destroy(cleaners=[])

    buckets = [b["Name"] for b in session.client("s3").list_buckets()["Buckets"]]
    assert "neo4j-demos-terraform-state-dev" in buckets


def test_default_destroy_chain_order(session, ctx, no_retry):
    orchestrator, _ = orchestrator_for(session, ctx, no_retry, MagicMock())

    steps = [cleaner.step for cleaner in orchestrator.destroy_cleaners("neo4j-demo-cluster")]

    assert steps == ["k8s_cleanup", "ecr_images", "eks_nodegroups", "load_balancers", "network"]
