"""
Unit tests for state backend resolution.

Every workflow must resolve the same bucket and lock table for an
environment, so resolution has to be pure and its precedence fixed.
"""
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from infra_reconcile.state.locator import locate_backend, resolve_backend
from infra_reconcile.state.models import EnvironmentContext
from infra_reconcile.state.parameter_store import ParameterStore


def test_resolve_uses_naming_convention(ctx):
    handle = resolve_backend(ctx)

    assert handle.bucket == "neo4j-demos-terraform-state-dev"
    assert handle.lock_table == "neo4j-demos-terraform-locks-dev"
    assert handle.state_key == "terraform.tfstate"
    assert handle.region == "us-west-2"


def test_resolve_is_pure(ctx):
    """Same inputs always give equal handles."""
    overrides = {"bucket": "custom-bucket"}

    assert resolve_backend(ctx, overrides) == resolve_backend(ctx, overrides)
    assert overrides == {"bucket": "custom-bucket"}


def test_override_bucket_wins(ctx):
    handle = resolve_backend(ctx, {"bucket": "custom-bucket", "lock_table": None})

    assert handle.bucket == "custom-bucket"
    assert handle.lock_table == "neo4j-demos-terraform-locks-dev"


def test_blank_override_is_ignored(ctx):
    handle = resolve_backend(ctx, {"bucket": "   ", "lock_table": ""})

    assert handle.bucket == "neo4j-demos-terraform-state-dev"
    assert handle.lock_table == "neo4j-demos-terraform-locks-dev"


def test_prefix_and_environment_shape_names():
    handle = resolve_backend(EnvironmentContext(environment="prod", region="eu-west-1", prefix="acme"))

    assert handle.bucket == "acme-terraform-state-prod"
    assert handle.lock_table == "acme-terraform-locks-prod"


def test_digest_lock_id_and_backend_config(ctx):
    handle = resolve_backend(ctx)

    assert handle.digest_lock_id == "neo4j-demos-terraform-state-dev/terraform.tfstate-md5"
    assert handle.backend_config() == {
        "bucket": "neo4j-demos-terraform-state-dev",
        "key": "terraform.tfstate",
        "dynamodb_table": "neo4j-demos-terraform-locks-dev",
        "region": "us-west-2",
    }


def test_locate_reads_published_parameters(session, ctx):
    ssm = session.client("ssm")
    ssm.put_parameter(Name="/terraform/dev/state_bucket", Value="published-bucket", Type="String")
    ssm.put_parameter(Name="/terraform/dev/lock_table", Value="published-table", Type="String")

    handle = locate_backend(ctx, {}, ParameterStore(ssm))

    assert handle.bucket == "published-bucket"
    assert handle.lock_table == "published-table"


def test_locate_override_beats_published_parameter(session, ctx):
    ssm = session.client("ssm")
    ssm.put_parameter(Name="/terraform/dev/state_bucket", Value="published-bucket", Type="String")

    handle = locate_backend(ctx, {"bucket": "custom-bucket"}, ParameterStore(ssm))

    assert handle.bucket == "custom-bucket"


def test_locate_falls_back_when_parameters_missing(session, ctx):
    handle = locate_backend(ctx, None, ParameterStore(session.client("ssm")))

    assert handle == resolve_backend(ctx)


def test_locate_falls_back_when_parameter_store_unreadable(ctx):
    store = MagicMock()
    store.get.side_effect = ClientError(
        {"Error": {"Code": "AccessDeniedException", "Message": "denied"}}, "GetParameter"
    )

    handle = locate_backend(ctx, {}, store)

    assert handle == resolve_backend(ctx)
