"""
Pytest configuration and shared fixtures.
AWS behaviour is mocked in-process with moto; the Terraform and kubectl
subprocesses are replaced with unittest.mock doubles.
"""
import boto3
import pytest
from moto import mock_aws

from infra_reconcile.state.models import EnvironmentContext
from infra_reconcile.terraform.runner import CommandResult
from infra_reconcile.utils.retry import RetryStrategy

REGION = "us-west-2"


@pytest.fixture(autouse=True)
def aws_env(monkeypatch):
    """Set fake AWS credentials so boto3 doesn't error in tests."""
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "test")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "test")
    monkeypatch.delenv("AWS_PROFILE", raising=False)
    monkeypatch.delenv("AWS_REGION", raising=False)
    monkeypatch.delenv("TF_STATE_BUCKET", raising=False)
    monkeypatch.delenv("TF_LOCK_TABLE", raising=False)


@pytest.fixture
def session(aws_env):
    """boto3 session backed by moto."""
    with mock_aws():
        yield boto3.Session(region_name=REGION)


@pytest.fixture
def ctx():
    return EnvironmentContext(environment="dev", region=REGION)


@pytest.fixture
def no_retry():
    """Retry strategy that gives up immediately and never sleeps."""
    return RetryStrategy(max_retries=0, delay=0, sleep=lambda _: None)


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(args=[], exit_code=0, stdout=stdout)


def failed(stderr: str = "boom", exit_code: int = 1) -> CommandResult:
    return CommandResult(args=[], exit_code=exit_code, stderr=stderr)


def create_backend(session, bucket: str, table: str) -> None:
    """Create a versioned state bucket and a lock table."""
    s3 = session.client("s3")
    s3.create_bucket(Bucket=bucket, CreateBucketConfiguration={"LocationConstraint": REGION})
    s3.put_bucket_versioning(Bucket=bucket, VersioningConfiguration={"Status": "Enabled"})
    create_lock_table(session, table)


def create_lock_table(session, table: str) -> None:
    session.client("dynamodb").create_table(
        TableName=table,
        AttributeDefinitions=[{"AttributeName": "LockID", "AttributeType": "S"}],
        KeySchema=[{"AttributeName": "LockID", "KeyType": "HASH"}],
        BillingMode="PAY_PER_REQUEST",
    )
