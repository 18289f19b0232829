"""
Unit tests for stale state backend removal.

The resolver must leave no bucket, version or table behind, and running it
against an empty backend must only probe.
"""
from botocore.exceptions import ClientError
from unittest.mock import MagicMock

from conftest import create_backend
from infra_reconcile.orchestrator.conflict_resolver import ConflictResolver
from infra_reconcile.state.locator import resolve_backend
from infra_reconcile.state.models import ReconciliationOutcome, ResourceKind
from infra_reconcile.utils.retry import RetryStrategy


def outcome():
    return ReconciliationOutcome(operation="bootstrap", environment="dev")


def not_found(code, operation):
    return ClientError({"Error": {"Code": code, "Message": "not found"}}, operation)


def test_removes_versioned_bucket_and_table(session, ctx, no_retry):
    handle = resolve_backend(ctx)
    create_backend(session, handle.bucket, handle.lock_table)
    s3 = session.client("s3")
    s3.put_object(Bucket=handle.bucket, Key="terraform.tfstate", Body=b"v1")
    s3.put_object(Bucket=handle.bucket, Key="terraform.tfstate", Body=b"v2")
    s3.delete_object(Bucket=handle.bucket, Key="terraform.tfstate")  # leaves a delete marker

    result = outcome()
    assert ConflictResolver(session, retry=no_retry).resolve(handle, result)

    assert result.errors == []
    kinds = {ref.resource_type for ref in result.destroyed}
    assert kinds == {ResourceKind.S3_BUCKET, ResourceKind.DYNAMODB_TABLE}
    assert handle.bucket not in [b["Name"] for b in s3.list_buckets()["Buckets"]]
    assert handle.lock_table not in session.client("dynamodb").list_tables()["TableNames"]


def test_running_twice_on_empty_backend_is_noop(session, ctx, no_retry):
    handle = resolve_backend(ctx)
    resolver = ConflictResolver(session, retry=no_retry)

    first, second = outcome(), outcome()
    assert resolver.resolve(handle, first)
    assert resolver.resolve(handle, second)

    for result in (first, second):
        assert result.errors == []
        assert result.destroyed == []


def test_empty_backend_only_probes(ctx, no_retry):
    s3, dynamodb = MagicMock(), MagicMock()
    s3.head_bucket.side_effect = not_found("404", "HeadBucket")
    dynamodb.describe_table.side_effect = not_found("ResourceNotFoundException", "DescribeTable")
    boto_session = MagicMock()
    boto_session.client.side_effect = lambda name: {"s3": s3, "dynamodb": dynamodb}[name]

    ConflictResolver(boto_session, retry=no_retry).resolve(resolve_backend(ctx), outcome())

    s3.delete_object.assert_not_called()
    s3.delete_bucket.assert_not_called()
    s3.get_paginator.assert_not_called()
    dynamodb.delete_table.assert_not_called()


def test_failures_are_recorded_not_raised(ctx, no_retry):
    s3, dynamodb = MagicMock(), MagicMock()
    s3.head_bucket.side_effect = ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "HeadBucket"
    )
    dynamodb.describe_table.side_effect = not_found("ResourceNotFoundException", "DescribeTable")
    boto_session = MagicMock()
    boto_session.client.side_effect = lambda name: {"s3": s3, "dynamodb": dynamodb}[name]

    result = outcome()
    assert not ConflictResolver(boto_session, retry=no_retry).resolve(resolve_backend(ctx), result)

    assert len(result.errors) == 1
    assert result.errors[0].step == "conflict_resolver"
    assert result.errors[0].error_code == "AccessDenied"
    assert result.errors[0].category == "state"


def test_transient_errors_are_retried(ctx):
    sleeps = []
    s3, dynamodb = MagicMock(), MagicMock()
    s3.head_bucket.side_effect = [
        ClientError({"Error": {"Code": "ThrottlingException", "Message": "slow down"}}, "HeadBucket"),
        not_found("404", "HeadBucket"),
    ]
    dynamodb.describe_table.side_effect = not_found("ResourceNotFoundException", "DescribeTable")
    boto_session = MagicMock()
    boto_session.client.side_effect = lambda name: {"s3": s3, "dynamodb": dynamodb}[name]

    result = outcome()
    ConflictResolver(boto_session, retry=RetryStrategy(max_retries=2, delay=5, sleep=sleeps.append)).resolve(
        resolve_backend(ctx), result
    )

    assert result.errors == []
    assert sleeps == [5]
    assert s3.head_bucket.call_count == 2
