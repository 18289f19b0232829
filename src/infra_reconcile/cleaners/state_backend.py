"""Removal of a stale Terraform state bucket and lock table."""

from typing import List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from infra_reconcile.state.models import ManagedResourceRef, ResourceKind, StateBackendHandle
from infra_reconcile.utils.logging import get_logger
from infra_reconcile.utils.retry import RetryStrategy

from .base import BaseCleaner, StepResult, StepStatus

logger = get_logger(__name__)


class StateBackendCleaner(BaseCleaner):
    """Deletes a versioned state bucket and its lock table if they exist.

    Versioned buckets cannot be deleted while object versions or delete
    markers remain, so every version is removed individually first.
    """

    step = "state_backend"

    def __init__(
        self,
        boto_session,
        handle: StateBackendHandle,
        retry: Optional[RetryStrategy] = None,
        table_timeout: int = 300,
        poll_interval: float = 5.0
    ):
        """Initialize state backend cleaner.

        Args:
            boto_session: Configured boto3 session
            handle: Backend to remove
            retry: Bounded retry strategy
            table_timeout: Seconds to wait for the table to disappear
            poll_interval: Seconds between table deletion checks
        """
        super().__init__(boto_session, retry)
        self.handle = handle
        self.table_timeout = table_timeout
        self.poll_interval = poll_interval
        self.s3_client = boto_session.client('s3')
        self.dynamodb_client = boto_session.client('dynamodb')

    @property
    def bucket_ref(self) -> ManagedResourceRef:
        return ManagedResourceRef(resource_type=ResourceKind.S3_BUCKET, external_id=self.handle.bucket)

    @property
    def table_ref(self) -> ManagedResourceRef:
        return ManagedResourceRef(resource_type=ResourceKind.DYNAMODB_TABLE, external_id=self.handle.lock_table)

    def cleanup(self) -> List[StepResult]:
        """Remove bucket then table; each half is independent."""
        results = self.cleanup_bucket()
        results.extend(self.cleanup_table())
        return results

    def cleanup_bucket(self) -> List[StepResult]:
        """Delete all versions, delete markers and finally the bucket."""
        ref = self.bucket_ref
        probe = self._call(ref, 'head_bucket', self.s3_client.head_bucket, Bucket=ref.external_id)
        if probe.status != StepStatus.DONE:
            return [probe]

        logger.info(f"Found existing bucket {ref.external_id}, removing all versions...")
        results = self._delete_versions(ref)

        delete = self._call(ref, 'delete_bucket', self.s3_client.delete_bucket, Bucket=ref.external_id)
        if delete.status == StepStatus.DONE:
            logger.info(f"Bucket {ref.external_id} deleted")
        results.append(delete)
        return results

    def cleanup_table(self) -> List[StepResult]:
        """Delete the lock table and wait until it is gone."""
        ref = self.table_ref
        probe = self._call(ref, 'describe_table', self.dynamodb_client.describe_table, TableName=ref.external_id)
        if probe.status != StepStatus.DONE:
            return [probe]

        logger.info(f"Found existing table {ref.external_id}, deleting...")
        delete = self._call(ref, 'delete_table', self.dynamodb_client.delete_table, TableName=ref.external_id)
        if delete.status != StepStatus.DONE:
            return [delete]

        waiter = self.dynamodb_client.get_waiter('table_not_exists')
        delay = max(int(self.poll_interval), 1)
        try:
            waiter.wait(
                TableName=ref.external_id,
                WaiterConfig={'Delay': delay, 'MaxAttempts': max(self.table_timeout // delay, 1)}
            )
        except BotoCoreError as e:
            return [self._failed(ref, 'wait_table_not_exists', e)]

        logger.info(f"Table {ref.external_id} deleted")
        return [delete]

    def _delete_versions(self, ref: ManagedResourceRef) -> List[StepResult]:
        """Delete every object version and delete marker, one call each.

        Only failures are returned; a version that vanished concurrently
        counts as deleted.
        """
        failures = []
        deleted = 0
        paginator = self.s3_client.get_paginator('list_object_versions')

        try:
            for page in paginator.paginate(Bucket=ref.external_id):
                entries = page.get('Versions', []) + page.get('DeleteMarkers', [])
                for entry in entries:
                    result = self._call(
                        ref,
                        'delete_object',
                        self.s3_client.delete_object,
                        Bucket=ref.external_id,
                        Key=entry['Key'],
                        VersionId=entry['VersionId'],
                    )
                    if result.status == StepStatus.FAILED:
                        result.detail = f"{entry['Key']}@{entry['VersionId']}"
                        failures.append(result)
                    else:
                        deleted += 1
        except (ClientError, BotoCoreError) as e:
            failures.append(self._failed(ref, 'list_object_versions', e))

        logger.info(f"Removed {deleted} object versions from {ref.external_id}")
        return failures
