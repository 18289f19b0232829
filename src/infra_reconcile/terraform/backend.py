"""Terraform backend initialization with lock digest recovery."""

import hashlib

from botocore.exceptions import BotoCoreError, ClientError

from infra_reconcile.state.models import StateBackendHandle
from infra_reconcile.utils.errors import TerraformError, is_not_found
from infra_reconcile.utils.logging import LogContext, get_logger
from .runner import CommandResult, TerraformRunner

logger = get_logger(__name__)


class BackendInitializer:
    """Runs ``terraform init`` against an S3 backend, repairing a stale digest once.

    Terraform refuses to initialize when the MD5 digest it keeps in the lock
    table does not match the state object in S3. The repair rewrites that
    digest from the actual object and retries init with ``-reconfigure``.
    """

    def __init__(self, boto_session, terraform: TerraformRunner):
        """Initialize backend initializer.

        Args:
            boto_session: Configured boto3 session
            terraform: Runner for the Terraform working directory
        """
        self.terraform = terraform
        self.s3_client = boto_session.client('s3')
        self.dynamodb_client = boto_session.client('dynamodb')

    def initialize(self, handle: StateBackendHandle) -> CommandResult:
        """Initialize the working directory against the given backend.

        Args:
            handle: Resolved state backend

        Returns:
            Result of the successful init

        Raises:
            TerraformError: If init still fails after the repair and retry
        """
        with LogContext(logger, step='terraform_init', resource_id=handle.bucket):
            backend = handle.backend_config()
            result = self.terraform.init(backend=backend)
            if result.ok:
                return result

            logger.warning(f"terraform init failed (exit {result.exit_code}), repairing lock digest and retrying")
            self.repair_digest(handle)

            result = self.terraform.init(backend=backend, reconfigure=True)
            if not result.ok:
                raise TerraformError(
                    f"terraform init failed after retry: {result.stderr.strip() or 'no output'}",
                    exit_code=result.exit_code,
                    suggestions=[
                        f"Check that bucket {handle.bucket} and table {handle.lock_table} exist",
                        "Run 'infra-reconcile bootstrap' for this environment",
                    ],
                )
            return result

    def repair_digest(self, handle: StateBackendHandle) -> bool:
        """Rewrite the state digest item from the current state object.

        When the state object is absent the digest item is removed instead.

        Returns:
            True if the lock table now agrees with the bucket
        """
        lock_id = handle.digest_lock_id
        try:
            obj = self.s3_client.get_object(Bucket=handle.bucket, Key=handle.state_key)
        except ClientError as e:
            if not is_not_found(e):
                logger.warning(f"Could not read state object {handle.bucket}/{handle.state_key}: {e}")
                return False
            return self._delete_digest(handle, lock_id)
        except BotoCoreError as e:
            logger.warning(f"Could not read state object {handle.bucket}/{handle.state_key}: {e}")
            return False

        digest = hashlib.md5(obj['Body'].read()).hexdigest()
        try:
            self.dynamodb_client.put_item(
                TableName=handle.lock_table,
                Item={'LockID': {'S': lock_id}, 'Digest': {'S': digest}},
            )
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not write digest {lock_id}: {e}")
            return False

        logger.info(f"Wrote digest {digest} for {lock_id}")
        return True

    def _delete_digest(self, handle: StateBackendHandle, lock_id: str) -> bool:
        try:
            self.dynamodb_client.delete_item(TableName=handle.lock_table, Key={'LockID': {'S': lock_id}})
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not remove digest {lock_id}: {e}")
            return False

        logger.info(f"No state object yet, removed digest {lock_id}")
        return True

    def state_bucket_exists(self, handle: StateBackendHandle) -> bool:
        """Probe the state bucket.

        Only a not-found answer counts as absent; any other error leaves the
        decision to ``terraform init``.
        """
        try:
            self.s3_client.head_bucket(Bucket=handle.bucket)
        except ClientError as e:
            if is_not_found(e):
                logger.info(f"State bucket {handle.bucket} does not exist")
                return False
            logger.warning(f"Could not probe state bucket {handle.bucket}: {e}")
        except BotoCoreError as e:
            logger.warning(f"Could not probe state bucket {handle.bucket}: {e}")
        return True
