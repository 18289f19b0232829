"""Removal of a half-initialized state backend before it is (re)created."""

from typing import Callable, Optional

from infra_reconcile.cleaners.state_backend import StateBackendCleaner
from infra_reconcile.state.models import ReconciliationOutcome, StateBackendHandle
from infra_reconcile.utils.errors import ErrorCategory
from infra_reconcile.utils.logging import LogContext, get_logger
from infra_reconcile.utils.retry import RetryStrategy
from .results import record_step_results

logger = get_logger(__name__)

STEP = "conflict_resolver"


class ConflictResolver:
    """Ensures the state bucket and lock table do not exist.

    Safe to run repeatedly: against an empty backend it only probes. It never
    raises for AWS errors; failures land in the outcome.
    """

    def __init__(
        self,
        boto_session,
        retry: Optional[RetryStrategy] = None,
        table_timeout: int = 300,
        cleaner_factory: Optional[Callable[..., StateBackendCleaner]] = None
    ):
        self.session = boto_session
        self.retry = retry
        self.table_timeout = table_timeout
        self.cleaner_factory = cleaner_factory or StateBackendCleaner

    def resolve(self, handle: StateBackendHandle, outcome: ReconciliationOutcome) -> bool:
        """Remove any existing bucket and table named by the handle.

        Args:
            handle: Backend about to be created
            outcome: Run outcome collecting removals and failures

        Returns:
            True if no step failed
        """
        with LogContext(logger, step=STEP, resource_id=handle.bucket):
            logger.info(f"Checking for existing state backend {handle.bucket} / {handle.lock_table}")
            cleaner = self.cleaner_factory(
                self.session,
                handle,
                retry=self.retry,
                table_timeout=self.table_timeout,
            )
            failed = record_step_results(outcome, STEP, cleaner.cleanup(), ErrorCategory.STATE)

            if failed:
                logger.warning(f"Conflict resolution left {len(failed)} failure(s); continuing")
            return not failed
