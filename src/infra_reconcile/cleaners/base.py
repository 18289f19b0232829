"""Base cleaner interface and step result types."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from infra_reconcile.state.models import ManagedResourceRef
from infra_reconcile.utils.errors import get_error_code, is_not_found
from infra_reconcile.utils.logging import LogContext, get_logger
from infra_reconcile.utils.retry import RetryStrategy

logger = get_logger(__name__)


class StepStatus(Enum):
    """Outcome of a single best-effort cloud call."""
    DONE = "done"
    ABSENT = "absent"  # Expected absence: not found / already gone
    FAILED = "failed"  # Unexpected failure, after bounded retry


@dataclass
class StepResult:
    """Result of one probe or mutation against a cloud object."""
    ref: ManagedResourceRef
    action: str
    status: StepStatus
    error: Optional[Exception] = None
    detail: str = ""
    response: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """True unless the call failed unexpectedly."""
        return self.status != StepStatus.FAILED

    @property
    def error_code(self) -> Optional[str]:
        if self.error is None:
            return None
        return get_error_code(self.error) or type(self.error).__name__

    @property
    def message(self) -> str:
        text = f"{self.action} {self.ref} failed"
        if self.error is not None:
            text += f": {self.error}"
        if self.detail:
            text += f" ({self.detail})"
        return text


class BaseCleaner(ABC):
    """Base class for pre-apply and pre-destroy cleaners.

    Cleaners are built with their targets and expose a single ``cleanup()``
    that never raises for AWS errors; every call is reported as a StepResult.
    """

    # Step name used in logs and failure records
    step = "cleanup"

    def __init__(self, boto_session=None, retry: Optional[RetryStrategy] = None):
        """Initialize cleaner.

        Args:
            boto_session: Configured boto3 session for AWS API calls
            retry: Bounded retry strategy for transient errors
        """
        self.session = boto_session
        self.retry = retry or RetryStrategy(max_retries=0)

    @abstractmethod
    def cleanup(self) -> List[StepResult]:
        """Remove the cleaner's targets.

        Returns:
            One StepResult per probe or mutation performed
        """
        pass

    def _call(
        self,
        ref: ManagedResourceRef,
        action: str,
        func: Callable[..., Any],
        *args,
        **kwargs
    ) -> StepResult:
        """Invoke an AWS call and classify the outcome.

        Not-found errors become ABSENT, any other error becomes FAILED once
        the retry strategy gives up.
        """
        with LogContext(logger, step=self.step, resource_id=ref.external_id):
            try:
                response = self.retry.execute_with_retry(func, *args, **kwargs)
            except ClientError as e:
                if is_not_found(e):
                    logger.info(f"{action}: {ref} not found, nothing to do")
                    return StepResult(ref=ref, action=action, status=StepStatus.ABSENT, error=e)
                logger.error(f"{action} failed for {ref}: {e}")
                return StepResult(ref=ref, action=action, status=StepStatus.FAILED, error=e)
            except BotoCoreError as e:
                logger.error(f"{action} failed for {ref}: {e}")
                return StepResult(ref=ref, action=action, status=StepStatus.FAILED, error=e)

            logger.debug(f"{action} succeeded for {ref}")
            return StepResult(
                ref=ref,
                action=action,
                status=StepStatus.DONE,
                response=response if isinstance(response, dict) else {},
            )

    def _failed(self, ref: ManagedResourceRef, action: str, error: Exception, detail: str = "") -> StepResult:
        with LogContext(logger, step=self.step, resource_id=ref.external_id):
            logger.error(f"{action} failed for {ref}: {error}")
        return StepResult(ref=ref, action=action, status=StepStatus.FAILED, error=error, detail=detail)
