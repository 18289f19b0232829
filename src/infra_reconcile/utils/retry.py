"""Bounded fixed-interval retry and polling for AWS operations."""

import time
from typing import Callable, TypeVar, Optional
from botocore.exceptions import ClientError
from infra_reconcile.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class WaitTimeoutError(Exception):
    """Raised when a polled condition does not become true in time."""


class RetryStrategy:
    """Retries transient AWS errors a fixed number of times with a fixed delay."""

    # AWS error codes that should trigger a retry
    RETRYABLE_ERROR_CODES = {
        'RequestTimeout',
        'ServiceUnavailable',
        'ThrottlingException',
        'TooManyRequestsException',
        'RequestLimitExceeded',
        'Throttling',
        'RequestThrottled',
        'ProvisionedThroughputExceededException',
        'InternalError',
        'InternalFailure',
        'ServiceException',
        'DependencyViolation',
        'ResourceInUseException',
        'InvalidParameterException',
        'OperationAborted',
    }

    RETRYABLE_EXCEPTIONS = (
        ConnectionError,
        TimeoutError,
    )

    def __init__(
        self,
        max_retries: int = 3,
        delay: float = 5.0,
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize retry strategy.

        Args:
            max_retries: Maximum number of retry attempts after the first call
            delay: Seconds to wait between attempts
            sleep: Sleep function (injectable for tests)
        """
        self.max_retries = max_retries
        self.delay = delay
        self.sleep = sleep

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """Determine if an error should trigger a retry.

        Args:
            error: The exception that occurred
            attempt: Current attempt number (0-indexed)

        Returns:
            True if the error is retryable and max retries not exceeded
        """
        if attempt >= self.max_retries:
            return False

        if isinstance(error, self.RETRYABLE_EXCEPTIONS):
            return True

        if isinstance(error, ClientError):
            error_code = error.response.get('Error', {}).get('Code', '')
            return error_code in self.RETRYABLE_ERROR_CODES

        return False

    def execute_with_retry(
        self,
        func: Callable[..., T],
        *args,
        **kwargs
    ) -> T:
        """Execute a function with retry logic.

        Args:
            func: Function to execute
            *args: Positional arguments for the function
            **kwargs: Keyword arguments for the function

        Returns:
            Result of the function call

        Raises:
            The last exception if it is not retryable or retries are exhausted
        """
        attempt = 0
        while True:
            try:
                result = func(*args, **kwargs)
                if attempt > 0:
                    logger.info(f"Operation succeeded after {attempt} retries")
                return result
            except Exception as e:
                if not self.should_retry(e, attempt):
                    logger.debug(f"Error is not retryable or max retries exceeded: {e}")
                    raise

                logger.warning(
                    f"Attempt {attempt + 1}/{self.max_retries + 1} failed: "
                    f"{self._get_error_info(e)}. Retrying in {self.delay:.0f}s..."
                )
                self.sleep(self.delay)
                attempt += 1

    def _get_error_info(self, error: Exception) -> str:
        """Extract useful error information for logging.

        Args:
            error: The exception

        Returns:
            Human-readable error description
        """
        if isinstance(error, ClientError):
            error_code = error.response.get('Error', {}).get('Code', 'Unknown')
            error_message = error.response.get('Error', {}).get('Message', str(error))
            return f"{error_code}: {error_message}"

        return f"{type(error).__name__}: {str(error)}"


def wait_until(
    condition: Callable[[], bool],
    timeout: float,
    interval: float,
    description: str,
    sleep: Callable[[float], None] = time.sleep,
    clock: Optional[Callable[[], float]] = None
) -> None:
    """Poll a condition at a fixed interval until it holds.

    Args:
        condition: Callable returning True once the awaited state is reached
        timeout: Maximum seconds to wait
        interval: Seconds between polls
        description: What is being waited for (used in logs and errors)
        sleep: Sleep function (injectable for tests)
        clock: Monotonic clock (injectable for tests)

    Raises:
        WaitTimeoutError: If the condition is still false after the timeout
    """
    clock = clock or time.monotonic
    deadline = clock() + timeout

    while not condition():
        if clock() >= deadline:
            raise WaitTimeoutError(f"Timed out after {timeout:.0f}s waiting for {description}")
        logger.debug(f"Waiting for {description}...")
        sleep(interval)
