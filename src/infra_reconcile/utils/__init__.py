"""Utility modules for logging, AWS client management, and helpers."""

from infra_reconcile.utils.aws_client import AWSClientManager, AWSCredentials
from infra_reconcile.utils.retry import RetryStrategy, WaitTimeoutError, wait_until
from infra_reconcile.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ReconcileError,
    CredentialError,
    TerraformError,
    CleanupError,
    PublishError,
    ErrorHandler,
    error_handler,
    get_error_code,
    is_not_found,
)
from infra_reconcile.utils.logging import LogContext, get_logger, setup_logging

__all__ = [
    # AWS Client
    'AWSClientManager',
    'AWSCredentials',

    # Retry
    'RetryStrategy',
    'WaitTimeoutError',
    'wait_until',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ReconcileError',
    'CredentialError',
    'TerraformError',
    'CleanupError',
    'PublishError',
    'ErrorHandler',
    'error_handler',
    'get_error_code',
    'is_not_found',

    # Logging
    'LogContext',
    'get_logger',
    'setup_logging',
]
