"""Error handling framework for reconciliation runs."""

from typing import Optional, Dict, Any, List
from enum import Enum
from dataclasses import dataclass
from botocore.exceptions import ClientError, NoCredentialsError, PartialCredentialsError
from infra_reconcile.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors that can occur during reconciliation."""
    AWS = "aws"
    NETWORK = "network"
    STATE = "state"
    TERRAFORM = "terraform"
    CLEANUP = "cleanup"
    IMPORT = "import"
    PUBLISH = "publish"
    CREDENTIAL = "credential"
    PERMISSION = "permission"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    CRITICAL = "critical"  # Run cannot continue
    ERROR = "error"  # Step failed but run can continue
    WARNING = "warning"  # Non-fatal issue
    INFO = "info"  # Informational message


@dataclass
class ErrorContext:
    """Context information for an error."""
    resource_id: Optional[str] = None
    resource_type: Optional[str] = None
    operation: Optional[str] = None
    aws_service: Optional[str] = None
    aws_operation: Optional[str] = None
    request_id: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


# AWS error codes that mean "the thing is already gone / never existed"
NOT_FOUND_ERROR_CODES = {
    '404',
    'NotFound',
    'NoSuchBucket',
    'NoSuchKey',
    'ResourceNotFoundException',
    'RepositoryNotFoundException',
    'ParameterNotFound',
    'NotFoundException',
    'InvalidNatGatewayID.NotFound',
    'NatGatewayNotFound',
    'InvalidAllocationID.NotFound',
    'InvalidNetworkInterfaceID.NotFound',
    'InvalidAttachmentID.NotFound',
    'InvalidVpcID.NotFound',
    'LoadBalancerNotFound',
    'ListenerNotFound',
    'TargetGroupNotFound',
}


def get_error_code(error: Exception) -> str:
    """Return the AWS error code of a ClientError, or an empty string."""
    if isinstance(error, ClientError):
        return error.response.get('Error', {}).get('Code', '')
    return ''


def is_not_found(error: Exception) -> bool:
    """Check whether an exception signals an absent resource.

    Args:
        error: Exception raised by a boto3 call

    Returns:
        True if the error code is one of the known "not found" codes
    """
    return get_error_code(error) in NOT_FOUND_ERROR_CODES


class ReconcileError(Exception):
    """Base exception for reconciliation errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize reconciliation error.

        Args:
            message: Human-readable error message
            category: Error category
            severity: Error severity
            context: Additional context about the error
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = suggestions or []

    def to_user_message(self) -> str:
        """Convert error to user-friendly message.

        Returns:
            Formatted error message for display to user
        """
        lines = [f"{self.severity.value.upper()}: {self.message}"]

        if self.context.resource_id:
            lines.append(f"   Resource: {self.context.resource_id}")
        if self.context.operation:
            lines.append(f"   Operation: {self.context.operation}")

        if self.cause:
            lines.append(f"   Cause: {str(self.cause)}")

        if self.suggestions:
            lines.append("\nSuggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of the error
        """
        return {
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'context': {
                'resource_id': self.context.resource_id,
                'resource_type': self.context.resource_type,
                'operation': self.context.operation,
                'aws_service': self.context.aws_service,
                'aws_operation': self.context.aws_operation,
                'request_id': self.context.request_id,
                'additional_info': self.context.additional_info
            },
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions
        }


class CredentialError(ReconcileError):
    """Error related to AWS credentials."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.CREDENTIAL,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class TerraformError(ReconcileError):
    """Terraform exited with a non-zero status."""

    def __init__(self, message: str, exit_code: Optional[int] = None, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.TERRAFORM,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )
        self.exit_code = exit_code


class CleanupError(ReconcileError):
    """Pre-destroy cleanup hit errors that survived the bounded retry."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.CLEANUP,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class PublishError(ReconcileError):
    """Writing to the parameter store failed."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.PUBLISH,
            severity=ErrorSeverity.WARNING,
            **kwargs
        )


class ErrorHandler:
    """Handles and categorizes errors from AWS and other sources."""

    # Mapping of AWS error codes to error categories and suggestions
    AWS_ERROR_MAPPING = {
        'InvalidClientTokenId': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS credentials are invalid or expired',
            'suggestions': [
                'Check that the CI secrets AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY are set',
                'Verify credentials using: aws sts get-caller-identity',
            ]
        },
        'ExpiredToken': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS session token has expired',
            'suggestions': [
                'Refresh your AWS session credentials',
                'Re-run the job to obtain a fresh session',
            ]
        },
        'AccessDenied': {
            'category': ErrorCategory.PERMISSION,
            'message': 'Access denied - insufficient permissions',
            'suggestions': [
                'Check IAM policies attached to the CI user/role',
                'Verify the bucket is not owned by another account',
            ]
        },
        'UnauthorizedOperation': {
            'category': ErrorCategory.PERMISSION,
            'message': 'Operation not authorized',
            'suggestions': [
                'Add the required IAM permission for this operation',
                'Verify you are operating in the correct AWS region',
            ]
        },
        'BucketNotEmpty': {
            'category': ErrorCategory.CLEANUP,
            'message': 'Bucket still contains objects',
            'suggestions': [
                'Re-run the job; versions written concurrently are removed on the next pass',
            ]
        },
        'ResourceInUseException': {
            'category': ErrorCategory.CLEANUP,
            'message': 'Resource is currently in use',
            'suggestions': [
                'Wait for the resource to become available',
                'Check for dependencies that are using this resource',
            ]
        },
        'DependencyViolation': {
            'category': ErrorCategory.CLEANUP,
            'message': 'Resource has dependent objects',
            'suggestions': [
                'Remove dependent network objects first',
                'Re-run destroy once NAT gateways finish deleting',
            ]
        },
        'ParameterLimitExceeded': {
            'category': ErrorCategory.PUBLISH,
            'message': 'Parameter store limit exceeded',
            'suggestions': [
                'Remove unused parameters under this environment namespace',
            ]
        },
        'ValidationException': {
            'category': ErrorCategory.VALIDATION,
            'message': 'Invalid parameter or configuration',
            'suggestions': [
                'Review the error message for specific validation failures',
            ]
        },
        'RequestTimeout': {
            'category': ErrorCategory.NETWORK,
            'message': 'Request timed out',
            'suggestions': [
                'Check network connectivity from the runner',
                'Retry the operation',
            ]
        },
        'ServiceUnavailable': {
            'category': ErrorCategory.NETWORK,
            'message': 'AWS service temporarily unavailable',
            'suggestions': [
                'Wait a few moments and retry',
                'Check AWS Service Health Dashboard',
            ]
        }
    }

    def __init__(self):
        """Initialize error handler."""
        self.logger = get_logger(__name__)

    def handle_exception(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None
    ) -> ReconcileError:
        """Handle an exception and convert to ReconcileError.

        Args:
            error: The exception to handle
            context: Additional context about where the error occurred

        Returns:
            ReconcileError with categorization and suggestions
        """
        context = context or ErrorContext()

        if isinstance(error, ReconcileError):
            return error

        if isinstance(error, ClientError):
            return self._handle_aws_error(error, context)

        if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
            return CredentialError(
                message='No usable AWS credentials found',
                context=context,
                cause=error,
                suggestions=[
                    'Set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY environment variables',
                    'Specify a profile with --profile',
                ]
            )

        if isinstance(error, (ConnectionError, TimeoutError)):
            return ReconcileError(
                message=f'Network error: {str(error)}',
                category=ErrorCategory.NETWORK,
                context=context,
                cause=error,
                suggestions=['Check network connectivity from the runner']
            )

        return ReconcileError(
            message=str(error),
            category=ErrorCategory.UNKNOWN,
            severity=ErrorSeverity.ERROR,
            context=context,
            cause=error,
            suggestions=['Check logs for more details']
        )

    def _handle_aws_error(
        self,
        error: ClientError,
        context: ErrorContext
    ) -> ReconcileError:
        """Handle AWS ClientError.

        Args:
            error: The ClientError
            context: Error context

        Returns:
            Categorized ReconcileError
        """
        error_code = error.response.get('Error', {}).get('Code', 'Unknown')
        error_message = error.response.get('Error', {}).get('Message', str(error))
        request_id = error.response.get('ResponseMetadata', {}).get('RequestId')

        context.request_id = request_id
        context.aws_operation = context.aws_operation or error.operation_name

        error_info = self.AWS_ERROR_MAPPING.get(error_code)

        if error_info:
            return ReconcileError(
                message=f"{error_info['message']}: {error_message}",
                category=error_info['category'],
                severity=ErrorSeverity.ERROR,
                context=context,
                cause=error,
                suggestions=error_info['suggestions']
            )

        return ReconcileError(
            message=f"AWS Error ({error_code}): {error_message}",
            category=ErrorCategory.AWS,
            severity=ErrorSeverity.ERROR,
            context=context,
            cause=error,
            suggestions=[
                'Check AWS documentation for this error code',
                f'AWS Request ID: {request_id}',
            ]
        )

    def log_error(self, error: ReconcileError):
        """Log an error with appropriate level.

        Args:
            error: The error to log
        """
        log_message = error.to_user_message()

        if error.severity in (ErrorSeverity.CRITICAL, ErrorSeverity.ERROR):
            self.logger.error(log_message)
        elif error.severity == ErrorSeverity.WARNING:
            self.logger.warning(log_message)
        else:
            self.logger.info(log_message)

        self.logger.debug(f"Error details: {error.to_dict()}")


# Global error handler instance
error_handler = ErrorHandler()
