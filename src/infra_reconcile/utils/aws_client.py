"""AWS client management and session handling."""

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError, NoCredentialsError, PartialCredentialsError
from typing import Optional, Dict, Any
from dataclasses import dataclass
from infra_reconcile.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class AWSCredentials:
    """AWS credential information."""
    account_id: str
    user_arn: str
    region: str
    profile: Optional[str] = None


class AWSClientManager:
    """Manages a boto3 session and caches the service clients built from it."""

    def __init__(
        self,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        session: Optional[boto3.Session] = None
    ):
        """Initialize AWS client manager.

        Args:
            profile: AWS profile name to use
            region: AWS region to use
            session: Pre-built boto3 session (skips profile/region handling)
        """
        self.profile = profile
        self.region = region
        self._session: Optional[boto3.Session] = session
        self._clients: Dict[str, Any] = {}
        self._credentials: Optional[AWSCredentials] = None

        self._boto_config = Config(
            retries={
                'mode': 'standard',
                'max_attempts': 3
            },
            connect_timeout=10,
            read_timeout=60
        )

    @property
    def session(self) -> boto3.Session:
        """Get or create boto3 session.

        Returns:
            Configured boto3 session
        """
        if self._session is None:
            kwargs = {}
            if self.profile:
                kwargs['profile_name'] = self.profile
            if self.region:
                kwargs['region_name'] = self.region

            self._session = boto3.Session(**kwargs)
            logger.info(f"Created AWS session - Region: {self._session.region_name}, "
                        f"Profile: {self.profile or 'default'}")

        return self._session

    def get_client(self, service_name: str):
        """Get boto3 client for a service.

        Args:
            service_name: AWS service name (e.g., 's3', 'ssm')

        Returns:
            Boto3 client for the service
        """
        if service_name in self._clients:
            return self._clients[service_name]

        client = self.session.client(service_name, config=self._boto_config)
        self._clients[service_name] = client

        logger.debug(f"Created {service_name} client")

        return client

    def validate_credentials(self) -> AWSCredentials:
        """Validate AWS credentials and return credential information.

        Returns:
            AWSCredentials object with account and user information

        Raises:
            NoCredentialsError: If no credentials are found
            PartialCredentialsError: If credentials are incomplete
            ClientError: If credentials are invalid
        """
        if self._credentials is not None:
            return self._credentials

        try:
            identity = self.get_client('sts').get_caller_identity()
        except (NoCredentialsError, PartialCredentialsError):
            logger.error("No AWS credentials found. Configure credentials using "
                         "environment variables, a profile, or an IAM role.")
            raise
        except ClientError as e:
            logger.error(f"Failed to validate AWS credentials: {e}")
            raise

        self._credentials = AWSCredentials(
            account_id=identity['Account'],
            user_arn=identity['Arn'],
            region=self.session.region_name,
            profile=self.profile
        )

        logger.info(f"AWS credentials validated - Account: {self._credentials.account_id}, "
                    f"Region: {self._credentials.region}")

        return self._credentials
