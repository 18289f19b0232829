"""Narrow read/write handle over SSM Parameter Store used for cross-pipeline hand-off."""

from typing import Optional

from botocore.exceptions import ClientError

from infra_reconcile.utils.errors import is_not_found
from infra_reconcile.utils.logging import get_logger

logger = get_logger(__name__)


def backend_parameter(environment: str, name: str) -> str:
    """Name of a state backend parameter, e.g. ``/terraform/dev/state_bucket``."""
    return f"/terraform/{environment}/{name}"


def project_parameter(prefix: str, environment: str, name: str) -> str:
    """Name of a project parameter, e.g. ``/neo4j-demos/dev/eks-cluster-name``."""
    return f"/{prefix}/{environment}/{name}"


class ParameterStore:
    """Explicit handle on the externally-owned parameter store.

    Reads return ``None`` for missing parameters; any other API error
    propagates so callers can decide whether it is fatal.
    """

    def __init__(self, ssm_client):
        """
        Args:
            ssm_client: boto3 SSM client
        """
        self.client = ssm_client

    def get(self, name: str, decrypt: bool = False) -> Optional[str]:
        """Read a single parameter value.

        Args:
            name: Fully-qualified parameter name
            decrypt: Decrypt SecureString values

        Returns:
            The value, or None when the parameter does not exist
        """
        try:
            response = self.client.get_parameter(Name=name, WithDecryption=decrypt)
        except ClientError as e:
            if is_not_found(e):
                logger.debug(f"Parameter not found: {name}")
                return None
            raise
        return response["Parameter"]["Value"]

    def exists(self, name: str) -> bool:
        """Check whether a parameter exists."""
        return self.get(name) is not None

    def put(self, name: str, value: str, secure: bool = False) -> None:
        """Write a parameter, overwriting any existing value.

        Args:
            name: Fully-qualified parameter name
            value: Value to store
            secure: Store as SecureString instead of String
        """
        self.client.put_parameter(
            Name=name,
            Value=value,
            Type="SecureString" if secure else "String",
            Overwrite=True,
        )
        logger.debug(f"Wrote parameter {name}")
