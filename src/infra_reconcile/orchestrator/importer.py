"""Binding of existing-but-untracked cloud objects into Terraform state."""

from typing import Dict, Iterable, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from infra_reconcile.state.models import ManagedResourceRef, ReconciliationOutcome, ResourceKind
from infra_reconcile.terraform.runner import TerraformRunner
from infra_reconcile.utils.errors import ErrorCategory, get_error_code, is_not_found
from infra_reconcile.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

STEP = "import"


class ResourceProbe:
    """Answers whether an importable object exists in AWS."""

    SUPPORTED_KINDS = (ResourceKind.ECR_REPOSITORY, ResourceKind.KMS_ALIAS)

    def __init__(self, boto_session):
        self.ecr_client = boto_session.client('ecr')
        self.kms_client = boto_session.client('kms')

    def exists(self, ref: ManagedResourceRef) -> bool:
        """Check existence of the referenced object.

        Raises:
            ValueError: For kinds that cannot be imported
            ClientError: For errors other than "not found"
        """
        if ref.resource_type == ResourceKind.ECR_REPOSITORY:
            return self._repository_exists(ref.external_id)
        if ref.resource_type == ResourceKind.KMS_ALIAS:
            return self._alias_exists(ref.external_id)
        raise ValueError(f"Unsupported import kind: {ref.resource_type.value}")

    def _repository_exists(self, name: str) -> bool:
        try:
            self.ecr_client.describe_repositories(repositoryNames=[name])
        except ClientError as e:
            if is_not_found(e):
                return False
            raise
        return True

    def _alias_exists(self, alias_name: str) -> bool:
        paginator = self.kms_client.get_paginator('list_aliases')
        for page in paginator.paginate():
            if any(alias['AliasName'] == alias_name for alias in page.get('Aliases', [])):
                return True
        return False


class ImportReconciler:
    """Imports each existing object whose state address is not yet tracked.

    Per reference: probe AWS (absent means no Terraform call at all), check
    ``terraform state show``, and import only when untracked. A failure is
    recorded and the next reference is processed.
    """

    def __init__(
        self,
        probe: ResourceProbe,
        terraform: TerraformRunner,
        variables: Optional[Dict[str, str]] = None
    ):
        self.probe = probe
        self.terraform = terraform
        self.variables = variables

    def reconcile(self, refs: Iterable[ManagedResourceRef], outcome: ReconciliationOutcome) -> List[ManagedResourceRef]:
        """Import untracked objects.

        Args:
            refs: Import candidates (each with a state address)
            outcome: Run outcome collecting imports and failures

        Returns:
            References imported by this call
        """
        imported = []
        for ref in refs:
            with LogContext(logger, step=STEP, resource_id=ref.external_id,
                            resource_type=ref.resource_type.value):
                if self._reconcile_one(ref, outcome):
                    imported.append(ref)
                    outcome.imported.append(ref)

        logger.info(f"Imported {len(imported)} existing resource(s)")
        return imported

    def _reconcile_one(self, ref: ManagedResourceRef, outcome: ReconciliationOutcome) -> bool:
        if not ref.state_address:
            outcome.record_failure(STEP, f"{ref} has no state address", resource=ref,
                                   category=ErrorCategory.VALIDATION.value)
            return False

        try:
            exists = self.probe.exists(ref)
        except (ClientError, BotoCoreError, ValueError) as e:
            logger.error(f"Existence check failed for {ref}: {e}")
            outcome.record_failure(STEP, f"Existence check failed for {ref}: {e}", resource=ref,
                                   category=ErrorCategory.AWS.value, error_code=get_error_code(e) or None)
            return False

        if not exists:
            logger.info(f"{ref} does not exist in AWS, nothing to import")
            return False

        if self.terraform.state_show(ref.state_address):
            logger.info(f"{ref.state_address} already tracked in state")
            return False

        logger.info(f"Importing {ref.external_id} into {ref.state_address}")
        result = self.terraform.import_resource(ref.state_address, ref.external_id, variables=self.variables)
        if not result.ok:
            message = result.stderr.strip() or f"exit {result.exit_code}"
            logger.error(f"Import of {ref} failed: {message}")
            outcome.record_failure(STEP, f"Import of {ref} failed: {message}", resource=ref,
                                   category=ErrorCategory.IMPORT.value, error_code=str(result.exit_code))
            return False

        return True
