"""Removal of container images so Terraform can delete the repositories."""

from typing import List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from infra_reconcile.state.models import ManagedResourceRef, ResourceKind
from infra_reconcile.utils.logging import get_logger
from infra_reconcile.utils.retry import RetryStrategy

from .base import BaseCleaner, StepResult, StepStatus

logger = get_logger(__name__)

# batch_delete_image accepts at most 100 image ids per call
BATCH_SIZE = 100


class ECRImageCleaner(BaseCleaner):
    """Deletes every image in the given ECR repositories."""

    step = "ecr_images"

    def __init__(self, boto_session, repositories: List[str], retry: Optional[RetryStrategy] = None):
        super().__init__(boto_session, retry)
        self.repositories = list(repositories)
        self.ecr_client = boto_session.client('ecr')

    def cleanup(self) -> List[StepResult]:
        results = []
        for repository in self.repositories:
            results.extend(self.cleanup_repository(repository))
        return results

    def cleanup_repository(self, repository: str) -> List[StepResult]:
        """Delete all images of one repository.

        Args:
            repository: Repository name

        Returns:
            Probe result when the repository is absent, otherwise one
            result per delete batch followed by one per deleted or failed image
        """
        repo_ref = ManagedResourceRef(resource_type=ResourceKind.ECR_REPOSITORY, external_id=repository)
        probe = self._call(
            repo_ref, 'describe_repositories', self.ecr_client.describe_repositories,
            repositoryNames=[repository]
        )
        if probe.status != StepStatus.DONE:
            return [probe]

        try:
            image_ids = self._list_image_ids(repository)
        except (ClientError, BotoCoreError) as e:
            return [self._failed(repo_ref, 'list_images', e)]

        if not image_ids:
            logger.info(f"Repository {repository} has no images")
            return [probe]

        logger.info(f"Deleting {len(image_ids)} images from {repository}...")
        results = []
        for start in range(0, len(image_ids), BATCH_SIZE):
            batch = image_ids[start:start + BATCH_SIZE]
            result = self._call(
                repo_ref, 'batch_delete_image', self.ecr_client.batch_delete_image,
                repositoryName=repository, imageIds=batch
            )
            results.append(result)
            if result.status == StepStatus.DONE:
                results.extend(self._batch_outcomes(repository, result))

        return results

    def _list_image_ids(self, repository: str) -> List[dict]:
        image_ids = []
        paginator = self.ecr_client.get_paginator('list_images')
        for page in paginator.paginate(repositoryName=repository):
            image_ids.extend(page.get('imageIds', []))
        return image_ids

    def _batch_outcomes(self, repository: str, result: StepResult) -> List[StepResult]:
        """Per-image results reported inside a successful batch response.

        The batch result itself refers to the repository, which stays in place.
        """
        outcomes = [
            StepResult(ref=self._image_ref(repository, image), action='delete_image', status=StepStatus.DONE)
            for image in result.response.get('imageIds', [])
        ]
        for failure in result.response.get('failures', []):
            if failure.get('failureCode') == 'ImageNotFound':
                continue
            ref = self._image_ref(repository, failure.get('imageId', {}))
            outcomes.append(
                StepResult(
                    ref=ref,
                    action='batch_delete_image',
                    status=StepStatus.FAILED,
                    detail=f"{failure.get('failureCode')}: {failure.get('failureReason', '')}",
                )
            )
            logger.error(f"Failed to delete image {ref.external_id}: {failure.get('failureReason', '')}")
        return outcomes

    @staticmethod
    def _image_ref(repository: str, image: dict) -> ManagedResourceRef:
        ident = image.get('imageDigest') or image.get('imageTag', 'unknown')
        return ManagedResourceRef(resource_type=ResourceKind.ECR_IMAGE, external_id=f"{repository}@{ident}")
