"""Removal of EKS managed node groups ahead of cluster destruction."""

from typing import List, Optional

from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from infra_reconcile.state.models import ManagedResourceRef, ResourceKind
from infra_reconcile.utils.logging import get_logger
from infra_reconcile.utils.retry import RetryStrategy

from .base import BaseCleaner, StepResult, StepStatus

logger = get_logger(__name__)


class NodegroupCleaner(BaseCleaner):
    """Deletes all node groups of a cluster, one at a time, waiting for each."""

    step = "eks_nodegroups"

    def __init__(
        self,
        boto_session,
        cluster_name: str,
        retry: Optional[RetryStrategy] = None,
        timeout: int = 1200,
        poll_interval: float = 30.0
    ):
        """Initialize node group cleaner.

        Args:
            boto_session: Configured boto3 session
            cluster_name: EKS cluster name
            retry: Bounded retry strategy
            timeout: Seconds to wait for each node group deletion
            poll_interval: Seconds between status checks
        """
        super().__init__(boto_session, retry)
        self.cluster_name = cluster_name
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.eks_client = boto_session.client('eks')

    def cleanup(self) -> List[StepResult]:
        cluster_ref = ManagedResourceRef(resource_type=ResourceKind.EKS_NODEGROUP, external_id=self.cluster_name)
        probe = self._call(cluster_ref, 'describe_cluster', self.eks_client.describe_cluster, name=self.cluster_name)
        if probe.status != StepStatus.DONE:
            return [probe]

        try:
            nodegroups = self._list_nodegroups()
        except (ClientError, BotoCoreError) as e:
            return [self._failed(cluster_ref, 'list_nodegroups', e)]

        if not nodegroups:
            logger.info(f"Cluster {self.cluster_name} has no node groups")
            return [probe]

        results = []
        for nodegroup in nodegroups:
            results.append(self._delete_nodegroup(nodegroup))
        return results

    def _list_nodegroups(self) -> List[str]:
        nodegroups = []
        paginator = self.eks_client.get_paginator('list_nodegroups')
        for page in paginator.paginate(clusterName=self.cluster_name):
            nodegroups.extend(page.get('nodegroups', []))
        return nodegroups

    def _delete_nodegroup(self, nodegroup: str) -> StepResult:
        ref = ManagedResourceRef(
            resource_type=ResourceKind.EKS_NODEGROUP,
            external_id=f"{self.cluster_name}/{nodegroup}",
        )
        logger.info(f"Deleting node group {nodegroup}...")
        result = self._call(
            ref, 'delete_nodegroup', self.eks_client.delete_nodegroup,
            clusterName=self.cluster_name, nodegroupName=nodegroup
        )
        if result.status != StepStatus.DONE:
            return result

        delay = max(int(self.poll_interval), 1)
        waiter = self.eks_client.get_waiter('nodegroup_deleted')
        try:
            waiter.wait(
                clusterName=self.cluster_name,
                nodegroupName=nodegroup,
                WaiterConfig={'Delay': delay, 'MaxAttempts': max(self.timeout // delay, 1)}
            )
        except WaiterError as e:
            return self._failed(ref, 'wait_nodegroup_deleted', e)

        logger.info(f"Node group {nodegroup} deleted")
        return result
