"""Removal of lingering application load balancers and target groups."""

from typing import Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from infra_reconcile.state.models import ManagedResourceRef, ResourceKind
from infra_reconcile.utils.logging import get_logger
from infra_reconcile.utils.retry import RetryStrategy

from .base import BaseCleaner, StepResult, StepStatus

logger = get_logger(__name__)

# Tag set by the AWS Load Balancer Controller on everything it creates
CLUSTER_TAG = 'elbv2.k8s.aws/cluster'

# describe_tags accepts at most 20 resource ARNs per call
TAG_BATCH_SIZE = 20


class LoadBalancerCleaner(BaseCleaner):
    """Deletes listeners, load balancers and then target groups.

    A load balancer or target group is selected when its name contains one
    of the configured substrings or when it is tagged as owned by the
    cluster's load balancer controller.
    """

    step = "load_balancers"

    def __init__(
        self,
        boto_session,
        name_match: List[str],
        cluster_name: Optional[str] = None,
        retry: Optional[RetryStrategy] = None,
        timeout: int = 600,
        poll_interval: float = 15.0
    ):
        """Initialize load balancer cleaner.

        Args:
            boto_session: Configured boto3 session
            name_match: Name substrings selecting load balancers and target groups
            cluster_name: EKS cluster whose controller-owned resources are removed
            retry: Bounded retry strategy
            timeout: Seconds to wait for load balancer deletion
            poll_interval: Seconds between deletion checks
        """
        super().__init__(boto_session, retry)
        self.name_match = [m for m in name_match if m]
        self.cluster_name = cluster_name
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.elbv2_client = boto_session.client('elbv2')

    def cleanup(self) -> List[StepResult]:
        results = []

        try:
            load_balancers = self._select(self._describe('describe_load_balancers', 'LoadBalancers'),
                                          'LoadBalancerName', 'LoadBalancerArn')
        except (ClientError, BotoCoreError) as e:
            ref = ManagedResourceRef(resource_type=ResourceKind.LOAD_BALANCER, external_id='*')
            return [self._failed(ref, 'describe_load_balancers', e)]

        deleted_arns = []
        for lb in load_balancers:
            lb_results = self._delete_load_balancer(lb)
            results.extend(lb_results)
            if lb_results and lb_results[-1].status == StepStatus.DONE:
                deleted_arns.append(lb['LoadBalancerArn'])

        if deleted_arns:
            results.extend(self._wait_deleted(deleted_arns))

        try:
            target_groups = self._select(self._describe('describe_target_groups', 'TargetGroups'),
                                         'TargetGroupName', 'TargetGroupArn')
        except (ClientError, BotoCoreError) as e:
            ref = ManagedResourceRef(resource_type=ResourceKind.TARGET_GROUP, external_id='*')
            results.append(self._failed(ref, 'describe_target_groups', e))
            return results

        for tg in target_groups:
            ref = ManagedResourceRef(resource_type=ResourceKind.TARGET_GROUP, external_id=tg['TargetGroupArn'])
            logger.info(f"Deleting target group {tg['TargetGroupName']}")
            results.append(self._call(
                ref, 'delete_target_group', self.elbv2_client.delete_target_group,
                TargetGroupArn=tg['TargetGroupArn']
            ))

        if not results:
            logger.info("No lingering load balancers or target groups found")
        return results

    def _describe(self, operation: str, key: str) -> List[Dict]:
        items = []
        paginator = self.elbv2_client.get_paginator(operation)
        for page in paginator.paginate():
            items.extend(page.get(key, []))
        return items

    def _select(self, items: List[Dict], name_key: str, arn_key: str) -> List[Dict]:
        """Filter by name substring, then by controller ownership tag."""
        selected = [item for item in items if any(m in item[name_key] for m in self.name_match)]
        if not self.cluster_name:
            return selected

        chosen = {item[arn_key] for item in selected}
        remaining = [item for item in items if item[arn_key] not in chosen]
        owned = self._owned_by_cluster([item[arn_key] for item in remaining])
        selected.extend(item for item in remaining if item[arn_key] in owned)
        return selected

    def _owned_by_cluster(self, arns: List[str]) -> set:
        owned = set()
        for start in range(0, len(arns), TAG_BATCH_SIZE):
            response = self.elbv2_client.describe_tags(ResourceArns=arns[start:start + TAG_BATCH_SIZE])
            for description in response.get('TagDescriptions', []):
                tags = {t['Key']: t['Value'] for t in description.get('Tags', [])}
                if tags.get(CLUSTER_TAG) == self.cluster_name:
                    owned.add(description['ResourceArn'])
        return owned

    def _delete_load_balancer(self, lb: Dict) -> List[StepResult]:
        arn = lb['LoadBalancerArn']
        lb_ref = ManagedResourceRef(resource_type=ResourceKind.LOAD_BALANCER, external_id=arn)
        logger.info(f"Deleting load balancer {lb['LoadBalancerName']}")

        listing = self._call(lb_ref, 'describe_listeners', self.elbv2_client.describe_listeners, LoadBalancerArn=arn)
        if listing.status == StepStatus.ABSENT:
            return [listing]

        results = []
        if listing.status == StepStatus.FAILED:
            results.append(listing)
        for listener in listing.response.get('Listeners', []):
            ref = ManagedResourceRef(resource_type=ResourceKind.LISTENER, external_id=listener['ListenerArn'])
            results.append(self._call(
                ref, 'delete_listener', self.elbv2_client.delete_listener, ListenerArn=listener['ListenerArn']
            ))

        results.append(self._call(lb_ref, 'delete_load_balancer', self.elbv2_client.delete_load_balancer,
                                  LoadBalancerArn=arn))
        return results

    def _wait_deleted(self, arns: List[str]) -> List[StepResult]:
        logger.info(f"Waiting for {len(arns)} load balancers to be deleted...")
        delay = max(int(self.poll_interval), 1)
        waiter = self.elbv2_client.get_waiter('load_balancers_deleted')
        try:
            waiter.wait(
                LoadBalancerArns=arns,
                WaiterConfig={'Delay': delay, 'MaxAttempts': max(self.timeout // delay, 1)}
            )
        except WaiterError as e:
            ref = ManagedResourceRef(resource_type=ResourceKind.LOAD_BALANCER, external_id=','.join(arns))
            return [self._failed(ref, 'wait_load_balancers_deleted', e)]
        return []
