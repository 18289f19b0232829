"""Removal of NAT gateways, their Elastic IPs and leftover network interfaces."""

import time
from typing import Callable, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from infra_reconcile.state.models import ManagedResourceRef, ResourceKind
from infra_reconcile.utils.errors import is_not_found
from infra_reconcile.utils.logging import get_logger
from infra_reconcile.utils.retry import RetryStrategy, WaitTimeoutError, wait_until

from .base import BaseCleaner, StepResult, StepStatus

logger = get_logger(__name__)

# NAT gateway states after which the gateway no longer holds its addresses
NAT_GONE_STATES = {'deleted', 'failed'}


class NetworkCleaner(BaseCleaner):
    """Tears down the network objects that block VPC deletion.

    Order per VPC: delete NAT gateways, wait until each reports ``deleted``,
    release only the Elastic IPs of confirmed-deleted gateways, then detach
    and delete remaining network interfaces. An Elastic IP whose gateway
    did not finish deleting in time is left alone and reported as failed.
    Gateways found already deleted from an earlier run only have their
    unassociated Elastic IPs released.
    """

    step = "network"

    def __init__(
        self,
        boto_session,
        vpc_name_filter: str,
        retry: Optional[RetryStrategy] = None,
        nat_timeout: int = 600,
        poll_interval: float = 15.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Optional[Callable[[], float]] = None
    ):
        """Initialize network cleaner.

        Args:
            boto_session: Configured boto3 session
            vpc_name_filter: Value of the tag:Name filter selecting VPCs
            retry: Bounded retry strategy
            nat_timeout: Seconds to wait for each NAT gateway deletion
            poll_interval: Seconds between state checks
            sleep: Sleep function (injectable for tests)
            clock: Monotonic clock (injectable for tests)
        """
        super().__init__(boto_session, retry)
        self.vpc_name_filter = vpc_name_filter
        self.nat_timeout = nat_timeout
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.clock = clock
        self.ec2_client = boto_session.client('ec2')

    def cleanup(self) -> List[StepResult]:
        vpc_ref = ManagedResourceRef(resource_type=ResourceKind.VPC, external_id=self.vpc_name_filter)
        probe = self._call(
            vpc_ref, 'describe_vpcs', self.ec2_client.describe_vpcs,
            Filters=[{'Name': 'tag:Name', 'Values': [self.vpc_name_filter]}]
        )
        if probe.status == StepStatus.FAILED:
            return [probe]

        vpc_ids = [vpc['VpcId'] for vpc in probe.response.get('Vpcs', [])]
        if not vpc_ids:
            logger.info(f"No VPC matching {self.vpc_name_filter}, nothing to clean")
            return [StepResult(ref=vpc_ref, action='describe_vpcs', status=StepStatus.ABSENT)]

        results = []
        for vpc_id in vpc_ids:
            logger.info(f"Cleaning network resources in {vpc_id}")
            results.extend(self.cleanup_vpc(vpc_id))
        return results

    def cleanup_vpc(self, vpc_id: str) -> List[StepResult]:
        """Clean a single VPC in dependency order."""
        results = []
        try:
            nat_gateways = self._nat_gateways(vpc_id)
        except (ClientError, BotoCoreError) as e:
            ref = ManagedResourceRef(resource_type=ResourceKind.NAT_GATEWAY, external_id=vpc_id)
            return [self._failed(ref, 'describe_nat_gateways', e)]

        for nat in nat_gateways:
            results.extend(self._delete_nat_gateway(nat))

        results.extend(self._delete_network_interfaces(vpc_id))
        return results

    def _nat_gateways(self, vpc_id: str) -> List[Dict]:
        gateways = []
        paginator = self.ec2_client.get_paginator('describe_nat_gateways')
        for page in paginator.paginate(Filters=[{'Name': 'vpc-id', 'Values': [vpc_id]}]):
            gateways.extend(page.get('NatGateways', []))
        return gateways

    def _delete_nat_gateway(self, nat: Dict) -> List[StepResult]:
        nat_id = nat['NatGatewayId']
        ref = ManagedResourceRef(resource_type=ResourceKind.NAT_GATEWAY, external_id=nat_id)
        allocation_ids = [
            address['AllocationId']
            for address in nat.get('NatGatewayAddresses', [])
            if address.get('AllocationId')
        ]

        if nat.get('State') in NAT_GONE_STATES:
            logger.info(f"NAT gateway {nat_id} is already {nat['State']}, releasing its leftover Elastic IPs")
            return self._release_leftover_addresses(ref, allocation_ids)

        results = []
        if nat.get('State') != 'deleting':
            logger.info(f"Deleting NAT gateway {nat_id}")
            delete = self._call(ref, 'delete_nat_gateway', self.ec2_client.delete_nat_gateway, NatGatewayId=nat_id)
            results.append(delete)
            if delete.status == StepStatus.FAILED:
                return results

        try:
            wait_until(
                lambda: self._nat_gateway_gone(nat_id),
                timeout=self.nat_timeout,
                interval=self.poll_interval,
                description=f"NAT gateway {nat_id} deletion",
                sleep=self.sleep,
                clock=self.clock,
            )
        except (WaitTimeoutError, ClientError, BotoCoreError) as e:
            results.append(self._failed(ref, 'wait_nat_gateway_deleted', e,
                                        detail=f"Elastic IPs kept: {', '.join(allocation_ids) or 'none'}"))
            return results

        logger.info(f"NAT gateway {nat_id} deleted")
        results.extend(self._release_addresses(allocation_ids))
        return results

    def _release_leftover_addresses(self, nat_ref: ManagedResourceRef, allocation_ids: List[str]) -> List[StepResult]:
        """Release addresses a deleted gateway left behind.

        Addresses already released are no longer listed; addresses that were
        associated with something else since are left alone.
        """
        if not allocation_ids:
            return []

        listing = self._call(
            nat_ref, 'describe_addresses', self.ec2_client.describe_addresses,
            Filters=[{'Name': 'allocation-id', 'Values': allocation_ids}]
        )
        if listing.status != StepStatus.DONE:
            return [listing]

        free = [
            address['AllocationId']
            for address in listing.response.get('Addresses', [])
            if not address.get('AssociationId')
        ]
        return self._release_addresses(free)

    def _release_addresses(self, allocation_ids: List[str]) -> List[StepResult]:
        results = []
        for allocation_id in allocation_ids:
            eip_ref = ManagedResourceRef(resource_type=ResourceKind.ELASTIC_IP, external_id=allocation_id)
            logger.info(f"Releasing Elastic IP {allocation_id}")
            results.append(self._call(
                eip_ref, 'release_address', self.ec2_client.release_address, AllocationId=allocation_id
            ))
        return results

    def _nat_gateway_gone(self, nat_id: str) -> bool:
        try:
            response = self.ec2_client.describe_nat_gateways(NatGatewayIds=[nat_id])
        except ClientError as e:
            if is_not_found(e):
                return True
            raise

        gateways = response.get('NatGateways', [])
        return not gateways or all(nat.get('State') in NAT_GONE_STATES for nat in gateways)

    def _delete_network_interfaces(self, vpc_id: str) -> List[StepResult]:
        ref = ManagedResourceRef(resource_type=ResourceKind.NETWORK_INTERFACE, external_id=vpc_id)
        listing = self._call(
            ref, 'describe_network_interfaces', self.ec2_client.describe_network_interfaces,
            Filters=[{'Name': 'vpc-id', 'Values': [vpc_id]}]
        )
        if listing.status != StepStatus.DONE:
            return [listing]

        results = []
        for eni in listing.response.get('NetworkInterfaces', []):
            if eni.get('RequesterManaged'):
                logger.debug(f"Skipping AWS-managed interface {eni['NetworkInterfaceId']}")
                continue
            results.extend(self._delete_network_interface(eni))
        return results

    def _delete_network_interface(self, eni: Dict) -> List[StepResult]:
        eni_id = eni['NetworkInterfaceId']
        ref = ManagedResourceRef(resource_type=ResourceKind.NETWORK_INTERFACE, external_id=eni_id)
        results = []

        attachment_id = (eni.get('Attachment') or {}).get('AttachmentId')
        if attachment_id:
            logger.info(f"Detaching {eni_id} first...")
            detach = self._call(
                ref, 'detach_network_interface', self.ec2_client.detach_network_interface,
                AttachmentId=attachment_id, Force=True
            )
            results.append(detach)
            if detach.status == StepStatus.FAILED:
                return results

            try:
                wait_until(
                    lambda: self._interface_available(eni_id),
                    timeout=self.nat_timeout,
                    interval=self.poll_interval,
                    description=f"interface {eni_id} detachment",
                    sleep=self.sleep,
                    clock=self.clock,
                )
            except (WaitTimeoutError, ClientError, BotoCoreError) as e:
                results.append(self._failed(ref, 'wait_interface_available', e))
                return results

        logger.info(f"Deleting network interface {eni_id}")
        results.append(self._call(
            ref, 'delete_network_interface', self.ec2_client.delete_network_interface, NetworkInterfaceId=eni_id
        ))
        return results

    def _interface_available(self, eni_id: str) -> bool:
        try:
            response = self.ec2_client.describe_network_interfaces(NetworkInterfaceIds=[eni_id])
        except ClientError as e:
            if is_not_found(e):
                return True
            raise

        interfaces = response.get('NetworkInterfaces', [])
        return not interfaces or interfaces[0].get('Status') == 'available'
