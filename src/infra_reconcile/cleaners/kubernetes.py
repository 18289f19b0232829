"""Removal of demo namespaces and ingresses through kubectl."""

import re
import tempfile
import time
from pathlib import Path
from typing import Callable, List, Optional

from infra_reconcile.state.models import ManagedResourceRef, ResourceKind
from infra_reconcile.terraform.runner import CommandResult, CommandRunner
from infra_reconcile.utils.logging import LogContext, get_logger

from .base import BaseCleaner, StepResult, StepStatus

logger = get_logger(__name__)

INGRESS_JSONPATH = '{range .items[*]}{.metadata.namespace}{" "}{.metadata.name}{"\\n"}{end}'
NAMESPACE_JSONPATH = '{.items[*].metadata.name}'

# stderr of `aws eks update-kubeconfig` when the cluster does not exist
CLUSTER_NOT_FOUND_MARKERS = ('ResourceNotFoundException', 'No cluster found')


class KubernetesCleaner(BaseCleaner):
    """Deletes ingresses and demo namespaces so the load balancer controller
    releases the ALBs it created.

    Credentials for the cluster are written to a kubeconfig owned by the run
    and every kubectl call is pinned to it, so the caller's current context
    is never used. Deletions are issued with ``--wait=false``; a fixed settle
    period follows once anything was deleted. A missing cluster, or one whose
    API cannot be reached, is treated as already gone.
    """

    step = "k8s_cleanup"

    def __init__(
        self,
        cluster_name: str,
        region: str,
        namespace_pattern: str = "^(neo4j-|movie-|social-|basic-)",
        runner: Optional[CommandRunner] = None,
        settle_seconds: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
        kubeconfig: Optional[str] = None
    ):
        """Initialize Kubernetes cleaner.

        Args:
            cluster_name: EKS cluster name
            region: AWS region of the cluster
            namespace_pattern: Regex selecting demo namespaces
            runner: Command runner for aws and kubectl
            settle_seconds: Pause after deletions were issued
            sleep: Sleep function (injectable for tests)
            kubeconfig: Kubeconfig path to write; a temporary file when omitted
        """
        super().__init__()
        self.cluster_name = cluster_name
        self.region = region
        self.namespace_pattern = re.compile(namespace_pattern)
        self.runner = runner or CommandRunner(timeout=300)
        self.settle_seconds = settle_seconds
        self.sleep = sleep
        self.kubeconfig = kubeconfig

    def cleanup(self) -> List[StepResult]:
        if self.kubeconfig:
            return self._cleanup(self.kubeconfig)

        with tempfile.TemporaryDirectory(prefix="infra-reconcile-") as workdir:
            return self._cleanup(str(Path(workdir) / "kubeconfig"))

    def _cleanup(self, kubeconfig: str) -> List[StepResult]:
        cluster_ref = ManagedResourceRef(resource_type=ResourceKind.K8S_NAMESPACE, external_id=self.cluster_name)

        with LogContext(logger, step=self.step, resource_id=self.cluster_name):
            credentials = self.runner.run([
                'aws', 'eks', 'update-kubeconfig',
                '--name', self.cluster_name,
                '--region', self.region,
                '--kubeconfig', kubeconfig,
            ])
            if not credentials.ok:
                return [self._kubeconfig_failed(cluster_ref, credentials)]

            namespaces = self._kubectl(kubeconfig, ['get', 'namespaces', '-o', f'jsonpath={NAMESPACE_JSONPATH}'])
            if not namespaces.ok:
                logger.warning(f"Could not access Kubernetes API for {self.cluster_name}: {namespaces.stderr.strip()}")
                return [StepResult(ref=cluster_ref, action='get_namespaces', status=StepStatus.ABSENT)]

            results = self._delete_ingresses(kubeconfig)

            demo_namespaces = [
                name for name in namespaces.stdout.split()
                if self.namespace_pattern.match(name)
            ]
            for namespace in demo_namespaces:
                ref = ManagedResourceRef(resource_type=ResourceKind.K8S_NAMESPACE, external_id=namespace)
                results.append(self._kubectl_delete(kubeconfig, ref, ['namespace', namespace]))

            if results:
                logger.info(f"Waiting {self.settle_seconds:.0f}s for resources to start cleaning up...")
                self.sleep(self.settle_seconds)
            else:
                logger.info("No demo namespaces or ingresses found")

            return results

    def _kubeconfig_failed(self, ref: ManagedResourceRef, result: CommandResult) -> StepResult:
        """Classify a failed ``update-kubeconfig``; kubectl is never run after one."""
        stderr = result.stderr.strip()
        if any(marker in stderr for marker in CLUSTER_NOT_FOUND_MARKERS):
            logger.info(f"Cluster {self.cluster_name} not found, nothing to clean")
            return StepResult(ref=ref, action='update_kubeconfig', status=StepStatus.ABSENT, detail=stderr)

        logger.error(f"update-kubeconfig failed for {self.cluster_name}: {stderr}")
        return StepResult(
            ref=ref,
            action='update_kubeconfig',
            status=StepStatus.FAILED,
            detail=f"exit {result.exit_code}: {stderr}",
        )

    def _kubectl(self, kubeconfig: str, args: List[str]) -> CommandResult:
        return self.runner.run(['kubectl', *args, '--kubeconfig', kubeconfig])

    def _delete_ingresses(self, kubeconfig: str) -> List[StepResult]:
        listing = self._kubectl(kubeconfig, [
            'get', 'ingress', '--all-namespaces', '-o', f'jsonpath={INGRESS_JSONPATH}'
        ])
        if not listing.ok:
            logger.warning(f"Could not list ingresses: {listing.stderr.strip()}")
            return []

        results = []
        for line in listing.stdout.splitlines():
            parts = line.split()
            if len(parts) != 2:
                continue
            namespace, name = parts
            ref = ManagedResourceRef(resource_type=ResourceKind.K8S_INGRESS, external_id=f"{namespace}/{name}")
            results.append(self._kubectl_delete(kubeconfig, ref, ['ingress', '-n', namespace, name]))
        return results

    def _kubectl_delete(self, kubeconfig: str, ref: ManagedResourceRef, target: List[str]) -> StepResult:
        logger.info(f"Deleting {ref}")
        result = self._kubectl(kubeconfig, ['delete', *target, '--wait=false', '--ignore-not-found=true'])
        if result.ok:
            return StepResult(ref=ref, action='kubectl_delete', status=StepStatus.DONE)

        logger.error(f"kubectl delete failed for {ref}: {result.stderr.strip()}")
        return StepResult(
            ref=ref,
            action='kubectl_delete',
            status=StepStatus.FAILED,
            detail=f"exit {result.exit_code}: {result.stderr.strip()}",
        )
