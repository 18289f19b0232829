"""Best-effort cleaners for objects that block Terraform."""

from .base import BaseCleaner, StepResult, StepStatus
from .ecr import ECRImageCleaner
from .eks import NodegroupCleaner
from .kubernetes import KubernetesCleaner
from .load_balancer import LoadBalancerCleaner
from .network import NetworkCleaner
from .state_backend import StateBackendCleaner

__all__ = [
    "BaseCleaner",
    "StepResult",
    "StepStatus",
    "ECRImageCleaner",
    "NodegroupCleaner",
    "KubernetesCleaner",
    "LoadBalancerCleaner",
    "NetworkCleaner",
    "StateBackendCleaner",
]
