"""Data models for environment context, state backend and reconciliation results."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


DEFAULT_STATE_KEY = "terraform.tfstate"


class ResourceKind(Enum):
    """Kinds of cloud objects the reconciler touches."""
    S3_BUCKET = "s3_bucket"
    DYNAMODB_TABLE = "dynamodb_table"
    ECR_REPOSITORY = "ecr_repository"
    ECR_IMAGE = "ecr_image"
    KMS_ALIAS = "kms_alias"
    EKS_NODEGROUP = "eks_nodegroup"
    K8S_NAMESPACE = "k8s_namespace"
    K8S_INGRESS = "k8s_ingress"
    LOAD_BALANCER = "load_balancer"
    LISTENER = "listener"
    TARGET_GROUP = "target_group"
    VPC = "vpc"
    NAT_GATEWAY = "nat_gateway"
    ELASTIC_IP = "elastic_ip"
    NETWORK_INTERFACE = "network_interface"
    PARAMETER = "parameter"


class EnvironmentContext(BaseModel):
    """Identifies the environment a run targets. Immutable per run."""

    model_config = ConfigDict(frozen=True)

    environment: str = Field(..., min_length=1, description="Environment name (dev, staging, prod)")
    region: str = Field(..., min_length=1, description="AWS region")
    prefix: str = Field("neo4j-demos", min_length=1, description="Naming prefix for derived resources")


class StateBackendHandle(BaseModel):
    """Names of the Terraform state bucket and lock table for one environment."""

    model_config = ConfigDict(frozen=True)

    bucket: str = Field(..., min_length=1, description="S3 bucket holding the state file")
    lock_table: str = Field(..., min_length=1, description="DynamoDB table used for state locking")
    state_key: str = Field(DEFAULT_STATE_KEY, description="Object key of the state file")
    region: Optional[str] = Field(None, description="Region of the backend resources")

    @property
    def digest_lock_id(self) -> str:
        """LockID of the item where Terraform stores the state file MD5 digest."""
        return f"{self.bucket}/{self.state_key}-md5"

    def backend_config(self) -> Dict[str, str]:
        """Build the key/value pairs passed to ``terraform init -backend-config``."""
        config = {
            "bucket": self.bucket,
            "key": self.state_key,
            "dynamodb_table": self.lock_table,
        }
        if self.region:
            config["region"] = self.region
        return config


class ManagedResourceRef(BaseModel):
    """A cloud object that may or may not be tracked in Terraform state."""

    model_config = ConfigDict(frozen=True)

    resource_type: ResourceKind = Field(..., description="Kind of cloud object")
    external_id: str = Field(..., min_length=1, description="Identifier in the cloud provider")
    state_address: Optional[str] = Field(
        None, description="Terraform state address (None for objects Terraform never manages)"
    )

    def __str__(self) -> str:
        if self.state_address:
            return f"{self.resource_type.value}:{self.external_id} ({self.state_address})"
        return f"{self.resource_type.value}:{self.external_id}"


class FailureRecord(BaseModel):
    """A failed step, kept in the run outcome instead of aborting the run."""

    step: str = Field(..., description="Step that failed (e.g. conflict_resolver)")
    message: str = Field(..., description="What went wrong")
    resource: Optional[ManagedResourceRef] = Field(None, description="Object the step acted on")
    category: str = Field("unknown", description="Error category value")
    error_code: Optional[str] = Field(None, description="AWS error code or process exit code")
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ReconciliationOutcome(BaseModel):
    """Produced once per run and consumed by the output publisher."""

    operation: str = Field(..., description="bootstrap, apply or destroy")
    environment: str = Field(..., description="Environment name")
    applied: bool = Field(False, description="Whether Terraform apply/destroy completed")
    imported: List[ManagedResourceRef] = Field(default_factory=list)
    destroyed: List[ManagedResourceRef] = Field(default_factory=list)
    errors: List[FailureRecord] = Field(default_factory=list)
    published: List[str] = Field(default_factory=list, description="Parameter names written")
    stale_parameters: List[str] = Field(
        default_factory=list, description="Parameters that could not be written"
    )
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def record_failure(
        self,
        step: str,
        message: str,
        resource: Optional[ManagedResourceRef] = None,
        category: str = "unknown",
        error_code: Optional[str] = None,
    ) -> FailureRecord:
        """Append a failure record and return it."""
        record = FailureRecord(
            step=step,
            message=message,
            resource=resource,
            category=category,
            error_code=error_code,
        )
        self.errors.append(record)
        return record

    def failures_for(self, step: str) -> List[FailureRecord]:
        """Get failure records of a single step."""
        return [e for e in self.errors if e.step == step]

    def finish(self) -> None:
        """Stamp the completion time."""
        self.finished_at = datetime.now(timezone.utc)

    @property
    def succeeded(self) -> bool:
        """True when Terraform converged and nothing failed along the way."""
        return self.applied and not self.errors

    @property
    def duration(self) -> float:
        """Run duration in seconds (0 while unfinished)."""
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return self.model_dump(mode="json")
