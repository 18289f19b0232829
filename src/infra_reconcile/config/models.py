"""Pydantic models for configuration schema."""

import re
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from infra_reconcile.state.models import DEFAULT_STATE_KEY, ManagedResourceRef, ResourceKind

REGION_PATTERN = re.compile(r"^[a-z]{2}(-gov)?-[a-z]+-\d$")

DEFAULT_DEMOS = [
    "neo4j-basic-demo",
    "neo4j-social-network",
    "neo4j-movie-recommendation",
]


class ProjectConfig(BaseModel):
    """Project-level configuration."""

    prefix: str = Field("neo4j-demos", min_length=1, max_length=40, pattern="^[a-z0-9-]+$")
    region: str = Field("us-west-2", min_length=1)
    environments: List[str] = Field(default_factory=lambda: ["dev", "staging", "prod"])
    demos: List[str] = Field(default_factory=lambda: list(DEFAULT_DEMOS))

    @field_validator("region")
    @classmethod
    def validate_region(cls, v: str) -> str:
        """Validate AWS region format."""
        if not REGION_PATTERN.match(v):
            raise ValueError(f"Invalid AWS region: {v}")
        return v

    @field_validator("environments")
    @classmethod
    def validate_environments(cls, v: List[str]) -> List[str]:
        """Environment names become part of bucket names, keep them DNS-safe."""
        if not v:
            raise ValueError("At least one environment must be defined")
        for name in v:
            if not re.match(r"^[a-z0-9-]+$", name):
                raise ValueError(f"Environment name must be lowercase alphanumeric or '-': {name}")
        return v


class BackendConfig(BaseModel):
    """Explicit state backend overrides."""

    bucket: Optional[str] = Field(None, description="State bucket name override")
    lock_table: Optional[str] = Field(None, description="Lock table name override")
    state_key: str = Field(DEFAULT_STATE_KEY, min_length=1)

    def overrides(self) -> dict:
        return {
            "bucket": self.bucket,
            "lock_table": self.lock_table,
            "state_key": self.state_key,
        }


class TerraformConfig(BaseModel):
    """Terraform CLI settings."""

    binary: str = Field("terraform", min_length=1)
    bootstrap_dir: str = Field("bootstrap", min_length=1)
    infrastructure_dir: str = Field("Terraform", min_length=1)
    timeout: Optional[int] = Field(None, ge=1, description="Per-command timeout in seconds")


class ImportTargetConfig(BaseModel):
    """An existing cloud object that should be bound into Terraform state."""

    kind: Literal["ecr_repository", "kms_alias"]
    external_id: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def validate_alias_name(self):
        """KMS alias identifiers always carry the alias/ prefix."""
        if self.kind == "kms_alias" and not self.external_id.startswith("alias/"):
            raise ValueError("KMS alias external_id must start with 'alias/'")
        return self

    def to_ref(self) -> ManagedResourceRef:
        return ManagedResourceRef(
            resource_type=ResourceKind(self.kind),
            external_id=self.external_id,
            state_address=self.address,
        )


class OutputsConfig(BaseModel):
    """Values published for the demo deployment pipeline."""

    cluster_name: str = Field("neo4j-demo-cluster", min_length=1)
    domain_name: str = Field("neo4j-demos.example.com", min_length=1)
    neo4j_version: str = Field("5.11", min_length=1)
    app_replicas: int = Field(1, ge=0, le=50)
    neo4j_password: Optional[str] = Field(
        "Neo4jDemo2024!", description="Initial demo password, only written when absent"
    )


class DestroyConfig(BaseModel):
    """Pre-destroy cleanup settings."""

    namespace_pattern: str = Field("^(neo4j-|movie-|social-|basic-)")
    vpc_name_filter: Optional[str] = Field(None, description="Defaults to *{prefix}*")
    load_balancer_match: List[str] = Field(
        default_factory=list,
        description="Name substrings; defaults to [prefix]. Resources tagged for the cluster always match"
    )
    destroy_state_backend: bool = True
    max_retries: int = Field(0, ge=0, le=10, description="Extra attempts for throttled or in-use AWS calls")
    retry_delay: float = Field(5.0, ge=0)
    poll_interval: float = Field(15.0, ge=0)
    nodegroup_timeout: int = Field(1200, ge=1)
    nat_gateway_timeout: int = Field(600, ge=1)
    table_timeout: int = Field(300, ge=1)

    @field_validator("namespace_pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid namespace_pattern: {e}")
        return v


class ReconcileConfig(BaseModel):
    """Root configuration document."""

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    terraform: TerraformConfig = Field(default_factory=TerraformConfig)
    imports: Optional[List[ImportTargetConfig]] = Field(
        None, description="Import candidates; derived from demos and cluster name when omitted"
    )
    outputs: OutputsConfig = Field(default_factory=OutputsConfig)
    destroy: DestroyConfig = Field(default_factory=DestroyConfig)

    def import_targets(self) -> List[ImportTargetConfig]:
        """Configured import candidates, or the default set."""
        if self.imports is not None:
            return self.imports

        targets = [
            ImportTargetConfig(
                kind="ecr_repository",
                external_id=demo,
                address=f'aws_ecr_repository.demo_repos["{demo}"]',
            )
            for demo in self.project.demos
        ]
        targets.append(
            ImportTargetConfig(
                kind="kms_alias",
                external_id=f"alias/eks/{self.outputs.cluster_name}",
                address='module.eks.module.kms.aws_kms_alias.this["cluster"]',
            )
        )
        return targets
