"""Parameter hand-off between the infrastructure and demo deployment pipelines."""

import time
from datetime import datetime, timezone
from typing import Mapping, Optional

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, Field

from infra_reconcile.state.locator import locate_backend
from infra_reconcile.state.models import EnvironmentContext, StateBackendHandle
from infra_reconcile.state.parameter_store import ParameterStore, project_parameter
from infra_reconcile.utils.errors import PublishError
from infra_reconcile.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CLUSTER_NAME = "neo4j-demo-cluster"
DEFAULT_DOMAIN_NAME = "neo4j-demos.example.com"
DEFAULT_NEO4J_VERSION = "5.11"
DEFAULT_REPLICAS = 1
DEFAULT_PASSWORD = "Neo4jDemo2024!"


class DeploySettings(BaseModel):
    """Everything a demo deployment reads from the parameter store."""

    demo: str
    cluster_name: str = DEFAULT_CLUSTER_NAME
    domain_name: str = DEFAULT_DOMAIN_NAME
    neo4j_version: str = DEFAULT_NEO4J_VERSION
    replicas: int = Field(DEFAULT_REPLICAS, ge=0)
    image_tag: str
    neo4j_password: str = Field(DEFAULT_PASSWORD, repr=False)
    backend: StateBackendHandle


def build_id(sha: str, now: Optional[float] = None) -> str:
    """Build identifier ``{sha[:8]}-{epoch seconds}``."""
    epoch = int(time.time() if now is None else now)
    return f"{sha[:8]}-{epoch}"


def read_parameter(store: ParameterStore, name: str, default: str, decrypt: bool = False) -> str:
    """Single-value lookup falling back to a default.

    Values written moments ago may not be visible yet; the default covers
    both that and a missing parameter.
    """
    try:
        value = store.get(name, decrypt=decrypt)
    except (ClientError, BotoCoreError) as e:
        logger.warning(f"Could not read {name}, using default: {e}")
        return default
    if value is None:
        logger.info(f"{name} not set, using default {'(hidden)' if decrypt else default}")
        return default
    return value


def read_deploy_settings(
    ctx: EnvironmentContext,
    demo: str,
    store: ParameterStore,
    overrides: Optional[Mapping[str, Optional[str]]] = None
) -> DeploySettings:
    """Read deployment settings for a demo.

    Args:
        ctx: Environment context
        demo: Demo (and ECR repository) name
        store: Parameter store handle
        overrides: Explicit backend overrides

    Returns:
        DeploySettings with defaults filled in for anything unset
    """
    def name(key: str) -> str:
        return project_parameter(ctx.prefix, ctx.environment, key)

    replicas = read_parameter(store, name('app-replicas'), str(DEFAULT_REPLICAS))
    try:
        replica_count = int(replicas)
    except ValueError:
        logger.warning(f"Invalid replica count {replicas!r}, using {DEFAULT_REPLICAS}")
        replica_count = DEFAULT_REPLICAS

    return DeploySettings(
        demo=demo,
        cluster_name=read_parameter(store, name('eks-cluster-name'), DEFAULT_CLUSTER_NAME),
        domain_name=read_parameter(store, name('domain-name'), DEFAULT_DOMAIN_NAME),
        neo4j_version=read_parameter(store, name('neo4j-version'), DEFAULT_NEO4J_VERSION),
        replicas=replica_count,
        image_tag=read_parameter(store, name(f'{demo}-image-tag'), f'{ctx.environment}-latest'),
        neo4j_password=read_parameter(store, name('neo4j-password'), DEFAULT_PASSWORD, decrypt=True),
        backend=locate_backend(ctx, overrides, store),
    )


def publish_image(
    ctx: EnvironmentContext,
    demo: str,
    image_build_id: str,
    store: ParameterStore,
    now: Optional[datetime] = None
) -> dict:
    """Record a pushed image for a demo.

    Args:
        ctx: Environment context
        demo: Demo (and ECR repository) name
        image_build_id: Tag of the pushed image
        store: Parameter store handle
        now: Timestamp to record (defaults to current UTC time)

    Returns:
        Mapping of written parameter names to values

    Raises:
        PublishError: If a parameter could not be written
    """
    timestamp = (now or datetime.now(timezone.utc)).strftime('%Y-%m-%dT%H:%M:%SZ')
    values = {
        project_parameter(ctx.prefix, ctx.environment, f'{demo}-image-tag'): image_build_id,
        project_parameter(ctx.prefix, ctx.environment, f'{demo}-last-updated'): timestamp,
    }

    for parameter, value in values.items():
        try:
            store.put(parameter, value)
        except (ClientError, BotoCoreError) as e:
            raise PublishError(f"Failed to publish {parameter}: {e}", cause=e)
        logger.info(f"Published {parameter} = {value}")

    return values
