"""Resolution of Terraform state backend names.

Every workflow that touches an environment (bootstrap, apply, destroy and the
demo deploy hand-off) must go through :func:`resolve_backend` so that all of
them agree on the bucket and lock table. Diverging names split the state.
"""

from typing import Dict, Mapping, Optional

from botocore.exceptions import BotoCoreError, ClientError

from infra_reconcile.state.models import DEFAULT_STATE_KEY, EnvironmentContext, StateBackendHandle
from infra_reconcile.state.parameter_store import ParameterStore, backend_parameter
from infra_reconcile.utils.logging import get_logger

logger = get_logger(__name__)

BUCKET = "bucket"
LOCK_TABLE = "lock_table"
STATE_KEY = "state_key"

# Override key -> parameter name published by the bootstrap run
PUBLISHED_BACKEND_PARAMETERS = {
    BUCKET: "state_bucket",
    LOCK_TABLE: "lock_table",
}


def default_bucket_name(ctx: EnvironmentContext) -> str:
    return f"{ctx.prefix}-terraform-state-{ctx.environment}"


def default_lock_table_name(ctx: EnvironmentContext) -> str:
    return f"{ctx.prefix}-terraform-locks-{ctx.environment}"


def _override(overrides: Optional[Mapping[str, Optional[str]]], key: str) -> Optional[str]:
    if not overrides:
        return None
    value = overrides.get(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def resolve_backend(
    ctx: EnvironmentContext,
    overrides: Optional[Mapping[str, Optional[str]]] = None
) -> StateBackendHandle:
    """Resolve the state backend for an environment.

    A non-empty override wins; otherwise the name is derived as
    ``{prefix}-terraform-{state|locks}-{environment}``. Pure: no I/O, cannot fail.

    Args:
        ctx: Environment context
        overrides: Optional map with ``bucket``, ``lock_table`` and ``state_key`` keys

    Returns:
        Resolved StateBackendHandle
    """
    return StateBackendHandle(
        bucket=_override(overrides, BUCKET) or default_bucket_name(ctx),
        lock_table=_override(overrides, LOCK_TABLE) or default_lock_table_name(ctx),
        state_key=_override(overrides, STATE_KEY) or DEFAULT_STATE_KEY,
        region=ctx.region,
    )


def locate_backend(
    ctx: EnvironmentContext,
    overrides: Optional[Mapping[str, Optional[str]]] = None,
    parameter_store: Optional[ParameterStore] = None
) -> StateBackendHandle:
    """Resolve the backend, consulting values published by the bootstrap run.

    Explicit overrides take precedence over published parameters. A missing
    or unreadable parameter falls back to the naming convention and is never
    fatal.

    Args:
        ctx: Environment context
        overrides: Explicit overrides (config file, environment variables, CLI)
        parameter_store: Parameter store handle, or None to skip the lookup

    Returns:
        Resolved StateBackendHandle
    """
    merged: Dict[str, Optional[str]] = dict(overrides or {})

    if parameter_store is not None:
        for key, parameter in PUBLISHED_BACKEND_PARAMETERS.items():
            if _override(merged, key):
                continue

            name = backend_parameter(ctx.environment, parameter)
            try:
                value = parameter_store.get(name)
            except (ClientError, BotoCoreError) as e:
                logger.warning(f"Could not read {name}, using naming convention: {e}")
                continue

            if value:
                merged[key] = value
            else:
                logger.info(f"Parameter {name} not found, using naming convention")

    handle = resolve_backend(ctx, merged)
    logger.info(f"Using state backend for {ctx.environment}: "
                f"bucket={handle.bucket}, table={handle.lock_table}")
    return handle
