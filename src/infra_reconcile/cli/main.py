"""Main CLI entry point."""

import json
import sys
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from infra_reconcile.config.parser import Config, ConfigValidationError
from infra_reconcile.orchestrator.handoff import build_id, publish_image, read_deploy_settings
from infra_reconcile.orchestrator.orchestrator import ReconciliationOrchestrator
from infra_reconcile.state.locator import locate_backend
from infra_reconcile.state.models import EnvironmentContext, ReconciliationOutcome
from infra_reconcile.state.parameter_store import ParameterStore
from infra_reconcile.utils.aws_client import AWSClientManager
from infra_reconcile.utils.errors import ErrorContext, ReconcileError, error_handler
from infra_reconcile.utils.logging import get_logger, setup_logging

console = Console()
logger = get_logger(__name__)

DESTROY_CONFIRMATION = "DESTROY"


@click.group()
@click.option('--profile', help='AWS profile to use')
@click.option('--region', help='AWS region')
@click.option('--log-level', default='info', type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.option('--config', 'config_path', default=None, help='Path to configuration file (default: reconcile.yaml)')
@click.pass_context
def cli(ctx, profile, region, log_level, config_path):
    """Idempotent Terraform reconciliation for the neo4j demo environments."""
    ctx.ensure_object(dict)
    ctx.obj['profile'] = profile
    ctx.obj['region'] = region
    ctx.obj['log_level'] = log_level
    ctx.obj['config_path'] = config_path

    setup_logging(log_level)


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate configuration file."""
    try:
        return Config(config_path).load()
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] Configuration file not found: {config_path}")
        sys.exit(1)
    except ConfigValidationError as e:
        console.print("[red]Configuration validation failed:[/red]\n")
        console.print(str(e))
        sys.exit(1)


def build_context(config: Config, environment: str, region: Optional[str]) -> EnvironmentContext:
    try:
        return config.context(environment, region)
    except ConfigValidationError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


def create_session(profile: Optional[str], region: str) -> AWSClientManager:
    """Create the AWS client manager and check its credentials before any work starts."""
    manager = AWSClientManager(profile=profile, region=region)
    try:
        manager.validate_credentials()
    except Exception as e:
        converted = error_handler.handle_exception(e, ErrorContext(operation='validate_credentials'))
        console.print(f"[red]{converted.to_user_message()}[/red]")
        sys.exit(1)
    return manager


def backend_overrides(config: Config, bucket: Optional[str], lock_table: Optional[str]) -> dict:
    """Configured overrides, with command line values taking precedence."""
    overrides = config.backend_overrides()
    if bucket:
        overrides['bucket'] = bucket
    if lock_table:
        overrides['lock_table'] = lock_table
    return overrides


def setup(ctx, env: str, bucket: Optional[str] = None, lock_table: Optional[str] = None):
    """Load configuration and build the run context, AWS clients and overrides."""
    cfg = load_config(ctx.obj.get('config_path'))
    env_ctx = build_context(cfg, env, ctx.obj.get('region'))
    aws = create_session(ctx.obj.get('profile'), env_ctx.region)
    return cfg, env_ctx, aws, backend_overrides(cfg, bucket, lock_table)


def create_orchestrator(ctx, env: str, bucket: Optional[str], lock_table: Optional[str]) -> ReconciliationOrchestrator:
    cfg, env_ctx, aws, overrides = setup(ctx, env, bucket, lock_table)
    return ReconciliationOrchestrator(
        cfg.settings,
        env_ctx,
        aws.session,
        overrides=overrides,
        progress_callback=lambda step, message: console.print(f"[cyan]›[/cyan] [dim]{step}[/dim] {message}"),
    )


def show_outcome(outcome: Optional[ReconciliationOutcome], title: str) -> None:
    """Render a run outcome."""
    if outcome is None:
        return

    if outcome.succeeded:
        status, border = "[green]✓ Completed[/green]", "green"
    elif outcome.applied:
        status, border = "[yellow]⚠ Completed with errors[/yellow]", "yellow"
    else:
        status, border = "[red]✗ Failed[/red]", "red"

    console.print()
    console.print(Panel.fit(
        f"{status}\n\n"
        f"Environment: {outcome.environment}\n"
        f"Imported: {len(outcome.imported)}\n"
        f"Removed: {len(outcome.destroyed)}\n"
        f"Published: {len(outcome.published)}\n"
        f"Errors: {len(outcome.errors)}\n"
        f"Duration: {outcome.duration:.2f}s",
        title=title,
        border_style=border
    ))

    if outcome.errors:
        table = Table(title="Failures")
        table.add_column("Step", style="cyan")
        table.add_column("Resource")
        table.add_column("Message", style="red")
        for record in outcome.errors:
            table.add_row(record.step, str(record.resource) if record.resource else "-", record.message)
        console.print(table)

    if outcome.stale_parameters:
        console.print("\n[yellow]Parameters that may be stale:[/yellow]")
        for name in outcome.stale_parameters:
            console.print(f"  [yellow]•[/yellow] {name}")


def run_flow(orchestrator: ReconciliationOrchestrator, operation: str, title: str, **kwargs) -> None:
    """Run a flow, render its outcome and exit non-zero on fatal errors."""
    try:
        outcome = getattr(orchestrator, operation)(**kwargs)
    except ReconcileError as e:
        error_handler.log_error(e)
        show_outcome(orchestrator.outcome, title)
        console.print(f"\n[red]{e.to_user_message()}[/red]")
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Unexpected error during {operation}")
        converted = error_handler.handle_exception(e, ErrorContext(operation=operation))
        show_outcome(orchestrator.outcome, title)
        console.print(f"\n[red]{converted.to_user_message()}[/red]")
        sys.exit(1)

    show_outcome(outcome, title)
    if not outcome.applied:
        sys.exit(1)


backend_options = [
    click.option('--bucket', help='State bucket override'),
    click.option('--lock-table', help='Lock table override'),
]


def with_backend_options(func):
    for option in reversed(backend_options):
        func = option(func)
    return func


@cli.command()
@click.option('--env', required=True, help='Environment name')
@with_backend_options
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']), default='table')
@click.pass_context
def locate(ctx, env, bucket, lock_table, output_format):
    """Show the state backend an environment resolves to."""
    cfg, env_ctx, aws, overrides = setup(ctx, env, bucket, lock_table)
    store = ParameterStore(aws.get_client('ssm'))
    handle = locate_backend(env_ctx, overrides, store)

    if output_format == 'json':
        click.echo(json.dumps(handle.model_dump(), indent=2))
        return

    table = Table(title=f"State backend: {env}")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("Bucket", handle.bucket)
    table.add_row("Lock table", handle.lock_table)
    table.add_row("State key", handle.state_key)
    table.add_row("Region", handle.region or "-")
    console.print(table)


@cli.command()
@click.option('--env', required=True, help='Environment name')
@with_backend_options
@click.pass_context
def bootstrap(ctx, env, bucket, lock_table):
    """Create the Terraform state bucket and lock table."""
    orchestrator = create_orchestrator(ctx, env, bucket, lock_table)
    console.print(Panel.fit(
        f"[bold]Bootstrapping {env}[/bold]\n"
        f"Region: {orchestrator.ctx.region}\n"
        f"Module: {orchestrator.config.terraform.bootstrap_dir}",
        title="Bootstrap",
        border_style="cyan"
    ))
    run_flow(orchestrator, 'bootstrap', "Bootstrap Complete")


@cli.command()
@click.option('--env', required=True, help='Environment name')
@with_backend_options
@click.pass_context
def apply(ctx, env, bucket, lock_table):
    """Import existing resources, plan and apply the infrastructure."""
    orchestrator = create_orchestrator(ctx, env, bucket, lock_table)
    console.print(Panel.fit(
        f"[bold]Applying infrastructure to {env}[/bold]\n"
        f"Region: {orchestrator.ctx.region}\n"
        f"Module: {orchestrator.config.terraform.infrastructure_dir}",
        title="Apply",
        border_style="cyan"
    ))
    run_flow(orchestrator, 'apply', "Apply Complete")


@cli.command()
@click.option('--env', required=True, help='Environment name')
@with_backend_options
@click.option('--confirm', 'confirmation', help=f'Type {DESTROY_CONFIRMATION} to confirm')
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation prompt')
@click.pass_context
def destroy(ctx, env, bucket, lock_table, confirmation, yes):
    """Clean up blocking resources and destroy the infrastructure."""
    if not yes and confirmation != DESTROY_CONFIRMATION:
        if confirmation is not None:
            console.print(f"[red]Error:[/red] confirmation must be exactly {DESTROY_CONFIRMATION}")
            sys.exit(1)
        confirmation = click.prompt(f"Type {DESTROY_CONFIRMATION} to destroy {env}", default="", show_default=False)
        if confirmation != DESTROY_CONFIRMATION:
            console.print("[yellow]Destruction cancelled[/yellow]")
            sys.exit(1)

    orchestrator = create_orchestrator(ctx, env, bucket, lock_table)
    console.print(Panel.fit(
        f"[bold red]⚠ WARNING: This will destroy all resources[/bold red]\n\n"
        f"Environment: {env}\n"
        f"Region: {orchestrator.ctx.region}\n"
        f"Remove state backend: {'yes' if orchestrator.config.destroy.destroy_state_backend else 'no'}",
        title="Destruction Plan",
        border_style="red"
    ))
    run_flow(orchestrator, 'destroy', "Destruction Complete")


@cli.command('publish-image')
@click.option('--env', required=True, help='Environment name')
@click.option('--demo', required=True, help='Demo (ECR repository) name')
@click.option('--sha', help='Commit SHA used to derive the build id')
@click.option('--build-id', 'image_build_id', help='Explicit build id (image tag)')
@click.pass_context
def publish_image_command(ctx, env, demo, sha, image_build_id):
    """Record a pushed demo image in the parameter store."""
    if not sha and not image_build_id:
        console.print("[red]Error:[/red] either --sha or --build-id is required")
        sys.exit(1)

    cfg, env_ctx, aws, _ = setup(ctx, env)
    store = ParameterStore(aws.get_client('ssm'))
    tag = image_build_id or build_id(sha)

    try:
        written = publish_image(env_ctx, demo, tag, store)
    except ReconcileError as e:
        console.print(f"[red]{e.to_user_message()}[/red]")
        sys.exit(1)

    for name, value in written.items():
        console.print(f"[green]✓[/green] {name} = {value}")


@cli.command('deploy-settings')
@click.option('--env', required=True, help='Environment name')
@click.option('--demo', required=True, help='Demo (ECR repository) name')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']), default='table')
@click.pass_context
def deploy_settings(ctx, env, demo, output_format):
    """Show the settings a demo deployment would use."""
    cfg, env_ctx, aws, overrides = setup(ctx, env)
    store = ParameterStore(aws.get_client('ssm'))
    settings = read_deploy_settings(env_ctx, demo, store, overrides)

    if output_format == 'json':
        click.echo(json.dumps(settings.model_dump(exclude={'neo4j_password'}), indent=2))
        return

    table = Table(title=f"Deploy settings: {demo} ({env})")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("Cluster", settings.cluster_name)
    table.add_row("Domain", settings.domain_name)
    table.add_row("Neo4j version", settings.neo4j_version)
    table.add_row("Replicas", str(settings.replicas))
    table.add_row("Image tag", settings.image_tag)
    table.add_row("State bucket", settings.backend.bucket)
    table.add_row("Lock table", settings.backend.lock_table)
    console.print(table)


if __name__ == '__main__':
    cli()
