"""CLI command for deploying a Nimbus project.

Implements 'nimbus deploy', which reconciles every resource declared in the
project file and prints a summary grouped by kind.
"""

from __future__ import annotations

import sys
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

import click

from nimbus.config.defaults import DEFAULT_PROJECT_FILE
from nimbus.gateway.domain import ValidationRecord
from nimbus.lib.errors import ConfigError, DeploymentError, ValidationError
from nimbus.lib.logging_config import get_logger, setup_logging
from nimbus.models.result import DeploymentResult

logger = get_logger(__name__)


@contextmanager
def handle_deployment_errors() -> Generator[None, None, None]:
    """Context manager for consistent error handling in deployment commands.

    Exit codes:
        2: Configuration or declaration error
        3: Deployment/execution error
    """
    try:
        yield
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        click.secho("Error: Configuration error", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(2)
    except ValidationError as e:
        logger.error(f"Validation error: {e}")
        click.secho(f"Error: Invalid {e.field}", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(2)
    except DeploymentError as e:
        logger.error(f"Deployment error: {e}")
        click.secho(f"Error: {e.operation} failed", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(3)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(3)


def show_validation_records(records: list[ValidationRecord]) -> None:
    """Print the DNS records a certificate needs."""
    click.echo()
    click.secho("DNS validation records:", bold=True)
    for record in records:
        click.echo(f"  Domain: {record.domain}")
        click.echo(f"  Type:   {record.type}")
        click.echo(f"  Name:   {record.name}")
        click.echo(f"  Value:  {record.value}")
        click.echo()
    click.secho(
        "Add these records to your domain's DNS settings.", fg="yellow"
    )


def wait_for_dns(records: list[ValidationRecord]) -> None:
    """Block until the user confirms the records are published."""
    click.prompt(
        "Press Enter once the DNS records are added",
        default="",
        show_default=False,
    )


def print_summary(result: DeploymentResult) -> None:
    click.echo()
    click.secho("Deployment Complete", fg="green", bold=True)
    click.echo(f"  Project:  {result.project}")
    click.echo(f"  Stage:    {result.stage}")
    click.echo(f"  Region:   {result.region}")
    click.echo(f"  Account:  {result.account_id}")
    for kind, resources in result.grouped().items():
        click.echo()
        click.secho(f"  {kind.value}", bold=True)
        for resource in resources:
            line = f"    {resource.name}"
            if resource.url:
                line += f"  {resource.url}"
            click.echo(line)
    click.echo()


@click.command(name="deploy")
@click.argument(
    "project_file",
    type=click.Path(exists=True, dir_okay=False),
    default=DEFAULT_PROJECT_FILE,
    required=False,
)
@click.option("--stage", "-s", default=None, help="Stage (overrides the project file)")
@click.option("--region", "-r", default=None, help="Region (overrides the project file)")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose debug logging")
@click.option("--quiet", "-q", is_flag=True, help="Suppress progress output")
def deploy(
    project_file: str,
    stage: str | None,
    region: str | None,
    verbose: bool,
    quiet: bool,
) -> None:
    """Deploy every resource declared in PROJECT_FILE.

    Example:

        nimbus deploy

        nimbus deploy nimbus.yaml --stage prod
    """
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        from nimbus.config.loader import ConfigLoader
        from nimbus.deploy.engine import Nimbus

        project_path = Path(project_file).resolve()
        config = ConfigLoader().load_project_yaml(
            project_path, overrides={"stage": stage, "region": region}
        )
        if not quiet:
            click.echo(
                f"Deploying {config.project} ({config.stage}) to {config.region}..."
            )

        app = Nimbus.from_config(
            config,
            base_dir=project_path.parent,
            display=show_validation_records,
            confirm=wait_for_dns,
        )
        result = app.deploy()

        if quiet:
            click.echo(f"{len(result.resources)} resources deployed")
            return
        print_summary(result)
