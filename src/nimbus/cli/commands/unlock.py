"""CLI command for clearing a stale state lock."""

from __future__ import annotations

import click

from nimbus.cli.commands.deploy import handle_deployment_errors
from nimbus.config.backend import load_backend_profile
from nimbus.config.defaults import DEFAULT_REGION, DEFAULT_STAGE
from nimbus.deploy.state import S3StateBackend, StateManager
from nimbus.lib.aws import ClientFactory
from nimbus.lib.logging_config import setup_logging


@click.command(name="unlock")
@click.option("--project", "-p", required=True, help="Project name")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose debug logging")
def unlock(project: str, verbose: bool) -> None:
    """Remove the lock left behind by an interrupted deploy or destroy.

    Only run this when no other deploy of the project is in progress.
    """
    setup_logging(verbose=verbose)

    with handle_deployment_errors():
        backend = S3StateBackend(load_backend_profile(), project, ClientFactory())
        manager = StateManager(backend, project, DEFAULT_STAGE, DEFAULT_REGION)
        marker = manager.force_unlock()
        if marker is None:
            click.echo(f"{project} is not locked.")
            return
        owner = marker.get("owner", "unknown")
        since = marker.get("acquiredAt", "unknown time")
        click.secho(f"Removed lock held by {owner} since {since}", fg="green")
