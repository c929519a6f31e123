"""CLI command for destroying a deployed project stage."""

from __future__ import annotations

import sys

import click

from nimbus.cli.commands.deploy import handle_deployment_errors
from nimbus.config.defaults import DEFAULT_REGION, DEFAULT_STAGE
from nimbus.lib.logging_config import setup_logging


@click.command(name="destroy")
@click.option("--project", "-p", required=True, help="Project name")
@click.option("--stage", "-s", default=DEFAULT_STAGE, show_default=True, help="Stage")
@click.option("--region", "-r", default=DEFAULT_REGION, show_default=True, help="Region")
@click.option(
    "--force",
    is_flag=True,
    help="Also delete tables, clusters and buckets (data is lost)",
)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose debug logging")
@click.option("--quiet", "-q", is_flag=True, help="Suppress progress output")
def destroy(
    project: str,
    stage: str,
    region: str,
    force: bool,
    yes: bool,
    verbose: bool,
    quiet: bool,
) -> None:
    """Destroy everything recorded for a project stage.

    Data stores are kept unless --force is given.

    Example:

        nimbus destroy --project shop --stage dev

        nimbus destroy --project shop --stage dev --force --yes
    """
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        if not yes:
            prompt = f"Destroy {project} ({stage}) in {region}?"
            if force:
                prompt += " Data stores will be deleted too."
            if not click.confirm(prompt, default=False):
                click.secho("Destroy aborted.", fg="yellow")
                sys.exit(0)

        from nimbus.deploy.engine import Nimbus

        result = Nimbus(project, stage=stage, region=region).destroy(force=force)

        if quiet:
            click.echo(f"{len(result.destroyed)} destroyed, {len(result.skipped)} kept")
            return

        click.echo()
        click.secho("Destroy Complete", fg="green", bold=True)
        for resource in result.destroyed:
            click.echo(f"  deleted  {resource.kind.value:<10} {resource.name}")
        for resource in result.skipped:
            click.secho(
                f"  kept     {resource.kind.value:<10} {resource.name}", fg="yellow"
            )
        if result.skipped:
            click.echo()
            click.echo("  Re-run with --force to delete data stores.")
        click.echo()
