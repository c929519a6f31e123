"""Click command for configuring the S3 state backend.

Implements 'nimbus init', which creates the state bucket if needed and
writes the backend profile (``~/.nimbusrc``).
"""

import click
from botocore.exceptions import ClientError

from nimbus.cli.commands.deploy import handle_deployment_errors
from nimbus.config.backend import BackendProfile, save_backend_profile
from nimbus.config.defaults import DEFAULT_REGION
from nimbus.lib.aws import ClientFactory, is_not_found, provider_error
from nimbus.lib.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


def ensure_bucket(clients: ClientFactory, bucket: str, region: str) -> bool:
    """Create the state bucket if it does not exist.

    Returns:
        True if the bucket was created
    """
    client = clients.client("s3", region)
    try:
        client.head_bucket(Bucket=bucket)
        return False
    except ClientError as e:
        if not is_not_found(e):
            raise provider_error(f"bucket {bucket}", e) from e

    params = {"Bucket": bucket}
    if region != "us-east-1":
        params["CreateBucketConfiguration"] = {"LocationConstraint": region}
    try:
        client.create_bucket(**params)
        client.put_bucket_versioning(
            Bucket=bucket, VersioningConfiguration={"Status": "Enabled"}
        )
    except ClientError as e:
        raise provider_error(f"bucket {bucket}", e) from e
    logger.info(f"Created state bucket {bucket} in {region}")
    return True


@click.command(name="init")
@click.option("--bucket", prompt="S3 bucket for state", help="State bucket name")
@click.option(
    "--region",
    prompt="Bucket region",
    default=DEFAULT_REGION,
    show_default=True,
    help="Region of the state bucket",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose debug logging")
def init(bucket: str, region: str, verbose: bool) -> None:
    """Configure the S3 bucket that stores deployment state.

    Example:

        nimbus init --bucket my-nimbus-state --region eu-west-1
    """
    setup_logging(verbose=verbose)

    with handle_deployment_errors():
        profile = BackendProfile(bucket=bucket, region=region)
        created = ensure_bucket(ClientFactory(), profile.bucket, profile.region)
        path = save_backend_profile(profile)

        if created:
            click.echo(f"Created bucket {bucket} in {region}")
        else:
            click.echo(f"Using existing bucket {bucket}")
        click.secho(f"Saved backend profile to {path}", fg="green")
