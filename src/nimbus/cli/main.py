"""Entry point for the ``nimbus`` command."""

import click

from nimbus import __version__
from nimbus.cli.commands.deploy import deploy
from nimbus.cli.commands.destroy import destroy
from nimbus.cli.commands.init import init
from nimbus.cli.commands.unlock import unlock


@click.group(name="nimbus")
@click.version_option(__version__, prog_name="nimbus")
def main() -> None:
    """Deploy serverless applications to AWS from a YAML description.

    Run `nimbus init` once to configure the S3 bucket holding state, then
    `nimbus deploy` from a project directory.
    """


main.add_command(init)
main.add_command(deploy)
main.add_command(destroy)
main.add_command(unlock)


if __name__ == "__main__":
    main()
