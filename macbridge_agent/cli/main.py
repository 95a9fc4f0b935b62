"""
Agent CLI entry point.

Main command group for the MacBridge agent CLI.
"""

import click

from macbridge_agent import __version__


@click.group()
@click.version_option(version=__version__, prog_name="macbridge-agent")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to the agent configuration file.",
)
@click.pass_context
def cli(ctx: click.Context, config_path) -> None:
    """
    MacBridge Agent - Remote iOS/Flutter build worker.

    The agent runs on a macOS machine with the Flutter toolchain, polls a
    coordinator for build jobs, builds them, publishes the resulting app
    and reports the outcome.

    Use 'macbridge-agent COMMAND --help' for more information on a command.
    """
    # Ensure context object exists for subcommands
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# Import and register subcommands
from macbridge_agent.cli.start import start  # noqa: E402
from macbridge_agent.cli.run import run  # noqa: E402
from macbridge_agent.cli.config import config  # noqa: E402
from macbridge_agent.cli.self_test import self_test  # noqa: E402

cli.add_command(start)
cli.add_command(run)
cli.add_command(config)
cli.add_command(self_test)


def main() -> None:
    """Console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
