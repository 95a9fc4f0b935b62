"""
Start CLI command.

Starts the agent polling loop.
"""

import sys

import click

from macbridge_agent.config import AgentConfig, ConfigError
from macbridge_agent.main import run_agent


@click.command()
@click.pass_context
def start(ctx: click.Context) -> None:
    """
    Start the MacBridge agent.

    The agent will connect to the configured coordinator and begin polling
    for jobs. A server URL must be configured first.

    The agent runs continuously until stopped with Ctrl+C or SIGTERM.

    Example:

        macbridge-agent start
    """
    config_path = ctx.obj.get("config_path")
    try:
        config = AgentConfig(config_path=config_path)
    except ConfigError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e))
        ctx.exit(1)

    if not config.is_configured:
        click.echo(
            click.style("Error: ", fg="red", bold=True)
            + "Agent is not configured with a server URL."
        )
        click.echo("Run 'macbridge-agent config set server_url <url>' first.")
        ctx.exit(1)

    click.echo("Starting agent...")
    click.echo(f"  Server: {config.server_url}")
    click.echo(f"  Work directory: {config.work_dir}")
    click.echo()
    click.echo("Press Ctrl+C to stop")
    click.echo()

    exit_code = run_agent(config.config_path)
    sys.exit(exit_code)
