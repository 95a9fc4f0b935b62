"""
Config CLI commands.

Shows and edits the agent configuration file.
"""

import click
import yaml

from macbridge_agent.config import SETTABLE_KEYS, AgentConfig, ConfigError, ConfigValidationError


# ============================================================================
# Config Command Group
# ============================================================================


@click.group()
@click.pass_context
def config(ctx: click.Context) -> None:
    """
    Manage agent configuration.

    These commands show the effective configuration and change individual
    settings in the configuration file.
    """
    # Ensure context object exists for subcommands
    ctx.ensure_object(dict)


def _load(ctx: click.Context) -> AgentConfig:
    try:
        return AgentConfig(config_path=ctx.obj.get("config_path"))
    except ConfigError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e))
        ctx.exit(1)


@config.command("show")
@click.pass_context
def show(ctx: click.Context) -> None:
    """
    Display the effective configuration.

    Values overridden by environment variables are shown with the override
    applied. Storage credentials are masked.

    Example:

        macbridge-agent config show
    """
    agent_config = _load(ctx)

    data = agent_config.to_dict()
    data["server_url"] = agent_config.server_url
    data["log_sink_url"] = agent_config.log_sink_url
    data["log_level"] = agent_config.log_level
    data["work_dir"] = str(agent_config.work_dir)
    data["storage"] = agent_config.storage
    if data["storage"].get("credentials"):
        data["storage"]["credentials"] = {key: "****" for key in data["storage"]["credentials"]}

    click.echo(f"# {agent_config.config_path}")
    click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=True).rstrip())


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def set_value(ctx: click.Context, key: str, value: str) -> None:
    """
    Set a configuration value.

    Storage settings use dotted keys (storage.backend, storage.bucket, ...).
    The new configuration is validated before it is saved.

    Example:

        macbridge-agent config set server_url https://builds.example.com
    """
    agent_config = _load(ctx)

    try:
        converted = agent_config.set_value(key, value)
        agent_config.validate()
    except ConfigValidationError as e:
        click.echo(click.style("Invalid configuration: ", fg="red", bold=True) + str(e))
        ctx.exit(1)
    except ConfigError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e))
        click.echo(f"Known keys: {', '.join(sorted(SETTABLE_KEYS))}")
        ctx.exit(1)

    agent_config.save()
    click.echo(click.style("Updated ", fg="green") + f"{key} = {converted}")
    click.echo()
    click.echo(
        click.style("Note: ", fg="cyan")
        + "Restart the agent for changes to take effect."
    )
