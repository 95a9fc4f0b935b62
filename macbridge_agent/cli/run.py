"""
Run build job CLI command.

Executes a single build job locally through the full pipeline, without
polling the coordinator. The result is printed and, unless disabled,
reported like a polled job.
"""

import asyncio
import json
import sys
import uuid
from typing import Optional

import click

from macbridge_agent.api_client import CoordinatorClient
from macbridge_agent.config import AgentConfig, ConfigError
from macbridge_agent.main import build_executor, setup_logging
from macbridge_agent.models import BuildMode, Job, JobResult, parse_webhook_url


@click.command("run")
@click.argument("zip_url")
@click.option(
    "--job-id",
    default=None,
    help="Job identifier (generated if omitted).",
)
@click.option(
    "--mode",
    "-m",
    type=click.Choice([mode.value for mode in BuildMode], case_sensitive=False),
    default=BuildMode.SIMULATOR.value,
    show_default=True,
    help="Build mode.",
)
@click.option(
    "--webhook-url",
    default=None,
    help="Webhook receiving the result payload.",
)
@click.option(
    "--no-report",
    is_flag=True,
    default=False,
    help="Do not report the result to the coordinator or webhook.",
)
@click.pass_context
def run(
    ctx: click.Context,
    zip_url: str,
    job_id: Optional[str],
    mode: str,
    webhook_url: Optional[str],
    no_report: bool,
) -> None:
    """
    Build a project archive once.

    Downloads ZIP_URL, builds it and publishes the artifact, exactly as the
    agent does for a polled job.

    Exit codes: 0 = build succeeded, 1 = configuration error, 2 = build failed

    Example:

        macbridge-agent run https://example.com/app.zip --mode release
    """
    try:
        config = AgentConfig(config_path=ctx.obj.get("config_path"))
        config.validate()
    except ConfigError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e))
        sys.exit(1)

    if webhook_url and parse_webhook_url(webhook_url) is None:
        click.echo(click.style("Error: ", fg="red", bold=True) + f"Invalid webhook URL: {webhook_url}")
        sys.exit(1)

    report = not no_report
    if report and not config.is_configured:
        click.echo(
            click.style("Error: ", fg="red", bold=True)
            + "No server URL configured; use --no-report to build without reporting."
        )
        sys.exit(1)

    setup_logging(config.log_level)
    job = Job(
        job_id=job_id or f"local-{uuid.uuid4().hex[:12]}",
        zip_url=zip_url,
        build_mode=BuildMode.parse(mode),
        webhook_url=webhook_url,
    )

    try:
        result = asyncio.run(_execute(config, job, report))
    except ValueError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e))
        sys.exit(1)

    click.echo(json.dumps(result.to_payload(), indent=2))
    if result.succeeded:
        click.echo(click.style("Build succeeded", fg="green", bold=True))
        sys.exit(0)

    click.echo(click.style("Build failed", fg="red", bold=True))
    sys.exit(2)


async def _execute(config: AgentConfig, job: Job, report: bool) -> JobResult:
    api_client = None
    if report:
        api_client = CoordinatorClient(
            server_url=config.server_url,
            timeout=config.request_timeout_seconds,
        )

    try:
        executor = build_executor(config, api_client)
        try:
            return await executor.execute(job)
        finally:
            await executor.stager.close()
    finally:
        if api_client is not None:
            await api_client.close()
