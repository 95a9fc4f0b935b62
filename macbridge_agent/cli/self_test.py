"""
Self-test CLI command for verifying agent configuration.

Checks configuration validity, coordinator reachability, toolchain
executables and artifact storage connectivity. Provides actionable
remediation suggestions for any failures.
"""

import asyncio
import shutil
import time

import click

from macbridge_agent.api_client import CoordinatorClient
from macbridge_agent.config import AgentConfig, ConfigError
from macbridge_agent.remote import create_adapter


# ============================================================================
# Result Tracking
# ============================================================================


class CheckResult:
    """Result of a single self-test check."""

    def __init__(self, label: str, status: str, detail: str = ""):
        """
        Initialize a check result.

        Args:
            label: Display label for the check
            status: "OK", "WARN", or "FAIL"
            detail: Additional detail text
        """
        self.label = label
        self.status = status
        self.detail = detail


def _format_status(status: str) -> str:
    """Format a status string with color."""
    if status == "OK":
        return click.style("OK", fg="green")
    elif status == "WARN":
        return click.style("WARN", fg="yellow")
    else:
        return click.style("FAIL", fg="red")


def _print_result(result: CheckResult, indent: int = 2) -> None:
    """Print a formatted check result."""
    prefix = " " * indent
    status = _format_status(result.status)
    if result.detail:
        click.echo(f"{prefix}{result.label}: {result.detail}  {status}")
    else:
        click.echo(f"{prefix}{result.label}  {status}")


# ============================================================================
# Check Functions
# ============================================================================


def _check_configuration(config: AgentConfig) -> list[CheckResult]:
    try:
        config.validate()
    except ConfigError as e:
        return [CheckResult("Configuration", "FAIL", str(e))]
    results = [CheckResult("Configuration", "OK", str(config.config_path))]
    if not config.log_sink_url:
        results.append(CheckResult("Log sink", "WARN", "(not configured, relay disabled)"))
    else:
        results.append(CheckResult("Log sink", "OK", config.log_sink_url))
    return results


def _check_server_connection(config: AgentConfig) -> list[CheckResult]:
    """
    Check coordinator reachability and measure latency.

    Args:
        config: Agent configuration

    Returns:
        List of check results for the coordinator
    """
    if not config.server_url:
        return [CheckResult("URL", "FAIL", "(not configured)")]

    results = [CheckResult("URL", "OK", config.server_url)]

    start = time.monotonic()
    reachable = asyncio.run(_ping(config))
    elapsed_ms = (time.monotonic() - start) * 1000

    if reachable:
        results.append(CheckResult("Latency", "OK", f"{elapsed_ms:.0f}ms"))
    else:
        results.append(CheckResult("Reachable", "FAIL", "Connection failed"))
    return results


async def _ping(config: AgentConfig) -> bool:
    async with CoordinatorClient(
        server_url=config.server_url,
        timeout=10.0,
    ) as client:
        return await client.ping()


def _check_tools(config: AgentConfig) -> list[CheckResult]:
    """
    Check that the toolchain executables are on PATH.

    Returns:
        List of check results for each executable
    """
    results = []
    for label, executable, required in (
        ("flutter", config.flutter_path, True),
        ("security", config.security_path, False),
    ):
        found = shutil.which(executable)
        if found:
            results.append(CheckResult(label, "OK", found))
        elif required:
            results.append(CheckResult(label, "FAIL", f"({executable} not found)"))
        else:
            results.append(CheckResult(label, "WARN", "(not found, signed builds unavailable)"))
    return results


def _check_storage(config: AgentConfig) -> list[CheckResult]:
    storage = config.storage
    backend = storage.get("backend", "local")
    try:
        adapter = create_adapter(storage)
        success, message = adapter.test_connection()
    except (ValueError, ModuleNotFoundError) as e:
        return [CheckResult(backend, "FAIL", str(e))]

    return [CheckResult(backend, "OK" if success else "FAIL", message)]


# ============================================================================
# Remediation Suggestions
# ============================================================================


def _print_remediation(all_results: dict[str, list[CheckResult]]) -> None:
    """Print remediation suggestions for any failures."""
    suggestions = []

    for r in all_results["server"]:
        if r.status == "FAIL":
            if "not configured" in r.detail:
                suggestions.append("Set the coordinator URL: macbridge-agent config set server_url <url>")
            else:
                suggestions.append("Check that the coordinator is running and the URL is correct")
            break

    for r in all_results["tools"]:
        if r.status == "FAIL":
            suggestions.append(
                f"Install {r.label} or point to it: macbridge-agent config set {r.label}_path <path>"
            )

    for r in all_results["storage"]:
        if r.status == "FAIL":
            if "pip install" in r.detail:
                suggestions.append(r.detail)
            else:
                suggestions.append("Check the storage.* settings and credentials")

    if suggestions:
        click.echo()
        click.echo(click.style("Suggestions:", bold=True))
        for s in suggestions:
            click.echo(f"  - {s}")


# ============================================================================
# Self-Test Command
# ============================================================================


@click.command("self-test")
@click.pass_context
def self_test(ctx: click.Context) -> None:
    """
    Verify agent configuration and connectivity.

    \b
    - Configuration (file parses and validates)
    - Coordinator connectivity (URL reachable, latency)
    - Toolchain (flutter and security on PATH)
    - Artifact storage (backend reachable and writable)

    Exit codes: 0 = all pass (warnings allowed), 1 = failures
    """
    try:
        config = AgentConfig(config_path=ctx.obj.get("config_path"))
    except ConfigError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e))
        ctx.exit(1)

    click.echo()
    click.echo("Agent Self-Test")
    click.echo("═" * 50)

    sections = [
        ("config", "Configuration:", _check_configuration),
        ("server", "Coordinator:", _check_server_connection),
        ("tools", "Toolchain:", _check_tools),
        ("storage", "Artifact Storage:", _check_storage),
    ]

    all_results: dict[str, list[CheckResult]] = {}
    for key, title, check in sections:
        click.echo()
        click.echo(title)
        all_results[key] = check(config)
        for r in all_results[key]:
            _print_result(r)

    failures = sum(1 for results in all_results.values() for r in results if r.status == "FAIL")
    warnings = sum(1 for results in all_results.values() for r in results if r.status == "WARN")

    _print_remediation(all_results)

    click.echo()
    click.echo("═" * 50)
    if failures:
        click.echo(click.style(f"FAILED: {failures} failure(s), {warnings} warning(s)", fg="red", bold=True))
        ctx.exit(1)
    click.echo(click.style(f"PASSED ({warnings} warning(s))", fg="green", bold=True))
