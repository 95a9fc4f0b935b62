"""
Toolchain invoker.

Runs external build and dependency commands against a project root. Commands
are argv lists executed without a shell; each invocation is awaited with a
wall-clock timeout, and a timeout is treated the same as a non-zero exit.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from macbridge_agent.errors import DependencyInstallError, ToolchainError
from macbridge_agent.retry import RetryPolicy, retry_async


logger = logging.getLogger("macbridge.agent.toolchain")

DEFAULT_TIMEOUT = 1800  # seconds
MAX_OUTPUT_CHARS = 20_000  # per stream, kept for diagnostics


@dataclass
class CommandResult:
    """Outcome of an external command."""
    command: List[str]
    exit_code: Optional[int]
    stdout: str
    stderr: str
    duration_seconds: float
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


@dataclass
class ToolchainCommands:
    """Commands used by the build pipeline."""
    flutter: str = "flutter"
    dependency: List[str] = field(default_factory=lambda: ["pub", "get"])
    simulator_build: List[str] = field(default_factory=lambda: ["build", "ios", "--simulator"])
    release_build: List[str] = field(default_factory=lambda: ["build", "ios", "--release"])

    def dependency_command(self) -> List[str]:
        return [self.flutter, *self.dependency]

    def build_command(self, signed: bool) -> List[str]:
        return [self.flutter, *(self.release_build if signed else self.simulator_build)]


def _truncate(text: str) -> str:
    if len(text) <= MAX_OUTPUT_CHARS:
        return text
    return text[-MAX_OUTPUT_CHARS:] + f"\n... (truncated, {len(text)} total chars)"


class ToolchainInvoker:
    """
    Runs external commands with a timeout.

    Attributes:
        timeout: Default wall-clock limit in seconds
        commands: Command lines for the dependency and build steps
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        commands: Optional[ToolchainCommands] = None,
        env: Optional[Dict[str, str]] = None,
        dependency_retry: Optional[RetryPolicy] = None,
    ):
        self.timeout = timeout
        self.commands = commands or ToolchainCommands()
        self._env = env
        self._dependency_retry = dependency_retry or RetryPolicy(max_attempts=2, initial_backoff=2.0)

    async def run(
        self,
        command: List[str],
        working_dir: Path,
        timeout: Optional[float] = None,
        log: Optional[logging.LoggerAdapter] = None,
        secrets: Sequence[str] = (),
    ) -> CommandResult:
        """
        Run a command and wait for it to finish.

        Args:
            command: argv list
            working_dir: Directory to run the command in
            timeout: Wall-clock limit (defaults to self.timeout)
            log: Logger or adapter for progress lines
            secrets: Arguments masked in log lines and error messages

        Returns:
            CommandResult for a successful (exit code 0) run

        Raises:
            ToolchainError: On non-zero exit, timeout, or if the command
                cannot be started
        """
        log = log or logger
        timeout = timeout if timeout is not None else self.timeout
        env = {**os.environ, **self._env} if self._env else None
        shown = " ".join("****" if arg in secrets else arg for arg in command)

        log.info(f"Running {shown} in {working_dir}")
        start = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(working_dir),
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise ToolchainError(
                f"Cannot start {command[0]}: {e}",
                command=command,
                stderr=str(e),
            )

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            stdout_bytes, stderr_bytes = await process.communicate()
            duration = time.monotonic() - start
            stderr = _truncate(stderr_bytes.decode("utf-8", errors="replace"))
            log.warning(f"{command[0]} timed out after {duration:.0f}s")
            raise ToolchainError(
                f"{shown} timed out after {timeout:.0f}s",
                command=command,
                stderr=stderr,
                timed_out=True,
            )
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        duration = time.monotonic() - start
        result = CommandResult(
            command=command,
            exit_code=process.returncode,
            stdout=_truncate(stdout_bytes.decode("utf-8", errors="replace")),
            stderr=_truncate(stderr_bytes.decode("utf-8", errors="replace")),
            duration_seconds=duration,
        )

        if not result.ok:
            detail = result.stderr.strip() or result.stdout.strip()
            raise ToolchainError(
                f"{shown} failed with exit code {result.exit_code}"
                + (f": {detail.splitlines()[-1]}" if detail else ""),
                command=command,
                exit_code=result.exit_code,
                stderr=result.stderr,
            )

        log.info(f"{command[0]} finished in {duration:.1f}s")
        return result

    async def install_dependencies(
        self,
        project_root: Path,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> CommandResult:
        """
        Run the dependency resolution step.

        Raises:
            DependencyInstallError: If the step fails on every attempt
        """
        command = self.commands.dependency_command()
        try:
            return await retry_async(
                lambda: self.run(command, project_root, log=log),
                policy=replace(self._dependency_retry, retry_on=(ToolchainError,)),
                description=" ".join(command),
                log=log,
            )
        except ToolchainError as e:
            raise DependencyInstallError(f"{' '.join(command)} failed: {e.stderr.strip() or e}") from e

    async def build(
        self,
        project_root: Path,
        signed: bool,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> CommandResult:
        """Run the signed release build or the unsigned simulator build."""
        return await self.run(self.commands.build_command(signed), project_root, log=log)
