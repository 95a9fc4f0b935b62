"""
Agent main loop.

Wires the configured components together and runs the job polling loop and
the log relay until SIGINT/SIGTERM.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from macbridge_agent import __version__
from macbridge_agent.api_client import CoordinatorClient
from macbridge_agent.build_strategy import BuildStrategySelector
from macbridge_agent.config import AgentConfig, ConfigError
from macbridge_agent.job_executor import JobExecutor
from macbridge_agent.log_relay import LogRelay, LogRelayHandler
from macbridge_agent.polling_loop import JobPollingLoop
from macbridge_agent.publisher import ArtifactPublisher
from macbridge_agent.remote import create_adapter
from macbridge_agent.result_reporter import ResultReporter
from macbridge_agent.retry import RetryPolicy
from macbridge_agent.signing import SigningStore
from macbridge_agent.stager import ArtifactStager
from macbridge_agent.toolchain import ToolchainCommands, ToolchainInvoker


AGENT_LOGGER = "macbridge.agent"
RELAY_FLUSH_TIMEOUT = 5.0  # seconds


# ============================================================================
# Logging Setup
# ============================================================================


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Setup logging for the agent.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured logger
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return logging.getLogger(AGENT_LOGGER)


# ============================================================================
# Component Wiring
# ============================================================================


def build_executor(
    config: AgentConfig,
    api_client: Optional[CoordinatorClient] = None,
) -> JobExecutor:
    """
    Build a job executor from configuration.

    Args:
        config: Agent configuration
        api_client: Coordinator client for result reporting (None disables reporting)

    Raises:
        ValueError: If the storage backend is misconfigured
    """
    invoker = ToolchainInvoker(
        timeout=config.toolchain_timeout_seconds,
        commands=ToolchainCommands(flutter=config.flutter_path),
        dependency_retry=RetryPolicy(max_attempts=config.dependency_attempts, initial_backoff=2.0),
    )
    stager = ArtifactStager(
        jobs_dir=config.jobs_dir,
        outputs_dir=config.outputs_dir,
        max_redirects=config.max_redirects,
        retry_policy=RetryPolicy(max_attempts=config.download_attempts),
    )
    signing_store = SigningStore(
        invoker,
        keychain_path=Path(config.keychain_path),
        profiles_dir=Path(config.provisioning_profiles_dir),
        security_path=config.security_path,
    )
    storage = config.storage
    publisher = ArtifactPublisher(
        create_adapter(storage),
        prefix=storage.get("prefix", ""),
        retry_policy=RetryPolicy(max_attempts=config.upload_attempts),
    )
    reporter = None
    if api_client is not None:
        reporter = ResultReporter(api_client, attempts=config.report_attempts)

    return JobExecutor(
        stager=stager,
        invoker=invoker,
        selector=BuildStrategySelector(invoker, signing_store),
        publisher=publisher,
        reporter=reporter,
    )


# ============================================================================
# Agent Runner
# ============================================================================


class AgentRunner:
    """
    Main agent loop runner.

    Runs the job polling loop and, when a log sink is configured, the log
    relay. Handles graceful shutdown on SIGINT/SIGTERM: the job in progress
    is finished and reported before the agent exits.

    Attributes:
        config: Agent configuration
        logger: Logger instance
    """

    def __init__(self, config: AgentConfig):
        """
        Initialize the agent runner.

        Args:
            config: Agent configuration
        """
        self.config = config
        self.logger = setup_logging(config.log_level)
        self._api_client: Optional[CoordinatorClient] = None
        self._polling_loop: Optional[JobPollingLoop] = None
        self._relay: Optional[LogRelay] = None
        self._relay_handler: Optional[LogRelayHandler] = None
        self._shutdown_requested = False

    async def run(self) -> int:
        """
        Run the main agent loop.

        Returns:
            Exit code (0 for success, non-zero for error)
        """
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_shutdown)

        if not self.config.is_configured:
            self.logger.error("Agent is not configured with a server URL.")
            return 1

        self.logger.info(f"Starting MacBridge Agent v{__version__}")
        self.logger.info(f"Server: {self.config.server_url}")
        self.logger.info(f"Work directory: {self.config.work_dir}")
        self.logger.info(f"Poll interval: {self.config.poll_interval_seconds}s")

        self._start_relay()
        relay_task = asyncio.create_task(self._relay.run()) if self._relay else None

        self._api_client = CoordinatorClient(
            server_url=self.config.server_url,
            timeout=self.config.request_timeout_seconds,
        )

        try:
            executor = build_executor(self.config, self._api_client)
        except ValueError as e:
            self.logger.error(f"Invalid storage configuration: {e}")
            await self._api_client.close()
            await self._stop_relay(relay_task)
            return 1

        self._polling_loop = JobPollingLoop(
            api_client=self._api_client,
            job_executor=executor,
            poll_interval=self.config.poll_interval_seconds,
        )
        if self._shutdown_requested:
            self._polling_loop.request_shutdown()

        try:
            return await self._polling_loop.run()
        finally:
            await executor.stager.close()
            await self._api_client.close()
            self.logger.info("Agent stopped")
            await self._stop_relay(relay_task)

    def _start_relay(self) -> None:
        if not self.config.log_sink_url:
            self.logger.info("No log sink configured, remote log relay disabled")
            return

        self._relay = LogRelay(
            self.config.log_sink_url,
            reconnect_delay=self.config.reconnect_delay_seconds,
            max_reconnect_delay=self.config.max_reconnect_delay_seconds,
        )
        self._relay_handler = LogRelayHandler(self._relay)
        logging.getLogger(AGENT_LOGGER).addHandler(self._relay_handler)

    async def _stop_relay(self, relay_task: Optional[asyncio.Task]) -> None:
        if self._relay_handler is not None:
            logging.getLogger(AGENT_LOGGER).removeHandler(self._relay_handler)
        if relay_task is None:
            return

        self._relay.stop()
        try:
            await asyncio.wait_for(relay_task, timeout=RELAY_FLUSH_TIMEOUT)
        except asyncio.TimeoutError:
            self.logger.warning(f"Log relay stopped with {self._relay.pending_count} undelivered entries")

    def request_shutdown(self) -> None:
        """Request graceful shutdown of the agent."""
        self._shutdown_requested = True
        self.logger.info("Shutdown requested")
        if self._polling_loop is not None:
            self._polling_loop.request_shutdown()


# ============================================================================
# Main Entry Point
# ============================================================================


def run_agent(config_path: Optional[Path] = None) -> int:
    """
    Run the agent.

    This is the main entry point for the agent daemon.

    Returns:
        Exit code
    """
    try:
        config = AgentConfig(config_path=config_path)
        config.validate()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    runner = AgentRunner(config)
    return asyncio.run(runner.run())


if __name__ == "__main__":
    sys.exit(run_agent())
