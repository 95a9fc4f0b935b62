"""
MacBridge Agent - Remote build execution worker.

This package provides the agent that runs on a machine owning the native
iOS/Flutter toolchain. The agent polls the coordinator for pending build
jobs, stages the job's source archive, runs the build (signed or unsigned),
publishes the resulting artifact and reports the outcome.

Key modules:
- main: Entry point and agent runner
- config: Agent configuration management
- api_client: HTTP client for coordinator communication
- polling_loop: Job polling loop
- job_executor: One job's pipeline from download to report
- stager: Archive download, extraction and project root discovery
- toolchain: External command invocation
- build_strategy: Signed/unsigned build selection
- publisher: Artifact packaging and upload
- result_reporter: Result delivery to coordinator and webhook
- log_relay: Buffered log streaming to the remote log collector
- retry: Bounded retry with exponential backoff
"""

import os
from importlib.metadata import PackageNotFoundError, version


def _get_version() -> str:
    """Version from MACBRIDGE_VERSION, else the installed distribution."""
    env_version = os.environ.get("MACBRIDGE_VERSION")
    if env_version:
        return env_version

    try:
        return version("macbridge-agent")
    except PackageNotFoundError:
        return "0.0.0.dev0"


__version__ = _get_version()
