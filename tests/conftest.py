"""
Pytest configuration and fixtures for MacBridge Agent tests.

This module provides shared fixtures for testing agent functionality,
including temporary configuration files, sample jobs, Flutter project
trees and a fake toolchain that stands in for flutter/security.
"""

import io
import logging
import tempfile
import zipfile
from pathlib import Path
from typing import Callable, Dict, Generator, Iterable, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import yaml

from macbridge_agent.api_client import CoordinatorClient
from macbridge_agent.build_strategy import RELEASE_PRODUCT, SIMULATOR_PRODUCT
from macbridge_agent.errors import ToolchainError
from macbridge_agent.log_relay import JobLogAdapter
from macbridge_agent.models import BuildMode, Job
from macbridge_agent.signing import CERTIFICATE_FILENAME, PASSWORD_FILENAME, PROFILE_FILENAME
from macbridge_agent.toolchain import CommandResult


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def temp_config_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for agent configuration files.

    Yields:
        Path to temporary configuration directory
    """
    with tempfile.TemporaryDirectory(prefix="macbridge_agent_test_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def agent_config(tmp_path: Path) -> dict:
    """
    Create a sample agent configuration.

    Returns:
        Dictionary with agent configuration
    """
    return {
        "server_url": "http://localhost:8000",
        "log_sink_url": "ws://localhost:8001/logs",
        "log_level": "DEBUG",
        "work_dir": str(tmp_path / "work"),
        "poll_interval_seconds": 5,
        "storage": {
            "backend": "local",
            "local_dir": str(tmp_path / "published"),
            "public_base_url": "https://cdn.example.com",
            "prefix": "builds/",
        },
    }


@pytest.fixture
def agent_config_file(temp_config_dir: Path, agent_config: dict) -> Path:
    """
    Create a temporary agent configuration file.

    Returns:
        Path to the configuration file
    """
    config_path = temp_config_dir / "agent-config.yaml"
    with open(config_path, "w") as f:
        yaml.dump(agent_config, f)
    return config_path


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch) -> None:
    """
    Clean environment variables that might affect tests.

    Removes MacBridge-related environment variables to ensure test isolation.
    """
    for name in (
        "MACBRIDGE_SERVER_URL",
        "MACBRIDGE_LOG_SINK_URL",
        "MACBRIDGE_LOG_LEVEL",
        "MACBRIDGE_WORK_DIR",
        "MACBRIDGE_STORAGE_BACKEND",
        "MACBRIDGE_CONFIG_PATH",
        "MACBRIDGE_VERSION",
    ):
        monkeypatch.delenv(name, raising=False)


# ============================================================================
# Job Fixtures
# ============================================================================


@pytest.fixture
def sample_job() -> Job:
    """A release job with a webhook."""
    return Job(
        job_id="abc",
        zip_url="https://files.example.com/abc.zip",
        build_mode=BuildMode.RELEASE,
        webhook_url="https://hooks.example.com/notify",
    )


@pytest.fixture
def job_log() -> JobLogAdapter:
    return JobLogAdapter(logging.getLogger("macbridge.agent.test"), "abc")


# ============================================================================
# Mock Client Fixtures
# ============================================================================


@pytest.fixture
def mock_api_client() -> MagicMock:
    """
    Create a mock coordinator client.

    Returns:
        Mock CoordinatorClient with async methods
    """
    client = MagicMock(spec=CoordinatorClient)
    client.fetch_next_job = AsyncMock(return_value=None)
    client.submit_result = AsyncMock()
    client.post_webhook = AsyncMock()
    client.ping = AsyncMock(return_value=True)
    client.close = AsyncMock()
    return client


@pytest.fixture
def mock_websocket() -> MagicMock:
    """
    Create a mock WebSocket connection for testing the log relay.

    Returns:
        Mock websockets connection
    """
    ws = MagicMock()
    ws.send = AsyncMock()
    ws.wait_closed = AsyncMock()
    ws.close = AsyncMock()
    ws.__aenter__ = AsyncMock(return_value=ws)
    ws.__aexit__ = AsyncMock(return_value=False)
    return ws


# ============================================================================
# Project and Archive Fixtures
# ============================================================================


def add_signing_files(project_root: Path, skip: Iterable[str] = (), password: str = "s3cret") -> None:
    """Write the signing bundle files into a project, leaving out `skip`."""
    contents = {
        CERTIFICATE_FILENAME: b"p12-bytes",
        PROFILE_FILENAME: b"profile-bytes",
        PASSWORD_FILENAME: f"{password}\n".encode(),
    }
    for name, data in contents.items():
        if name not in skip:
            (project_root / name).write_bytes(data)


@pytest.fixture
def flutter_project(tmp_path: Path) -> Path:
    """A minimal Flutter project nested one level below the extraction root."""
    root = tmp_path / "extracted" / "my_app"
    (root / "lib").mkdir(parents=True)
    (root / "pubspec.yaml").write_text("name: my_app\n")
    (root / "lib" / "main.dart").write_text("void main() {}\n")
    return root


def build_zip(entries: Dict[str, Optional[bytes]]) -> bytes:
    """
    Build an in-memory zip archive.

    Args:
        entries: Archive member name -> content (None for a directory entry)
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, content in entries.items():
            if content is None:
                zf.writestr(zipfile.ZipInfo(name.rstrip("/") + "/"), b"")
            else:
                zf.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture
def zip_builder() -> Callable[[Dict[str, Optional[bytes]]], bytes]:
    return build_zip


@pytest.fixture
def project_archive() -> bytes:
    """Zip of a Flutter project wrapped in a top-level folder, with signing files."""
    return build_zip({
        "my_app/": None,
        "my_app/pubspec.yaml": b"name: my_app\n",
        "my_app/lib/main.dart": b"void main() {}\n",
        "my_app/signing.p12": b"p12-bytes",
        "my_app/profile.mobileprovision": b"profile-bytes",
        "my_app/password.txt": b"s3cret\n",
    })


# ============================================================================
# Fake Toolchain
# ============================================================================


class FakeToolchain:
    """
    Stand-in for ToolchainInvoker.

    Records every command instead of running it. Build commands create the
    conventional Runner.app product unless create_products is False.
    Commands containing a key of fail_on raise the mapped error.
    """

    def __init__(
        self,
        fail_on: Optional[Dict[str, Exception]] = None,
        create_products: bool = True,
    ):
        self.commands: list = []
        self.fail_on = fail_on or {}
        self.create_products = create_products

    async def run(self, command, working_dir, timeout=None, log=None, secrets=()):
        self.commands.append(list(command))
        for needle, error in self.fail_on.items():
            if needle in command:
                raise error
        return CommandResult(list(command), 0, "", "", 0.0)

    async def install_dependencies(self, project_root, log=None):
        return await self.run(["flutter", "pub", "get"], project_root, log=log)

    async def build(self, project_root, signed, log=None):
        flag = "--release" if signed else "--simulator"
        result = await self.run(["flutter", "build", "ios", flag], project_root, log=log)
        if self.create_products:
            product = Path(project_root) / (RELEASE_PRODUCT if signed else SIMULATOR_PRODUCT)
            product.mkdir(parents=True, exist_ok=True)
            (product / "Info.plist").write_text("<plist/>")
        return result

    def ran(self, *needles: str) -> bool:
        """Whether some recorded command contains all the given arguments."""
        return any(all(n in command for n in needles) for command in self.commands)


@pytest.fixture
def fake_toolchain() -> FakeToolchain:
    return FakeToolchain()


@pytest.fixture
def failing_import_toolchain() -> FakeToolchain:
    return FakeToolchain(
        fail_on={"import": ToolchainError("security import failed", stderr="MAC verification failed for s3cret")}
    )
