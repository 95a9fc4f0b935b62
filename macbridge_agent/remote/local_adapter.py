"""
Local filesystem adapter.

Implements StorageAdapter for a local directory. Used for development and
tests, or when artifacts are served by a web server from a shared folder.

Design Pattern: Strategy pattern - same interface as remote adapters
"""

import shutil
from pathlib import Path
from typing import Optional, Tuple

from macbridge_agent.remote.base import StorageAdapter


class LocalAdapter(StorageAdapter):
    """
    Local filesystem adapter.

    Example:
        >>> adapter = LocalAdapter("/srv/builds", public_base_url="https://builds.example.com")
        >>> adapter.upload_file(Path("abc.app.zip"), "abc.zip")
        >>> adapter.public_url("abc.zip")
        'https://builds.example.com/abc.zip'
    """

    def __init__(self, directory: str, public_base_url: Optional[str] = None):
        """
        Initialize LocalAdapter.

        Args:
            directory: Directory receiving published files
            public_base_url: Optional URL under which the directory is served
        """
        super().__init__(str(Path(directory).expanduser()), {}, public_base_url)
        self.directory = Path(self.bucket)

    def _target(self, key: str) -> Path:
        target = (self.directory / key).resolve()
        if self.directory.resolve() not in target.parents:
            raise ValueError(f"Key escapes the publish directory: {key}")
        return target

    def upload_file(self, local_path: Path, key: str, content_type: str = "application/zip") -> None:
        target = self._target(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(local_path, target)
        except PermissionError:
            raise
        except OSError as e:
            raise ConnectionError(f"Copy to {target} failed: {e}")

    def make_public(self, key: str) -> None:
        try:
            self._target(key).chmod(0o644)
        except OSError as e:
            raise ConnectionError(f"Cannot update permissions of {key}: {e}")

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return self._target(key).as_uri()

    def test_connection(self) -> Tuple[bool, str]:
        """Check that the publish directory exists or can be created and is writable."""
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return False, f"Cannot create {self.directory}: {e}"

        marker = self.directory / ".macbridge-write-test"
        try:
            marker.write_bytes(b"")
            marker.unlink()
        except OSError as e:
            return False, f"Directory {self.directory} is not writable: {e}"

        return True, f"Publishing to local directory {self.directory}"
