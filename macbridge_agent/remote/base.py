"""
Abstract base class for artifact storage adapters.

Defines the interface for publishing build artifacts to an object store
(S3, GCS) or a local directory. All concrete adapters implement
upload_file(), make_public(), public_url() and test_connection().

Design Pattern: Strategy pattern for pluggable storage backends
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


class StorageAdapter(ABC):
    """
    Abstract base class for artifact storage adapters.

    Adapters raise ConnectionError for failures that may succeed on a later
    attempt and PermissionError for credential/permission problems, which
    are not worth retrying.

    Usage:
        >>> adapter = S3Adapter(bucket="builds", credentials={...})
        >>> adapter.upload_file(Path("/tmp/abc.app.zip"), "builds/abc.zip")
        >>> adapter.make_public("builds/abc.zip")
        >>> url = adapter.public_url("builds/abc.zip")
    """

    def __init__(
        self,
        bucket: str = "",
        credentials: Optional[Dict[str, Any]] = None,
        public_base_url: Optional[str] = None,
    ):
        """
        Initialize storage adapter.

        Args:
            bucket: Bucket (S3/GCS) or directory (local) receiving artifacts
            credentials: Backend credentials
                S3: {"aws_access_key_id": "...", "aws_secret_access_key": "...", "region": "us-west-2"}
                GCS: {"service_account_json": "..."}
                Local: {}
            public_base_url: Optional base URL under which uploaded keys are served
        """
        self.bucket = bucket
        self.credentials = credentials or {}
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    @abstractmethod
    def upload_file(self, local_path: Path, key: str, content_type: str = "application/zip") -> None:
        """
        Upload a local file under the given key.

        Raises:
            ConnectionError: If the upload fails for a transient reason
            PermissionError: If credentials lack write permission
        """
        pass

    @abstractmethod
    def make_public(self, key: str) -> None:
        """
        Grant public read access to an uploaded object.

        Raises:
            ConnectionError: If the request fails for a transient reason
            PermissionError: If credentials cannot change access control
        """
        pass

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Durable public download URL of an uploaded object."""
        pass

    @abstractmethod
    def test_connection(self) -> Tuple[bool, str]:
        """
        Test connectivity and credentials.

        Returns:
            Tuple of (success: bool, message: str)
        """
        pass
