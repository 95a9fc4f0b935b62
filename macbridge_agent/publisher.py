"""
Artifact publisher.

Packages a build artifact as a zip archive, uploads it through the
configured storage adapter, grants public read access and returns the URL
the coordinator hands out to users.
"""

import asyncio
import logging
import shutil
from dataclasses import replace
from pathlib import Path
from typing import Optional

from macbridge_agent.errors import PublishError
from macbridge_agent.remote import StorageAdapter
from macbridge_agent.retry import RetryPolicy, retry_async


logger = logging.getLogger("macbridge.agent.publisher")


class ArtifactPublisher:
    """
    Publishes build artifacts to object storage.

    Attributes:
        adapter: Storage backend receiving the archives
        prefix: Key prefix prepended to every uploaded archive
    """

    def __init__(
        self,
        adapter: StorageAdapter,
        prefix: str = "",
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.adapter = adapter
        self.prefix = prefix
        self._retry_policy = replace(retry_policy or RetryPolicy(), retry_on=(ConnectionError,))

    def key_for(self, job_id: str) -> str:
        return f"{self.prefix}{job_id}.zip"

    async def publish(
        self,
        job_id: str,
        artifact_path: Path,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> str:
        """
        Zip, upload and expose an artifact.

        Args:
            job_id: Job identifier, used as the object name
            artifact_path: Application bundle directory to publish
            log: Logger or adapter for progress lines

        Returns:
            Public download URL

        Raises:
            PublishError: If packaging, upload or the ACL change fails
        """
        log = log or logger
        key = self.key_for(job_id)
        loop = asyncio.get_running_loop()

        log.info("Zipping artifact...")
        try:
            archive = await loop.run_in_executor(None, make_zip, Path(artifact_path))
        except OSError as e:
            raise PublishError(f"Cannot package {artifact_path}: {e}")

        try:
            log.info(f"Uploading {archive.name} as {key}...")
            await retry_async(
                lambda: loop.run_in_executor(None, self.adapter.upload_file, archive, key),
                policy=self._retry_policy,
                description="Upload",
                log=log,
            )
            await retry_async(
                lambda: loop.run_in_executor(None, self.adapter.make_public, key),
                policy=self._retry_policy,
                description="Public access grant",
                log=log,
            )
            url = self.adapter.public_url(key)
        except (ConnectionError, PermissionError, ValueError) as e:
            raise PublishError(str(e))
        except Exception as e:
            log.error(f"Unexpected storage error: {e}", exc_info=True)
            raise PublishError(f"Unexpected storage error: {e}") from e
        finally:
            archive.unlink(missing_ok=True)

        log.info(f"Published at {url}")
        return url


def make_zip(artifact_path: Path) -> Path:
    """Compress a directory into <artifact>.zip next to it, keeping its name as top-level entry."""
    if not artifact_path.is_dir():
        raise FileNotFoundError(f"Artifact directory not found: {artifact_path}")

    archive = shutil.make_archive(
        str(artifact_path),
        "zip",
        root_dir=artifact_path.parent,
        base_dir=artifact_path.name,
    )
    return Path(archive)
