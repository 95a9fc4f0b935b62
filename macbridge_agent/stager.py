"""
Artifact stager.

Prepares a job's workspace: downloads the source archive (following
redirects), extracts it, and locates the project root by searching for the
project marker file.
"""

import asyncio
import logging
import re
import shutil
import zipfile
import zlib
from dataclasses import replace
from pathlib import Path, PurePosixPath
from typing import Optional

import httpx

from macbridge_agent.errors import DownloadError, ExtractionError, ProjectNotFoundError
from macbridge_agent.models import Workspace
from macbridge_agent.retry import RetryPolicy, retry_async


logger = logging.getLogger("macbridge.agent.stager")

PROJECT_MARKER = "pubspec.yaml"
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
DEFAULT_MAX_REDIRECTS = 5
DOWNLOAD_TIMEOUT = 300.0  # seconds
CHUNK_SIZE = 1024 * 1024

SAFE_JOB_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


class ArtifactStager:
    """
    Stages a job's source archive into an isolated workspace.

    Attributes:
        jobs_dir: Root of the per-job scratch directories
        outputs_dir: Root of the completed artifacts
        max_redirects: Maximum number of redirect hops per download
    """

    def __init__(
        self,
        jobs_dir: Path,
        outputs_dir: Path,
        http_client: Optional[httpx.AsyncClient] = None,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        retry_policy: Optional[RetryPolicy] = None,
        project_marker: str = PROJECT_MARKER,
    ):
        """
        Initialize the stager.

        Args:
            jobs_dir: Root directory for per-job workspaces
            outputs_dir: Directory receiving build artifacts
            http_client: HTTP client to use (one is created if omitted)
            max_redirects: Maximum redirect hops before failing
            retry_policy: Retry parameters for transient transport errors
            project_marker: Filename identifying the project root
        """
        self.jobs_dir = Path(jobs_dir)
        self.outputs_dir = Path(outputs_dir)
        self.max_redirects = max_redirects
        self.project_marker = project_marker
        self._retry_policy = retry_policy or RetryPolicy()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=DOWNLOAD_TIMEOUT,
            follow_redirects=False,
        )

    # -------------------------------------------------------------------------
    # Workspace
    # -------------------------------------------------------------------------

    def prepare_workspace(self, job_id: str) -> Workspace:
        """
        Create a fresh workspace for a job.

        Any workspace left over from a previous job with the same identifier
        is destroyed first.

        Raises:
            ValueError: If the job id is not a safe directory name
        """
        if not SAFE_JOB_ID.match(job_id) or job_id in (".", ".."):
            raise ValueError(f"Job id {job_id!r} is not a valid workspace name")

        root = self.jobs_dir / job_id
        archive_path = self.jobs_dir / f"{job_id}.zip"
        output_path = self.outputs_dir / f"{job_id}.app"

        if root.exists():
            logger.debug(f"Removing stale workspace {root}")
            shutil.rmtree(root)
        archive_path.unlink(missing_ok=True)

        root.mkdir(parents=True)
        self.outputs_dir.mkdir(parents=True, exist_ok=True)

        return Workspace(
            root=root,
            archive_path=archive_path,
            extract_dir=root,
            output_path=output_path,
        )

    # -------------------------------------------------------------------------
    # Download
    # -------------------------------------------------------------------------

    async def download(
        self,
        url: str,
        dest: Path,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> Path:
        """
        Download an archive, following redirects.

        Args:
            url: Archive URL
            dest: Local file to write
            log: Logger or adapter for progress lines

        Returns:
            Path to the downloaded archive

        Raises:
            DownloadError: On a redirect without Location, a non-200 final
                status, too many redirects, or a transport failure that
                persists after retries
        """
        log = log or logger
        try:
            return await retry_async(
                lambda: self._download_once(url, dest, log),
                policy=replace(self._retry_policy, retry_on=(httpx.TransportError,)),
                description=f"Download of {url}",
                log=log,
            )
        except httpx.TransportError as e:
            dest.unlink(missing_ok=True)
            raise DownloadError(f"Download failed: {e}")

    async def _download_once(self, url: str, dest: Path, log: logging.LoggerAdapter) -> Path:
        current_url = httpx.URL(url)

        for _ in range(self.max_redirects + 1):
            async with self._client.stream("GET", current_url) as response:
                if response.status_code in REDIRECT_STATUSES:
                    location = response.headers.get("location")
                    if not location:
                        raise DownloadError(
                            "Redirect with no location header",
                            status_code=response.status_code,
                        )
                    current_url = current_url.join(location)
                    log.info(f"Redirecting to: {current_url}")
                    continue

                if response.status_code != 200:
                    raise DownloadError(
                        f"Download failed: {response.status_code}",
                        status_code=response.status_code,
                    )

                dest.parent.mkdir(parents=True, exist_ok=True)
                size = 0
                with open(dest, "wb") as f:
                    async for chunk in response.aiter_bytes(CHUNK_SIZE):
                        f.write(chunk)
                        size += len(chunk)

                log.info(f"Downloaded {size} bytes to {dest}")
                return dest

        raise DownloadError(f"Too many redirects (limit {self.max_redirects})")

    # -------------------------------------------------------------------------
    # Extraction
    # -------------------------------------------------------------------------

    async def extract(self, archive_path: Path, dest_dir: Path) -> int:
        """
        Extract an archive into dest_dir.

        Returns:
            Number of files written

        Raises:
            ExtractionError: If the archive is corrupt or contains unsafe paths
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, extract_archive, archive_path, dest_dir)

    # -------------------------------------------------------------------------
    # Project root
    # -------------------------------------------------------------------------

    def resolve_project_root(self, root_dir: Path) -> Path:
        """
        Find the directory containing the project marker.

        Raises:
            ProjectNotFoundError: If no directory in the tree has the marker
        """
        found = find_project_root(root_dir, self.project_marker)
        if found is None:
            raise ProjectNotFoundError(f"{self.project_marker} not found in any folder")
        return found

    async def close(self) -> None:
        """Close the HTTP client if the stager created it."""
        if self._owns_client:
            await self._client.aclose()


def _safe_member_path(dest_dir: Path, name: str) -> Path:
    parts = PurePosixPath(name.replace("\\", "/")).parts
    if not parts or PurePosixPath(name).is_absolute() or ".." in parts:
        raise ExtractionError(f"Unsafe path in archive: {name}")
    return dest_dir.joinpath(*parts)


def extract_archive(archive_path: Path, dest_dir: Path) -> int:
    """
    Extract a zip archive, creating every directory before writing files.

    Args:
        archive_path: Zip file to extract
        dest_dir: Destination directory

    Returns:
        Number of files written

    Raises:
        ExtractionError: If the archive is corrupt or contains unsafe paths
    """
    dest_dir = Path(dest_dir)
    try:
        with zipfile.ZipFile(archive_path) as zf:
            members = zf.infolist()
            targets = [(member, _safe_member_path(dest_dir, member.filename)) for member in members]

            # Directories first, including parents of file entries
            dest_dir.mkdir(parents=True, exist_ok=True)
            for member, target in targets:
                if member.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                else:
                    target.parent.mkdir(parents=True, exist_ok=True)

            file_count = 0
            for member, target in targets:
                if member.is_dir():
                    continue
                with zf.open(member) as source, open(target, "wb") as out:
                    shutil.copyfileobj(source, out)
                file_count += 1

    except zipfile.BadZipFile as e:
        raise ExtractionError(f"Corrupt archive: {e}")
    except (OSError, EOFError, zlib.error, zipfile.LargeZipFile) as e:
        raise ExtractionError(f"Extraction failed: {e}")
    except RuntimeError as e:
        # encrypted entries and unsupported compression methods
        raise ExtractionError(f"Unreadable archive entry: {e}")

    logger.info(f"Extracted {file_count} files to {dest_dir}")
    return file_count


def find_project_root(start: Path, marker: str = PROJECT_MARKER) -> Optional[Path]:
    """
    Depth-first search for the first directory containing marker.

    A directory is checked before its children; children are visited in
    lexicographic order. Symlinked directories are not followed.
    """
    start = Path(start)
    if (start / marker).is_file():
        return start

    try:
        children = sorted(
            (entry for entry in start.iterdir() if entry.is_dir() and not entry.is_symlink()),
            key=lambda p: p.name,
        )
    except OSError:
        return None

    for child in children:
        found = find_project_root(child, marker)
        if found is not None:
            return found
    return None
