"""
Data model for build jobs.

Job is created from a coordinator poll response and stays immutable while
the agent processes it. JobResult is produced exactly once per job when the
pipeline reaches a terminal state.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse


logger = logging.getLogger("macbridge.agent.models")


class BuildMode(str, Enum):
    """Requested build mode."""
    SIMULATOR = "simulator"
    RELEASE = "release"

    @classmethod
    def parse(cls, value: Optional[str]) -> "BuildMode":
        """
        Parse a build mode string, defaulting to simulator.

        Unknown values fall back to simulator, matching the coordinator's
        default for jobs without an explicit mode.
        """
        if not value:
            return cls.SIMULATOR
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            logger.warning(f"Unknown build mode {value!r}, using simulator")
            return cls.SIMULATOR


def parse_webhook_url(value: Any) -> Optional[str]:
    """
    Return value if it is an absolute http(s) URL, else None.

    Anything else is dropped with a warning.
    """
    if not value:
        return None
    if isinstance(value, str):
        parsed = urlparse(value)
        if parsed.scheme in ("http", "https") and parsed.netloc:
            return value
    logger.warning(f"Ignoring invalid webhook_url {value!r}")
    return None


class JobStatus(str, Enum):
    """Terminal job status."""
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class Job:
    """
    A build job returned by the coordinator.

    Attributes:
        job_id: Unique job identifier
        zip_url: URL of the source archive
        build_mode: Requested build mode
        webhook_url: Optional callback URL for result notification
    """
    job_id: str
    zip_url: str
    build_mode: BuildMode = BuildMode.SIMULATOR
    webhook_url: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> Optional["Job"]:
        """
        Build a Job from a poll response body.

        Returns:
            Job, or None if the payload does not describe a job
            (missing job_id or zip_url)
        """
        job_id = payload.get("job_id")
        zip_url = payload.get("zip_url")
        if not job_id or not zip_url:
            return None

        return cls(
            job_id=str(job_id),
            zip_url=str(zip_url),
            build_mode=BuildMode.parse(payload.get("build_mode")),
            webhook_url=parse_webhook_url(payload.get("webhook_url")),
        )


@dataclass
class JobResult:
    """Terminal outcome of a job."""
    job_id: str
    status: JobStatus
    output_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.SUCCESS

    @classmethod
    def success(cls, job_id: str, output_url: str) -> "JobResult":
        return cls(job_id=job_id, status=JobStatus.SUCCESS, output_url=output_url)

    @classmethod
    def failure(cls, job_id: str, error: str) -> "JobResult":
        return cls(job_id=job_id, status=JobStatus.FAILED, error=error)

    def to_payload(self) -> Dict[str, Any]:
        """Serialize to the result report wire format."""
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "output_url": self.output_url,
            "error": self.error,
        }


@dataclass(frozen=True)
class Workspace:
    """
    Per-job filesystem scope.

    Attributes:
        root: Job scratch directory (destroyed and recreated per job)
        archive_path: Download location of the source archive
        extract_dir: Extraction directory
        output_path: Final location of the build artifact
    """
    root: Path
    archive_path: Path
    extract_dir: Path
    output_path: Path
