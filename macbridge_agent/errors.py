"""
Exception taxonomy for job execution.

Every error that aborts a job derives from JobError; the job executor turns
any JobError into a failed job result carrying the error's message. Delivery
failures of an already decided result derive from AgentError only and are
logged and swallowed by the result reporter.
"""

from typing import Optional


class AgentError(Exception):
    """Base exception for agent errors."""

    pass


class JobError(AgentError):
    """Base exception for errors that fail the current job."""

    pass


class DownloadError(JobError):
    """Raised when the source archive cannot be downloaded."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ExtractionError(JobError):
    """Raised when the source archive is corrupt or unsafe."""

    pass


class ProjectNotFoundError(JobError):
    """Raised when no directory in the extracted tree holds the project marker."""

    pass


class ToolchainError(JobError):
    """
    Raised when an external command exits non-zero, times out or cannot start.

    Attributes:
        command: The argv that was executed
        exit_code: Process exit code (None if it never started or was killed)
        stderr: Captured standard error, for diagnostics
        timed_out: Whether the command exceeded its timeout
    """

    def __init__(
        self,
        message: str,
        command: Optional[list[str]] = None,
        exit_code: Optional[int] = None,
        stderr: str = "",
        timed_out: bool = False,
    ):
        super().__init__(message)
        self.command = command or []
        self.exit_code = exit_code
        self.stderr = stderr
        self.timed_out = timed_out


class DependencyInstallError(JobError):
    """Raised when the dependency resolution step fails."""

    pass


class SigningError(JobError):
    """Raised when importing the signing identity or profile fails."""

    pass


class ArtifactMissingError(JobError):
    """Raised when the build reported success but produced no artifact."""

    pass


class PublishError(JobError):
    """Raised when the artifact cannot be packaged or uploaded."""

    pass


class ReportDeliveryError(AgentError):
    """Raised when a job result cannot be delivered to a sink."""

    def __init__(self, message: str, sink: str = "coordinator"):
        super().__init__(message)
        self.sink = sink
