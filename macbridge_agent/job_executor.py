"""
Job executor.

Drives one job through the build pipeline: workspace preparation, archive
download and extraction, project root resolution, dependency installation,
the build itself, artifact publication and result reporting.
"""

import logging
from typing import Optional

from macbridge_agent.build_strategy import BuildStrategySelector
from macbridge_agent.errors import JobError, PublishError
from macbridge_agent.log_relay import JobLogAdapter
from macbridge_agent.models import Job, JobResult
from macbridge_agent.publisher import ArtifactPublisher
from macbridge_agent.result_reporter import ResultReporter
from macbridge_agent.stager import ArtifactStager
from macbridge_agent.toolchain import ToolchainInvoker


logger = logging.getLogger("macbridge.agent.executor")


class JobExecutor:
    """
    Executes build jobs.

    Every job ends in exactly one JobResult, which is reported once. Job
    level errors never escape execute().

    Attributes:
        stager: Workspace, download and extraction
        invoker: Toolchain commands
        selector: Signed/unsigned build selection
        publisher: Artifact upload
        reporter: Result delivery (None disables reporting)
    """

    def __init__(
        self,
        stager: ArtifactStager,
        invoker: ToolchainInvoker,
        selector: BuildStrategySelector,
        publisher: ArtifactPublisher,
        reporter: Optional[ResultReporter] = None,
    ):
        self.stager = stager
        self.invoker = invoker
        self.selector = selector
        self.publisher = publisher
        self.reporter = reporter

    async def execute(self, job: Job) -> JobResult:
        """
        Run a job to its terminal result and report it.

        Args:
            job: Job to execute

        Returns:
            The job's result (success with output URL, or failed with error)
        """
        log = JobLogAdapter(logger, job.job_id)
        log.info(f"Starting job ({job.build_mode.value} build)")

        try:
            result = await self._run(job, log)
        except PublishError as e:
            result = JobResult.failure(job.job_id, f"Build succeeded but publishing failed: {e}")
        except JobError as e:
            result = JobResult.failure(job.job_id, str(e))
        except Exception as e:
            log.exception("Unexpected error during job execution")
            result = JobResult.failure(job.job_id, f"Unexpected error: {e}")

        if result.succeeded:
            log.info(f"Job succeeded: {result.output_url}")
        else:
            log.error(f"Job failed: {result.error}")

        if self.reporter is not None:
            await self.reporter.report(result, job.webhook_url, log=log)
        return result

    async def _run(self, job: Job, log: JobLogAdapter) -> JobResult:
        try:
            workspace = self.stager.prepare_workspace(job.job_id)
        except ValueError as e:
            raise JobError(str(e))
        except OSError as e:
            raise JobError(f"Cannot prepare workspace: {e}")

        log.info(f"Downloading {job.zip_url}")
        await self.stager.download(job.zip_url, workspace.archive_path, log=log)

        log.info("Extracting archive...")
        count = await self.stager.extract(workspace.archive_path, workspace.extract_dir)
        log.info(f"Extracted {count} entries")

        project_root = self.stager.resolve_project_root(workspace.extract_dir)
        log.info(f"Project root: {project_root}")

        log.info("Installing dependencies...")
        await self.invoker.install_dependencies(project_root, log=log)

        outcome = await self.selector.build(job.build_mode, project_root, workspace.output_path, log=log)

        output_url = await self.publisher.publish(job.job_id, outcome.artifact_path, log=log)
        return JobResult.success(job.job_id, output_url)
