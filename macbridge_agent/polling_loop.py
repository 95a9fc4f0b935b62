"""
Job polling loop for agent.

Implements the main job polling loop that:
- Polls the coordinator for the next job at a fixed interval
- Executes a returned job to its terminal result before polling again
- Treats poll errors as "no job this tick" and keeps going
"""

import asyncio
import logging
from typing import Optional

from macbridge_agent.api_client import ApiError, CoordinatorClient
from macbridge_agent.job_executor import JobExecutor
from macbridge_agent.models import Job


logger = logging.getLogger("macbridge.agent.polling")

# Configuration
DEFAULT_POLL_INTERVAL = 10  # seconds between job polls


class JobPollingLoop:
    """
    Job polling loop.

    Only one job runs at a time: the next poll is issued once the current
    job has been executed and reported. The loop runs until shutdown is
    requested; no poll or job failure stops it.

    Attributes:
        api_client: Coordinator client
        job_executor: Executor running each job
        poll_interval: Seconds between polls
    """

    def __init__(
        self,
        api_client: CoordinatorClient,
        job_executor: JobExecutor,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        """
        Initialize the polling loop.

        Args:
            api_client: Coordinator client
            job_executor: Executor running each job
            poll_interval: Seconds between polls
        """
        self._api_client = api_client
        self._job_executor = job_executor
        self._poll_interval = poll_interval
        self._shutdown_event = asyncio.Event()
        self._current_job: Optional[Job] = None
        self._jobs_executed = 0

    async def run(self) -> int:
        """
        Run the job polling loop until shutdown.

        Returns:
            Exit code (always 0)
        """
        logger.info(f"Starting job polling loop (interval: {self._poll_interval}s)")

        try:
            while not self._shutdown_event.is_set():
                await self.poll_once()
                await self._wait_for_next_poll()
        except asyncio.CancelledError:
            logger.info("Polling loop cancelled")
            return 0

        logger.info("Polling loop stopped")
        return 0

    async def poll_once(self) -> bool:
        """
        Poll for a job and execute it if available.

        Returns:
            True if a job was executed, False if no job was available
        """
        job = await self._fetch_job()
        if job is None:
            logger.info("No jobs available.")
            return False

        self._current_job = job
        logger.info(f"Received job {job.job_id} ({job.build_mode.value})")

        try:
            result = await self._job_executor.execute(job)
            logger.info(f"Job {job.job_id} finished: {result.status.value}")
        except Exception as e:
            # The executor reports its own failures; this only guards the loop.
            logger.error(f"Job {job.job_id} aborted: {e}", exc_info=True)
        finally:
            self._current_job = None
            self._jobs_executed += 1

        return True

    async def _fetch_job(self) -> Optional[Job]:
        try:
            return await self._api_client.fetch_next_job()
        except ApiError as e:
            logger.warning(f"Job poll failed: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error during job poll: {e}", exc_info=True)
            return None

    async def _wait_for_next_poll(self) -> None:
        """Wait for the next poll interval or shutdown signal."""
        try:
            await asyncio.wait_for(
                self._shutdown_event.wait(),
                timeout=self._poll_interval,
            )
        except asyncio.TimeoutError:
            # Normal timeout, continue polling
            pass

    def request_shutdown(self) -> None:
        """Request graceful shutdown of the polling loop."""
        self._shutdown_event.set()

    @property
    def current_job(self) -> Optional[Job]:
        """Get the currently executing job, if any."""
        return self._current_job

    @property
    def jobs_executed(self) -> int:
        return self._jobs_executed

    @property
    def is_running(self) -> bool:
        """Check if the polling loop is running."""
        return not self._shutdown_event.is_set()
