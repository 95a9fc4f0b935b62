"""
Result reporter for completed jobs.

Delivers a job's terminal result to the coordinator and, when the job named
one, to its webhook. Delivery is best-effort: failures are logged and never
change the job's outcome.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from macbridge_agent.api_client import ApiError, CoordinatorClient
from macbridge_agent.errors import ReportDeliveryError
from macbridge_agent.models import JobResult
from macbridge_agent.retry import RetryPolicy, retry_async


logger = logging.getLogger("macbridge.agent.reporter")


@dataclass
class ReportOutcome:
    """Which sinks accepted the result."""
    coordinator_delivered: bool
    webhook_delivered: Optional[bool] = None


class ResultReporter:
    """
    Sends job results to the coordinator and optional webhooks.

    The two sinks are independent: a failing webhook does not affect
    coordinator delivery and vice versa.
    """

    def __init__(
        self,
        api_client: CoordinatorClient,
        attempts: int = 1,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """
        Initialize the reporter.

        Args:
            api_client: Coordinator client used for both sinks
            attempts: Delivery attempts per sink (1 disables retry)
            retry_policy: Backoff parameters (attempts taken from `attempts`)
        """
        self._api_client = api_client
        policy = (retry_policy or RetryPolicy()).with_attempts(attempts)
        self._policy = replace(policy, retry_on=(ApiError,))

    async def report(
        self,
        result: JobResult,
        webhook_url: Optional[str] = None,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> ReportOutcome:
        """
        Deliver a job result.

        Args:
            result: Terminal job result
            webhook_url: Optional callback URL receiving the same payload
            log: Logger or adapter for delivery lines

        Returns:
            ReportOutcome describing which deliveries succeeded
        """
        log = log or logger
        payload = result.to_payload()

        outcome = ReportOutcome(
            coordinator_delivered=await self._deliver(
                lambda: self._api_client.submit_result(payload),
                sink="coordinator",
                log=log,
            )
        )
        if outcome.coordinator_delivered:
            log.info(f"Result reported: {result.status.value}")

        if webhook_url:
            outcome.webhook_delivered = await self._deliver(
                lambda: self._api_client.post_webhook(webhook_url, payload),
                sink="webhook",
                log=log,
            )
            if outcome.webhook_delivered:
                log.info("Webhook notified")

        return outcome

    async def _deliver(self, send, sink: str, log: logging.LoggerAdapter) -> bool:
        try:
            await retry_async(send, policy=self._policy, description=f"Result delivery to {sink}", log=log)
            return True
        except ApiError as e:
            error = ReportDeliveryError(f"Failed to report result to {sink}: {e}", sink=sink)
            log.error(str(error))
            return False
        except Exception as e:
            log.error(f"Failed to report result to {sink}: {e}", exc_info=True)
            return False
