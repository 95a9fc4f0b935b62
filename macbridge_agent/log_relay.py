"""
Log relay to the remote log collector.

Streams agent log entries over a persistent WebSocket connection. Producers
only enqueue; a dedicated background task owns the connection, flushes the
buffer in order whenever it is connected, and reconnects with backoff after
any disconnect. Entries queued while disconnected are kept (not dropped) and
delivered in their original order after the next successful reconnect.
"""

import asyncio
import json
import logging
import threading
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional

import websockets


# Not under "macbridge.agent" so the relay's own diagnostics are never fed
# back into the relay.
logger = logging.getLogger("macbridge.relay")

DEFAULT_RECONNECT_DELAY = 5.0  # seconds
DEFAULT_MAX_RECONNECT_DELAY = 60.0  # seconds
RECONNECT_MULTIPLIER = 2.0
OPEN_TIMEOUT = 10.0  # seconds


class LogRelay:
    """
    Buffered, reconnecting log stream.

    Each entry is sent as a JSON object {"log": str, "jobId": str} (jobId
    omitted when the entry is not tied to a job). An entry is removed from
    the buffer only after its send succeeded.

    Attributes:
        url: WebSocket URL of the log collector
        pending_count: Number of entries waiting to be delivered
        is_connected: Whether a connection is currently open
    """

    def __init__(
        self,
        url: str,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        max_reconnect_delay: float = DEFAULT_MAX_RECONNECT_DELAY,
        connect: Optional[Callable[..., Any]] = None,
    ):
        """
        Initialize the relay.

        Args:
            url: WebSocket URL of the log collector
            reconnect_delay: Delay before the first reconnect attempt
            max_reconnect_delay: Upper bound for the reconnect delay
            connect: Connection factory (defaults to websockets.connect)
        """
        self.url = url
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay
        self._connect = connect or websockets.connect
        self._buffer: Deque[Dict[str, Any]] = deque()
        self._wakeup = asyncio.Event()
        self._stopped = False
        self._connected = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[int] = None
        self._delivered = 0

    @property
    def pending_count(self) -> int:
        return len(self._buffer)

    @property
    def delivered_count(self) -> int:
        return self._delivered

    @property
    def is_connected(self) -> bool:
        return self._connected

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    def emit(self, message: str, job_id: Optional[str] = None) -> None:
        """
        Queue a log entry for delivery.

        Never blocks and never touches the connection. Safe to call from any
        pipeline stage, including executor threads.
        """
        entry: Dict[str, Any] = {"log": message}
        if job_id:
            entry["jobId"] = job_id
        self._buffer.append(entry)
        self._notify()

    def _notify(self) -> None:
        if self._loop is None or threading.get_ident() == self._loop_thread:
            self._wakeup.set()
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._wakeup.set)

    # -------------------------------------------------------------------------
    # Connection side
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        """
        Maintain the connection until stop() is called.

        Connection failures are logged and retried after the reconnect delay,
        which doubles after every consecutive failure up to the maximum.
        """
        self._loop = asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()
        delay = self._reconnect_delay

        logger.info(f"Log relay starting (sink: {self.url})")

        while not self._stopped:
            try:
                async with self._connect(self.url, open_timeout=OPEN_TIMEOUT) as connection:
                    self._connected = True
                    delay = self._reconnect_delay
                    logger.info(
                        f"Connected to log sink, flushing {len(self._buffer)} buffered entries"
                    )
                    await self._pump(connection)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Log sink connection lost: {e}")
            finally:
                self._connected = False

            if self._stopped:
                break

            logger.info(f"Reconnecting to log sink in {delay:.1f}s")
            await self._wait(delay)
            delay = min(delay * RECONNECT_MULTIPLIER, self._max_reconnect_delay)

        logger.info("Log relay stopped")

    async def _pump(self, connection: Any) -> None:
        """Send buffered entries in order, then wait for more or a disconnect."""
        while True:
            while self._buffer:
                entry = self._buffer[0]
                await connection.send(json.dumps(entry))
                self._buffer.popleft()
                self._delivered += 1

            if self._stopped:
                return

            self._wakeup.clear()
            if self._buffer:
                continue

            wakeup = asyncio.ensure_future(self._wakeup.wait())
            closed = asyncio.ensure_future(connection.wait_closed())
            try:
                done, _ = await asyncio.wait(
                    {wakeup, closed}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                for task in (wakeup, closed):
                    if not task.done():
                        task.cancel()

            if closed in done and wakeup not in done:
                raise ConnectionError("log sink closed the connection")

    async def _wait(self, delay: float) -> None:
        """Sleep for the reconnect delay unless stop() is requested."""
        self._wakeup.clear()
        if self._stopped:
            return
        try:
            await asyncio.wait_for(self._stop_requested(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _stop_requested(self) -> None:
        while not self._stopped:
            await self._wakeup.wait()
            self._wakeup.clear()

    def stop(self) -> None:
        """Request the relay to stop after flushing what it can."""
        self._stopped = True
        self._notify()


class LogRelayHandler(logging.Handler):
    """
    Logging handler that forwards records to a LogRelay.

    The job identifier is taken from the record's job_id attribute, which
    JobLogAdapter sets on every job-scoped line.
    """

    def __init__(self, relay: LogRelay, level: int = logging.INFO):
        super().__init__(level)
        self.relay = relay
        self.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.relay.emit(self.format(record), getattr(record, "job_id", None))
        except Exception:
            self.handleError(record)


class JobLogAdapter(logging.LoggerAdapter):
    """Prefixes messages with the job id and tags records for the relay."""

    def __init__(self, logger: logging.Logger, job_id: str):
        super().__init__(logger, {"job_id": job_id})

    @property
    def job_id(self) -> str:
        return self.extra["job_id"]

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra["job_id"] = self.job_id
        kwargs["extra"] = extra
        return f"[{self.job_id}] {msg}", kwargs
