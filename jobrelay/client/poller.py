"""
Client-side status polling.

A StatusPoller watches one request id: it checks immediately, then every
`polling_interval` seconds until the job is terminal, the status endpoint has
failed `max_consecutive_failures` times in a row, `max_polling_time` has
passed, or the poller is cancelled. Giving up never touches the job itself;
it only means this client stopped looking.
"""

import asyncio
import dataclasses
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from jobrelay.common.config import PollerConfig
from jobrelay.common.errors import PollerError
from jobrelay.common.models import Job, JobError, JobStatus
from jobrelay.client.coalesce import RequestCoalescer, make_key

logger = logging.getLogger("client")

class StopReason(str, Enum):
    TERMINAL = "TERMINAL"
    FAILURES = "FAILURES"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"

@dataclasses.dataclass
class PollerSnapshot:
    request_id: str
    status: Optional[JobStatus] = None
    progress: int = 0
    message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[JobError] = None
    poller_error: Optional[PollerError] = None
    stop_reason: Optional[StopReason] = None
    is_polling: bool = False
    consecutive_failures: int = 0
    reads: int = 0

SnapshotListener = Callable[[PollerSnapshot], None]

class StatusPoller:
    def __init__(
        self,
        request_id: str,
        fetch: Callable[[str], Awaitable[Job]],
        config: PollerConfig = PollerConfig(),
        on_status_change: Optional[Callable[[Job], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        coalescer: Optional[RequestCoalescer] = None,
    ):
        self.request_id = request_id
        self.fetch = fetch
        self.config = config
        self.on_status_change = on_status_change
        self.clock = clock
        self.sleep = sleep
        self.coalescer = coalescer

        self._snapshot = PollerSnapshot(request_id=request_id)
        self._listeners: List[SnapshotListener] = []
        self._task: Optional[asyncio.Task] = None
        self._deadline: Optional[float] = None
        self._last_check: Optional[float] = None
        self._checking = False
        self._stopped = False

    @classmethod
    def for_client(cls, client, request_id: str, **kwargs) -> "StatusPoller":
        """Poll through a blocking `Client`, running each read in a worker thread."""
        async def fetch(rid: str) -> Job:
            return await asyncio.to_thread(client.check_status, rid)

        return cls(request_id, fetch, **kwargs)

    @property
    def snapshot(self) -> PollerSnapshot:
        return dataclasses.replace(self._snapshot)

    @property
    def is_polling(self) -> bool:
        return self._snapshot.is_polling

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self):
        snapshot = self.snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Snapshot listener failed for {self.request_id}: {e}")

    def start(self):
        """Begin polling. Must be called from within a running event loop."""
        if self._task is not None:
            return
        self._stopped = False
        self._deadline = self.clock() + self.config.max_polling_time
        self._snapshot.is_polling = True
        self._snapshot.stop_reason = None
        self._snapshot.poller_error = None
        self._task = asyncio.get_running_loop().create_task(self._run())

    def cancel(self):
        """Stop polling now. No check runs after this returns."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._stop(StopReason.CANCELLED)

    async def wait(self) -> PollerSnapshot:
        if self._task is not None:
            await asyncio.wait({self._task})
        return self.snapshot

    async def __aenter__(self) -> "StatusPoller":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.cancel()

    async def refresh(self) -> bool:
        """Out-of-band check that also clears the failure count. Still debounced."""
        self._snapshot.consecutive_failures = 0
        return await self._check()

    def _stop(self, reason: StopReason, error: Optional[PollerError] = None):
        if self._stopped:
            return
        self._stopped = True
        self._snapshot.is_polling = False
        self._snapshot.stop_reason = reason
        self._snapshot.poller_error = error
        if error is not None:
            logger.error(f"Stopped polling {self.request_id}: {error}")
        self._publish()

    async def _read(self) -> Job:
        if self.coalescer is None:
            return await self.fetch(self.request_id)
        key = make_key("check_status", self.request_id)
        return await self.coalescer.run(key, lambda: self.fetch(self.request_id))

    async def _check(self) -> bool:
        """Run one status read unless debounced or another read is in flight."""
        if self._checking:
            return False
        now = self.clock()
        if self._last_check is not None and now - self._last_check < self.config.debounce_interval:
            return False
        self._last_check = now

        self._checking = True
        try:
            self._snapshot.reads += 1
            # A read still pending at the deadline is abandoned, not awaited.
            read = asyncio.ensure_future(self._read())
            try:
                done, _ = await asyncio.wait({read}, timeout=self._time_left())
            finally:
                if not read.done():
                    read.cancel()
            if not done:
                self._stop_timeout()
                return True
            job = read.result()
        except Exception as e:
            self._snapshot.consecutive_failures += 1
            failures = self._snapshot.consecutive_failures
            logger.warning(f"Status check for {self.request_id} failed ({failures}): {e}")
            if failures >= self.config.max_consecutive_failures:
                self._stop(
                    StopReason.FAILURES,
                    PollerError(f"Status check failed {failures} times in a row: {e}", reason=StopReason.FAILURES.value),
                )
            else:
                self._publish()
            return True
        finally:
            self._checking = False

        self._apply(job)
        if job.status.is_terminal:
            self._stop(StopReason.TERMINAL)
        return True

    def _apply(self, job: Job):
        snapshot = self._snapshot
        snapshot.consecutive_failures = 0
        snapshot.status = job.status
        snapshot.progress = job.progress
        snapshot.message = job.message
        snapshot.result = job.result
        snapshot.error = job.error
        if self.on_status_change is not None:
            try:
                self.on_status_change(job)
            except Exception as e:
                logger.error(f"Status change callback failed for {self.request_id}: {e}")
        self._publish()

    def _time_left(self) -> Optional[float]:
        """Seconds until the polling deadline; None when no polling run is active."""
        if self._deadline is None or self._stopped:
            return None
        return max(0.0, self._deadline - self.clock())

    def _stop_timeout(self):
        self._stop(
            StopReason.TIMEOUT,
            PollerError(
                f"Request timed out after {self.config.max_polling_time:g}s of polling",
                reason=StopReason.TIMEOUT.value,
            ),
        )

    async def _run(self):
        try:
            await self._check()
            while not self._stopped:
                remaining = self._deadline - self.clock()
                if remaining > 0:
                    await self.sleep(min(self.config.polling_interval, remaining))
                if self._stopped:
                    break
                if self.clock() >= self._deadline:
                    self._stop_timeout()
                    break
                await self._check()
        finally:
            self._snapshot.is_polling = False
