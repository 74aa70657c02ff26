import asyncio
import contextlib
import logging
from typing import Optional

from dispatcher import EventDispatcher

DEFAULT_CHECK_INTERVAL = 5.0    # seconds between checks
DEFAULT_TIMEOUT = 30.0          # seconds without heartbeat before disconnecting

logger = logging.getLogger(__name__)


class HeartbeatMonitor:
    """
    Periodically ends the session when the game stops sending heartbeats.
    Uses the same disconnect path as POST /disconnect, tagged with
    reason "heartbeat_timeout".
    """

    def __init__(
        self,
        dispatcher: EventDispatcher,
        interval: float = DEFAULT_CHECK_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.dispatcher = dispatcher
        self.interval = interval
        self.timeout = timeout
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def check(self) -> bool:
        """Run one check; returns True if the session was expired."""
        result = self.dispatcher.expire_session(self.timeout)
        if result is None:
            return False
        logger.warning("Heartbeat timeout - no heartbeat for more than %.0fs", self.timeout)
        return True

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.check()

    def start(self) -> asyncio.Task:
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self.run(), name="heartbeat-monitor")
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
