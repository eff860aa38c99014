"""
Connection liveness tracking.

ActivityClock holds the last time anything arrived from the server.
LivenessMonitor periodically sends a ping and reports when the clock goes
stale; deciding what to do about a stale connection is left to the caller.
"""

import asyncio
import threading
import time
from typing import Awaitable, Callable, Optional

from bitfinex_feed.core.logger import get_module_logger
from bitfinex_feed.market_data.commands import IApiCommand, Ping


class ActivityClock:
    """Thread-safe wall-clock timestamp of the last confirmed server activity."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._last_activity = 0.0

    def touch(self) -> float:
        now = self._clock()
        with self._lock:
            # Never move backwards if the wall clock is adjusted.
            if now > self._last_activity:
                self._last_activity = now
            return self._last_activity

    def get(self) -> float:
        with self._lock:
            return self._last_activity

    def seconds_since(self) -> float:
        return max(0.0, self._clock() - self.get())


class LivenessMonitor:
    """Periodic keepalive task bound to one connection lifetime.

    Attributes:
        _send: Coroutine function that sends a command on the session
        _activity: Clock refreshed by inbound frames and ``pong`` replies
        _interval: Seconds between probes
        _stale_after: Seconds of silence after which the connection is stale
    """

    def __init__(
        self,
        send: Callable[[IApiCommand], Awaitable[None]],
        activity: ActivityClock,
        interval: float = 10.0,
        stale_after: float = 30.0,
        on_stale: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._send = send
        self._activity = activity
        self._interval = interval
        self._stale_after = stale_after
        self._on_stale = on_stale
        self._task: Optional[asyncio.Task] = None
        self._logger = get_module_logger("liveness_monitor")

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the probe loop on the running event loop (no-op if running)."""
        if self.is_running():
            return
        self._task = asyncio.create_task(self._run(), name="liveness-monitor")

    def cancel(self) -> Optional[asyncio.Task]:
        """Request cancellation without waiting.

        Returns:
            The task being cancelled, or None if nothing was running
        """
        task, self._task = self._task, None
        if task is None or task.done():
            return None
        task.cancel()
        return task

    async def stop(self) -> None:
        """Cancel the probe loop and wait for it to finish."""
        task = self.cancel()
        if task is None or task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    def seconds_since_activity(self) -> float:
        return self._activity.seconds_since()

    def is_stale(self) -> bool:
        return self.seconds_since_activity() > self._stale_after

    async def probe_once(self) -> None:
        """Send one ping and check the activity clock."""
        try:
            await self._send(Ping())
        except Exception as e:
            self._logger.warning(f"Failed to send liveness probe: {e}")

        elapsed = self.seconds_since_activity()
        if elapsed > self._stale_after:
            self._logger.warning(
                f"No server activity for {elapsed:.1f}s "
                f"(threshold {self._stale_after:.1f}s)"
            )
            if self._on_stale is not None:
                self._on_stale(elapsed)

    async def _run(self) -> None:
        self._logger.debug("Liveness monitor started")
        try:
            while True:
                await asyncio.sleep(self._interval)
                await self.probe_once()
        finally:
            self._logger.debug("Liveness monitor stopped")
