"""
Connectivity monitoring.

``ConnectivityMonitor`` holds the advisory online/offline flag and notifies
subscribers only when it flips. The platform's network signal (or
``HealthProbe``, which polls the server's liveness endpoint) feeds it through
``set_online``. A wrong "online" reading only costs a failed sync attempt;
business rules are never decided from it.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Union

import httpx

logger = logging.getLogger(__name__)

Listener = Callable[[bool], Union[None, Awaitable[None]]]


class ConnectivityMonitor:
    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: List[Listener] = []
        self._tasks: set[asyncio.Task] = set()

    def is_online(self) -> bool:
        return self._online

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        """Call ``callback(is_online)`` on every transition. Returns the unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        """Feed a platform reading. Listeners fire only when the value changes."""
        if online == self._online:
            return
        self._online = online
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        for callback in list(self._listeners):
            try:
                result = callback(online)
                if inspect.isawaitable(result):
                    # Listeners run on the loop; the signal source never waits for them
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._task_done)
            except Exception:
                logger.exception("Connectivity listener failed")

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Connectivity listener failed: {task.exception()}")

    async def wait_idle(self) -> None:
        """Wait for listener tasks started by transitions so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class HealthProbe:
    """Polls ``GET /health`` and reports the result to a ConnectivityMonitor."""

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        client: httpx.AsyncClient,
        interval_seconds: float = 10.0,
        path: str = "/health",
    ):
        self.monitor = monitor
        self.client = client
        self.interval_seconds = interval_seconds
        self.path = path
        self._task: Optional[asyncio.Task] = None

    async def check(self) -> bool:
        """Probe once and update the monitor."""
        try:
            response = await self.client.get(self.path)
            online = response.status_code < 500
        except httpx.HTTPError as e:
            logger.debug(f"Health probe failed: {e}")
            online = False
        self.monitor.set_online(online)
        return online

    async def _loop(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
