# ==============================================================================
# FILE: netflowmon/core/scheduler.py
# PURPOSE: Fixed-period asyncio timers that never overlap their own runs.
# ==============================================================================
import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Launches handler() every `interval` seconds. A tick that arrives while the
    previous run is still in flight is skipped, not queued.
    """

    def __init__(self, name: str, interval: float, handler: Callable[[], Awaitable[None]]):
        self.name = name
        self.interval = interval
        self.handler = handler
        self.runs = 0
        self.skipped = 0
        self._loop_task: Optional[asyncio.Task] = None
        self._in_flight: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    def start(self):
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._tick_loop(), name=f"timer:{self.name}")

    async def stop(self, grace: float = 0.0):
        """
        Stops ticking. A run already in flight gets up to `grace` seconds to
        finish before it is cancelled.
        """
        tasks = [t for t in (self._loop_task, self._in_flight) if t is not None]
        if self._loop_task is not None:
            self._loop_task.cancel()
        if self.in_flight and grace > 0:
            _, pending = await asyncio.wait({self._in_flight}, timeout=grace)
            if pending:
                logger.warning("'%s' still running after %.1fs, cancelling it", self.name, grace)
        if self._in_flight is not None:
            self._in_flight.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._loop_task = None
        self._in_flight = None

    async def _tick_loop(self):
        while True:
            if self.in_flight:
                self.skipped += 1
                logger.debug("Skipping '%s' tick, previous run still in flight", self.name)
            else:
                self._in_flight = asyncio.create_task(self._run_once(), name=f"run:{self.name}")
            await asyncio.sleep(self.interval)

    async def _run_once(self):
        try:
            await self.handler()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Periodic task '%s' failed", self.name)
        else:
            self.runs += 1


class Scheduler:
    def __init__(self):
        self.tasks: Dict[str, PeriodicTask] = {}

    def add(self, name: str, interval: float, handler: Callable[[], Awaitable[None]]) -> PeriodicTask:
        task = PeriodicTask(name, interval, handler)
        self.tasks[name] = task
        return task

    @property
    def running(self) -> bool:
        return any(task.running for task in self.tasks.values())

    @property
    def skipped(self) -> int:
        return sum(task.skipped for task in self.tasks.values())

    @property
    def runs(self) -> Dict[str, int]:
        return {name: task.runs for name, task in self.tasks.items()}

    def start(self):
        for task in self.tasks.values():
            task.start()

    async def stop(self, grace: float = 0.0):
        await asyncio.gather(*(task.stop(grace) for task in self.tasks.values()))
