"""
Continuum Scheduled Tasks

Cancellable periodic asyncio tasks with an explicit stop signal:

- TickScheduler: closes one telemetry window per active session per interval
- FaceDetectionLoop: "detect, wait, repeat" until a face descriptor appears
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Sequence

if TYPE_CHECKING:
    from core.orchestrator import ContinuumOrchestrator


logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs run_once() every `interval` seconds until stop() is called."""

    def __init__(self, interval: float) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._stop.clear()
        self._task = asyncio.ensure_future(self._run())
        return self._task

    async def stop(self) -> None:
        """Signal the loop to stop, cancelling a run_once() still in flight."""
        self._stop.set()
        task = self._task
        if task is None:
            return
        if not task.done():
            task.cancel()
        await asyncio.wait({task})
        self._task = None
        if not task.cancelled():
            task.result()

    async def _run(self) -> None:
        while not self._stop.is_set():
            await self.run_once()
            if self._stop.is_set():
                break
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def run_once(self) -> None:
        raise NotImplementedError


class TickScheduler(PeriodicTask):
    """
    Drives the per-session pipeline: one tick per active session per window.

    A failing session is logged and skipped; the loop keeps running.
    """

    def __init__(self, orchestrator: ContinuumOrchestrator, interval: float = 1.0) -> None:
        super().__init__(interval)
        self.orchestrator = orchestrator

    async def run_once(self) -> None:
        for session_id in self.orchestrator.active_sessions():
            try:
                self.orchestrator.tick(session_id)
            except Exception:
                logger.exception(f"Tick failed for session {session_id}")


class FaceDetectionLoop(PeriodicTask):
    """
    Polls a detector until it returns a descriptor, then stops itself.

    Args:
        detect: coroutine factory returning a descriptor or None (no face)
    """

    def __init__(
        self,
        detect: Callable[[], Awaitable[Optional[Sequence[float]]]],
        interval: float = 0.1,
    ) -> None:
        super().__init__(interval)
        self._detect = detect
        self._result: Optional[asyncio.Future] = None
        self.attempts = 0

    async def run_once(self) -> None:
        self.attempts += 1
        try:
            descriptor = await self._detect()
        except Exception as e:
            if self._result is not None and not self._result.done():
                self._result.set_exception(e)
            self._stop.set()
            return

        if descriptor is None:
            return
        if self._result is not None and not self._result.done():
            self._result.set_result(descriptor)
        self._stop.set()

    async def wait_for_face(self) -> Sequence[float]:
        """
        Start detecting and return the first descriptor found.

        Usable as the capture factory of run_capture(); the loop is stopped
        on every exit path, including timeout and cancellation.
        """
        self._result = asyncio.get_running_loop().create_future()
        self.start()
        try:
            return await self._result
        finally:
            await self.stop()
