from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[None]]
Sleeper = Callable[[float], Awaitable[None]]


class TaskHandle:
    """Cancellable recurring task. Cancelling from inside the running
    callback lets the callback finish and stops the next iteration."""

    def __init__(self, name: str, on_release: Callable[["TaskHandle"], None]):
        self.name = name
        self._task: asyncio.Task[None] | None = None
        self._cancelled = False
        self._on_release = on_release

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active(self) -> bool:
        return not self._cancelled and self._task is not None and not self._task.done()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        task = self._task
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()
        self._on_release(self)

    def _attach(self, task: asyncio.Task[None]) -> None:
        self._task = task

    async def join(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._cancelled:
                raise


class Scheduler:
    def __init__(self, sleep: Sleeper = asyncio.sleep):
        self._sleep = sleep
        self._live: set[TaskHandle] = set()

    def live_handles(self) -> list[TaskHandle]:
        return [handle for handle in self._live if handle.active]

    def call_every(self, interval_seconds: float, callback: TickCallback, *, name: str) -> TaskHandle:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be greater than zero")
        handle = TaskHandle(name, on_release=self._live.discard)
        task = asyncio.get_running_loop().create_task(self._run(handle, interval_seconds, callback), name=name)
        handle._attach(task)
        self._live.add(handle)
        return handle

    def cancel_all(self) -> None:
        for handle in list(self._live):
            handle.cancel()

    async def _run(self, handle: TaskHandle, interval_seconds: float, callback: TickCallback) -> None:
        try:
            while not handle.cancelled:
                await self._sleep(interval_seconds)
                if handle.cancelled:
                    break
                try:
                    await callback()
                except Exception:
                    logger.exception("Scheduled task %s failed", handle.name)
        finally:
            self._live.discard(handle)
