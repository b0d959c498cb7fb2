from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from syncwatch.backend.client import DatasetApiError
from syncwatch.core.config import Settings
from syncwatch.monitor.guard import SessionTable
from syncwatch.monitor.notifications import NotificationDispatcher
from syncwatch.monitor.registry import JobRegistry
from syncwatch.monitor.scheduling import Scheduler, TaskHandle
from syncwatch.monitor.types import DatasetBackend, JobStatus, ObservationSource

logger = logging.getLogger(__name__)


def _finished_since(previous: JobStatus | None, current: JobStatus) -> bool:
    if previous is None or not current.is_terminal:
        return False
    if not previous.is_terminal:
        return True
    return previous.started_at != current.started_at


class GlobalSweepPoller:
    """Periodically lists every dataset to pick up jobs started elsewhere,
    e.g. by the backend scheduler. Runs for as long as the owning view."""

    def __init__(
        self,
        settings: Settings,
        *,
        backend: DatasetBackend,
        registry: JobRegistry,
        dispatcher: NotificationDispatcher,
        sessions: SessionTable,
        scheduler: Scheduler,
        clock: Callable[[], datetime],
    ):
        self._settings = settings
        self._backend = backend
        self._registry = registry
        self._dispatcher = dispatcher
        self._sessions = sessions
        self._scheduler = scheduler
        self._clock = clock
        self._handle: TaskHandle | None = None
        self._last_seen: dict[str, JobStatus] = {}
        self._sweeps = 0

    @property
    def running(self) -> bool:
        return self._handle is not None and self._handle.active

    @property
    def sweeps(self) -> int:
        return self._sweeps

    def start(self) -> None:
        if self._handle is not None and not self._handle.cancelled:
            return
        self._handle = self._scheduler.call_every(
            self._settings.sweep_interval_seconds,
            self.tick,
            name="sync-sweep",
        )
        logger.info("Sync sweep started every %ss", self._settings.sweep_interval_seconds)

    def stop(self) -> None:
        if self._handle is None:
            return
        self._handle.cancel()
        self._handle = None
        logger.info("Sync sweep stopped after %s sweeps", self._sweeps)

    async def tick(self) -> int:
        observed_at = self._clock()
        try:
            payloads = await self._backend.list_datasets()
        except DatasetApiError as exc:
            logger.warning("Sync sweep failed, will retry: %s", exc)
            return 0

        self._sweeps += 1
        seen: dict[str, JobStatus] = {}
        for payload in payloads:
            status = payload.to_job_status(observed_at=observed_at, observed_via=ObservationSource.SWEEP)
            seen[status.dataset_id] = status
            self._registry.set(status)

            if status.is_running and status.dataset_id not in self._sessions:
                logger.debug(
                    "Dataset %s is running without a local session (started by %s)",
                    status.dataset_id,
                    status.started_by or "unknown",
                )

            if _finished_since(self._last_seen.get(status.dataset_id), status):
                self._dispatcher.notify_terminal(status, ObservationSource.SWEEP)

        self._last_seen = seen
        logger.debug("Sync sweep observed %s datasets, %s running", len(seen), sum(s.is_running for s in seen.values()))
        return len(seen)
