from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

from syncwatch.backend.client import DatasetApiError, DatasetNotFoundError
from syncwatch.core.config import Settings
from syncwatch.monitor.guard import SessionTable
from syncwatch.monitor.notifications import NotificationDispatcher
from syncwatch.monitor.registry import JobRegistry
from syncwatch.monitor.scheduling import Scheduler, TaskHandle
from syncwatch.monitor.types import DatasetBackend, JobStatus, ObservationSource, SessionState, SyncState

logger = logging.getLogger(__name__)

FINAL_SESSION_STATES = frozenset(
    {SessionState.COMPLETED, SessionState.FAILED, SessionState.TIMED_OUT, SessionState.CANCELLED}
)


class PollSession:
    def __init__(
        self,
        dataset_id: str,
        *,
        backend: DatasetBackend,
        registry: JobRegistry,
        dispatcher: NotificationDispatcher,
        scheduler: Scheduler,
        interval_seconds: float,
        deadline: datetime,
        timeout_seconds: float,
        baseline_started_at: datetime | None,
        triggered_at: datetime,
        clock: Callable[[], datetime],
        on_close: Callable[["PollSession"], None],
    ):
        self.dataset_id = dataset_id
        self.interval_seconds = interval_seconds
        self.deadline = deadline
        self.baseline_started_at = baseline_started_at
        self.triggered_at = triggered_at
        self.state = SessionState.STARTING
        self._timeout_seconds = timeout_seconds
        self._backend = backend
        self._registry = registry
        self._dispatcher = dispatcher
        self._scheduler = scheduler
        self._clock = clock
        self._on_close = on_close
        self._handle: TaskHandle | None = None
        self._done = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self.state in FINAL_SESSION_STATES

    @property
    def handle(self) -> TaskHandle | None:
        return self._handle

    def start(self) -> None:
        if self.state != SessionState.STARTING:
            raise RuntimeError(f"Poll session for dataset {self.dataset_id} already started")
        self.state = SessionState.POLLING
        self._handle = self._scheduler.call_every(
            self.interval_seconds,
            self.tick,
            name=f"sync-poll:{self.dataset_id}",
        )
        logger.info(
            "Watching dataset %s every %ss until %s",
            self.dataset_id,
            self.interval_seconds,
            self.deadline.isoformat(),
        )

    async def tick(self) -> None:
        if self.closed:
            return

        observed_at = self._clock()
        if observed_at >= self.deadline:
            self._dispatcher.notify_timeout(
                self.dataset_id,
                self._registry.get(self.dataset_id),
                timeout_seconds=self._timeout_seconds,
            )
            self._close(SessionState.TIMED_OUT)
            return

        try:
            payload = await self._backend.get_sync_status(self.dataset_id)
        except DatasetNotFoundError:
            logger.warning("Dataset %s no longer exists, stopped watching it", self.dataset_id)
            self._close(SessionState.CANCELLED)
            return
        except DatasetApiError as exc:
            logger.warning("Polling sync status of dataset %s failed, will retry: %s", self.dataset_id, exc)
            return
        if self.closed:
            return

        status = payload.to_job_status(observed_at=observed_at, observed_via=ObservationSource.TARGETED)
        self._registry.set(status)
        logger.debug(
            "Dataset %s is %s (%s/%s)",
            self.dataset_id,
            status.state.value,
            status.processed,
            status.total_to_process,
        )

        if not status.is_terminal:
            return
        if self._is_previous_job(status):
            logger.debug("Dataset %s still reports the job finished before the trigger", self.dataset_id)
            return
        self._dispatcher.notify_terminal(status, ObservationSource.TARGETED)
        self._close(SessionState.COMPLETED if status.state == SyncState.COMPLETED else SessionState.FAILED)

    def _is_previous_job(self, status: JobStatus) -> bool:
        if self.baseline_started_at is not None:
            return status.started_at is not None and status.started_at <= self.baseline_started_at
        # no baseline: fall back to the completion time
        return status.completed_at is not None and status.completed_at < self.triggered_at

    def cancel(self) -> None:
        self._close(SessionState.CANCELLED)

    async def wait(self) -> SessionState:
        await self._done.wait()
        return self.state

    def _close(self, final_state: SessionState) -> None:
        if self.closed:
            return
        self.state = final_state
        if self._handle is not None:
            self._handle.cancel()
        self._on_close(self)
        self._done.set()
        logger.info("Stopped watching dataset %s: %s", self.dataset_id, final_state.value)


class TargetedPoller:
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

    def start_session(
        self,
        dataset_id: str,
        *,
        baseline_started_at: datetime | None = None,
        triggered_at: datetime | None = None,
    ) -> PollSession:
        timeout_seconds = float(self._settings.targeted_poll_timeout_seconds)
        now = self._clock()
        session = PollSession(
            dataset_id,
            backend=self._backend,
            registry=self._registry,
            dispatcher=self._dispatcher,
            scheduler=self._scheduler,
            interval_seconds=self._settings.targeted_poll_interval_seconds,
            deadline=now + timedelta(seconds=timeout_seconds),
            timeout_seconds=timeout_seconds,
            baseline_started_at=baseline_started_at,
            triggered_at=triggered_at or now,
            clock=self._clock,
            on_close=lambda closed: self._sessions.release(closed.dataset_id, closed),
        )
        self._sessions.attach(dataset_id, session)
        try:
            session.start()
        except Exception:
            self._sessions.release(dataset_id, session)
            raise
        return session

    def cancel_all(self) -> int:
        sessions = self._sessions.sessions()
        for session in sessions:
            session.cancel()
        return len(sessions)
