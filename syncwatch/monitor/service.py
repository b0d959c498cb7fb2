from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from syncwatch.backend.client import DatasetApiError, DatasetNotFoundError
from syncwatch.core.config import Settings
from syncwatch.monitor.guard import SessionTable, TriggerGuard
from syncwatch.monitor.notifications import NotificationDispatcher, NotificationListener
from syncwatch.monitor.progress import SyncProgress, estimate
from syncwatch.monitor.registry import JobRegistry
from syncwatch.monitor.scheduling import Scheduler
from syncwatch.monitor.sweep import GlobalSweepPoller
from syncwatch.monitor.targeted import PollSession, TargetedPoller
from syncwatch.monitor.types import (
    DatasetBackend,
    JobStatus,
    ObservationSource,
    SyncNotification,
    TriggerDecision,
    TriggerOutcome,
    TriggerResult,
)

logger = logging.getLogger(__name__)

StatusChangeListener = Callable[[str, JobStatus], None]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class SyncMonitor:
    def __init__(
        self,
        settings: Settings,
        backend: DatasetBackend,
        *,
        scheduler: Scheduler | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._settings = settings
        self._backend = backend
        self._clock = clock
        self.scheduler = scheduler or Scheduler()
        self.registry = JobRegistry(clock=clock)
        self.dispatcher = NotificationDispatcher(clock=clock)
        self.sessions = SessionTable()
        self.guard = TriggerGuard(self.registry, self.sessions)
        self.targeted = TargetedPoller(
            settings,
            backend=backend,
            registry=self.registry,
            dispatcher=self.dispatcher,
            sessions=self.sessions,
            scheduler=self.scheduler,
            clock=clock,
        )
        self.sweep = GlobalSweepPoller(
            settings,
            backend=backend,
            registry=self.registry,
            dispatcher=self.dispatcher,
            sessions=self.sessions,
            scheduler=self.scheduler,
            clock=clock,
        )
        self._closed = False

    async def __aenter__(self) -> "SyncMonitor":
        self.start()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def on_status_change(self, listener: StatusChangeListener) -> Callable[[], None]:
        return self.registry.subscribe(lambda _previous, current: listener(current.dataset_id, current))

    def on_terminal(self, listener: NotificationListener) -> Callable[[], None]:
        return self.dispatcher.subscribe(listener)

    def start(self) -> None:
        if self._closed:
            raise RuntimeError("SyncMonitor has been closed")
        self.sweep.start()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.sweep.stop()
        cancelled = self.targeted.cancel_all()
        logger.info("Sync monitor closed, cancelled %s poll sessions", cancelled)

    async def request_trigger(self, dataset_id: str) -> TriggerResult:
        if self._closed:
            raise RuntimeError("SyncMonitor has been closed")

        if self.guard.try_trigger(dataset_id) == TriggerDecision.ALREADY_RUNNING:
            return TriggerResult(dataset_id=dataset_id, outcome=TriggerOutcome.ALREADY_RUNNING)

        triggered_at = self._clock()
        previous = self.registry.get(dataset_id)
        if previous is None:
            try:
                previous = await self._observe(dataset_id)
            except DatasetNotFoundError as exc:
                self.guard.release(dataset_id)
                return TriggerResult(dataset_id=dataset_id, outcome=TriggerOutcome.REJECTED, message=str(exc))
            except DatasetApiError as exc:
                logger.warning(
                    "Reading sync status of dataset %s before triggering failed, "
                    "jobs completed before %s will be ignored: %s",
                    dataset_id,
                    triggered_at.isoformat(),
                    exc,
                )
            except BaseException:
                self.guard.release(dataset_id)
                raise
            if self._closed:
                self.guard.release(dataset_id)
                raise RuntimeError("SyncMonitor has been closed")
            if previous is not None and previous.is_running:
                self.guard.release(dataset_id)
                logger.info("Trigger for dataset %s refused: backend reports it running", dataset_id)
                return TriggerResult(dataset_id=dataset_id, outcome=TriggerOutcome.ALREADY_RUNNING)

        try:
            response = await self._backend.trigger_sync(dataset_id)
        except DatasetApiError as exc:
            self.guard.release(dataset_id)
            logger.warning("Triggering sync of dataset %s failed: %s", dataset_id, exc)
            return TriggerResult(dataset_id=dataset_id, outcome=TriggerOutcome.REJECTED, message=str(exc))
        except BaseException:
            self.guard.release(dataset_id)
            raise

        if not response.accepted:
            self.guard.release(dataset_id)
            logger.info("Backend rejected sync of dataset %s: %s", dataset_id, response.message)
            return TriggerResult(dataset_id=dataset_id, outcome=TriggerOutcome.REJECTED, message=response.message)

        if self._closed:
            self.guard.release(dataset_id)
            return TriggerResult(dataset_id=dataset_id, outcome=TriggerOutcome.ACCEPTED, message=response.message)

        self.targeted.start_session(
            dataset_id,
            baseline_started_at=previous.started_at if previous is not None else None,
            triggered_at=triggered_at,
        )
        return TriggerResult(dataset_id=dataset_id, outcome=TriggerOutcome.ACCEPTED, message=response.message)

    async def _observe(self, dataset_id: str) -> JobStatus | None:
        observed_at = self._clock()
        payload = await self._backend.get_sync_status(dataset_id)
        self.registry.set(payload.to_job_status(observed_at=observed_at, observed_via=ObservationSource.TARGETED))
        return self.registry.get(dataset_id)

    def has_session(self, dataset_id: str) -> bool:
        return self.sessions.get(dataset_id) is not None

    def session(self, dataset_id: str) -> PollSession | None:
        return self.sessions.get(dataset_id)

    def status(self, dataset_id: str) -> JobStatus | None:
        return self.registry.get(dataset_id)

    def statuses(self) -> list[JobStatus]:
        return self.registry.all()

    def progress(self, dataset_id: str) -> SyncProgress | None:
        status = self.registry.get(dataset_id)
        if status is None:
            return None
        return self.estimate(status)

    def estimate(self, status: JobStatus) -> SyncProgress:
        return estimate(status, self._clock(), stale_after=timedelta(seconds=self._settings.stale_after_seconds))


def status_to_dict(status: JobStatus) -> dict[str, Any]:
    payload = asdict(status)
    payload["state"] = status.state.value
    payload["observed_via"] = status.observed_via.value if status.observed_via is not None else None
    return payload


def notification_to_dict(notification: SyncNotification) -> dict[str, Any]:
    return {
        "dataset_id": notification.dataset_id,
        "kind": notification.kind.value,
        "message": notification.message,
        "source": notification.source.value,
        "emitted_at": notification.emitted_at,
        "status": status_to_dict(notification.status) if notification.status is not None else None,
    }
