from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Callable

from syncwatch.monitor.types import (
    JobStatus,
    NotificationKind,
    ObservationSource,
    SyncNotification,
    SyncState,
)

logger = logging.getLogger(__name__)

NotificationListener = Callable[[SyncNotification], None]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class NotificationDispatcher:
    """Decides when a terminal notification fires and with what payload.

    A job is identified by ``(dataset_id, started_at)``: the same job seen
    by both pollers notifies once, a dataset synced twice notifies twice.
    Timeouts are session events and are never deduplicated against job
    outcomes.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._emitted: set[tuple[str, datetime | None]] = set()
        self._listeners: list[NotificationListener] = []

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def has_notified(self, status: JobStatus) -> bool:
        return status.job_key in self._emitted

    def notify_terminal(self, status: JobStatus, source: ObservationSource) -> bool:
        if not status.is_terminal:
            raise ValueError(f"Dataset {status.dataset_id} is not in a terminal state: {status.state.value}")
        if status.job_key in self._emitted:
            logger.debug("Terminal notification for dataset %s already emitted", status.dataset_id)
            return False
        self._emitted.add(status.job_key)

        if status.state == SyncState.COMPLETED:
            kind = NotificationKind.COMPLETED
            message = None
            logger.info("Sync of dataset %s completed (%s records)", status.dataset_id, status.processed)
        else:
            kind = NotificationKind.FAILED
            message = status.error_message
            logger.info("Sync of dataset %s failed: %s", status.dataset_id, message)

        self._emit(
            SyncNotification(
                dataset_id=status.dataset_id,
                kind=kind,
                status=status,
                message=message,
                source=source,
                emitted_at=self._clock(),
            )
        )
        return True

    def notify_timeout(self, dataset_id: str, status: JobStatus | None, *, timeout_seconds: float) -> SyncNotification:
        logger.info("Stopped watching dataset %s after %.0f seconds; job may still be running", dataset_id, timeout_seconds)
        notification = SyncNotification(
            dataset_id=dataset_id,
            kind=NotificationKind.TIMED_OUT,
            status=status,
            message=f"Monitoring stopped after {timeout_seconds:.0f} seconds",
            source=ObservationSource.TARGETED,
            emitted_at=self._clock(),
        )
        self._emit(notification)
        return notification

    def _emit(self, notification: SyncNotification) -> None:
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("Notification listener failed for dataset %s", notification.dataset_id)


class NotificationFeed:
    """Bounded, newest-first record of notifications for the current process."""

    def __init__(self, max_items: int):
        self._items: deque[SyncNotification] = deque(maxlen=max_items)

    def __call__(self, notification: SyncNotification) -> None:
        self._items.appendleft(notification)

    def __len__(self) -> int:
        return len(self._items)

    def recent(self, limit: int | None = None) -> list[SyncNotification]:
        items = list(self._items)
        return items if limit is None else items[:limit]
