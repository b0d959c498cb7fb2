from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable

from syncwatch.monitor.types import JobStatus, SyncState

logger = logging.getLogger(__name__)

StatusListener = Callable[[JobStatus | None, JobStatus], None]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _is_newer_job(candidate: datetime | None, current: datetime | None) -> bool:
    if candidate is None:
        return False
    if current is None:
        return True
    return candidate > current


class JobRegistry:
    """Last-known sync status per dataset.

    Entries are replaced wholesale, last writer wins by ``last_observed_at``.
    A terminal entry is never overwritten by a ``Running`` snapshot of the
    same job; a ``Running`` snapshot with a newer ``started_at`` is a new job.
    When two snapshots of the same job carry the same observation time the
    one with the higher ``processed`` counter is kept.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._entries: dict[str, JobStatus] = {}
        self._listeners: list[StatusListener] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, dataset_id: object) -> bool:
        return dataset_id in self._entries

    def get(self, dataset_id: str) -> JobStatus | None:
        return self._entries.get(dataset_id)

    def all(self) -> list[JobStatus]:
        return list(self._entries.values())

    def get_running(self) -> list[JobStatus]:
        return [status for status in self._entries.values() if status.state == SyncState.RUNNING]

    def get_stale(self, now: datetime, max_age: timedelta) -> list[JobStatus]:
        return [
            status
            for status in self._entries.values()
            if status.last_observed_at is None or now - status.last_observed_at > max_age
        ]

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set(self, status: JobStatus, observed_at: datetime | None = None) -> bool:
        if observed_at is not None or status.last_observed_at is None:
            status = replace(status, last_observed_at=observed_at or self._clock())

        previous = self._entries.get(status.dataset_id)
        if previous is not None and not self._should_replace(previous, status):
            logger.debug(
                "Ignoring out-of-order status for dataset %s (%s observed %s, kept %s observed %s)",
                status.dataset_id,
                status.state.value,
                status.last_observed_at,
                previous.state.value,
                previous.last_observed_at,
            )
            return False

        self._entries[status.dataset_id] = status
        for listener in list(self._listeners):
            try:
                listener(previous, status)
            except Exception:
                logger.exception("Status listener failed for dataset %s", status.dataset_id)
        return True

    def _should_replace(self, previous: JobStatus, candidate: JobStatus) -> bool:
        new_job = _is_newer_job(candidate.started_at, previous.started_at)
        if previous.is_terminal and candidate.is_running and not new_job:
            return False

        candidate_at = candidate.last_observed_at
        previous_at = previous.last_observed_at
        if candidate_at is None or previous_at is None:
            return True
        if candidate_at < previous_at:
            return False
        if candidate_at == previous_at and not new_job:
            if candidate.started_at == previous.started_at and candidate.processed < previous.processed:
                return False
        return True
