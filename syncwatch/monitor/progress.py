from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from syncwatch.monitor.types import JobStatus


@dataclass(frozen=True, slots=True)
class SyncProgress:
    percent: int
    throughput: float
    eta_seconds: float | None
    elapsed_seconds: float | None
    remaining: int
    stale: bool


def percent(status: JobStatus) -> int:
    if status.total_to_process <= 0:
        return 0
    ratio = status.processed / status.total_to_process * 100
    return max(0, min(100, math.floor(ratio + 0.5)))


def elapsed_seconds(status: JobStatus, now: datetime) -> float | None:
    if status.started_at is None:
        return None
    return (now - status.started_at).total_seconds()


def throughput(status: JobStatus, now: datetime) -> float:
    """Records per second since the job started; a job younger than one
    second is measured over one second so the rate stays finite."""
    elapsed = elapsed_seconds(status, now)
    if elapsed is None:
        return 0.0
    return status.processed / max(elapsed, 1.0)


def eta_seconds(status: JobStatus, now: datetime) -> float | None:
    rate = throughput(status, now)
    if rate <= 0 or status.total_to_process <= status.processed:
        return None
    return (status.total_to_process - status.processed) / rate


def estimate(status: JobStatus, now: datetime, *, stale_after: timedelta | None = None) -> SyncProgress:
    stale = False
    if stale_after is not None:
        stale = status.last_observed_at is None or now - status.last_observed_at > stale_after
    return SyncProgress(
        percent=percent(status),
        throughput=throughput(status, now),
        eta_seconds=eta_seconds(status, now),
        elapsed_seconds=elapsed_seconds(status, now),
        remaining=max(0, status.total_to_process - status.processed),
        stale=stale,
    )
