from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from syncwatch.backend.payloads import DatasetSyncPayload, TriggerResponse


class SyncState(str, Enum):
    IDLE = "Idle"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    PAUSED = "Paused"


TERMINAL_STATES = frozenset({SyncState.COMPLETED, SyncState.FAILED})


class ObservationSource(str, Enum):
    TARGETED = "targeted"
    SWEEP = "sweep"


@dataclass(frozen=True, slots=True)
class JobStatus:
    dataset_id: str
    state: SyncState
    total_to_process: int = 0
    processed: int = 0
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    started_by: str | None = None
    error_message: str | None = None
    last_observed_at: datetime | None = None
    observed_via: ObservationSource | None = None
    max_duration_minutes: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_running(self) -> bool:
        return self.state == SyncState.RUNNING

    @property
    def job_key(self) -> tuple[str, datetime | None]:
        return (self.dataset_id, self.started_at)


class TriggerDecision(str, Enum):
    ACCEPTED = "accepted"
    ALREADY_RUNNING = "already_running"


class TriggerOutcome(str, Enum):
    ACCEPTED = "accepted"
    ALREADY_RUNNING = "already_running"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class TriggerResult:
    dataset_id: str
    outcome: TriggerOutcome
    message: str | None = None

    @property
    def accepted(self) -> bool:
        return self.outcome == TriggerOutcome.ACCEPTED


class SessionState(str, Enum):
    STARTING = "starting"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class NotificationKind(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True, slots=True)
class SyncNotification:
    dataset_id: str
    kind: NotificationKind
    status: JobStatus | None
    message: str | None
    source: ObservationSource
    emitted_at: datetime


class DatasetBackend(Protocol):
    async def list_datasets(self) -> list[DatasetSyncPayload]: ...

    async def get_sync_status(self, dataset_id: str) -> DatasetSyncPayload: ...

    async def trigger_sync(self, dataset_id: str) -> TriggerResponse: ...
