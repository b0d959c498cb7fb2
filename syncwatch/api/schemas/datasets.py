from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class ProgressResponse(BaseModel):
    percent: int
    throughput: float
    eta_seconds: float | None
    elapsed_seconds: float | None
    remaining: int
    stale: bool


class DatasetSyncStatusResponse(BaseModel):
    dataset_id: str
    state: str
    total_to_process: int
    processed: int
    inserted: int
    updated: int
    deleted: int
    skipped: int
    started_at: datetime | None
    completed_at: datetime | None
    started_by: str | None
    error_message: str | None
    last_observed_at: datetime | None
    observed_via: str | None
    max_duration_minutes: int | None
    watching: bool
    progress: ProgressResponse


class DatasetSyncStatusListResponse(BaseModel):
    items: list[DatasetSyncStatusResponse]
    running: int


class TriggerSyncResponse(BaseModel):
    dataset_id: str
    outcome: str
    message: str | None


class NotificationResponse(BaseModel):
    dataset_id: str
    kind: str
    message: str | None
    source: str
    emitted_at: datetime
    status: dict[str, Any] | None


class NotificationListResponse(BaseModel):
    items: list[NotificationResponse]
