from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from syncwatch.monitor.types import JobStatus, ObservationSource, SyncState

logger = logging.getLogger(__name__)

_STATE_LOOKUP = {state.value.lower(): state for state in SyncState}


class DatasetSyncPayload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    id: str = Field(validation_alias=AliasChoices("id", "dataSetId", "datasetId"))
    name: str | None = None
    sync_status: SyncState = SyncState.IDLE
    sync_started_at: datetime | None = None
    sync_completed_at: datetime | None = None
    sync_error_message: str | None = None
    sync_started_by: str | None = None
    total_records_to_sync: int = Field(default=0, ge=0)
    records_processed: int = Field(default=0, ge=0)
    records_inserted: int = Field(default=0, ge=0)
    records_updated: int = Field(default=0, ge=0)
    records_deleted: int = Field(default=0, ge=0)
    records_skipped: int = Field(default=0, ge=0)
    max_sync_duration_minutes: int | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> str:
        if value is None:
            raise ValueError("dataset id is required")
        normalized = str(value).strip()
        if not normalized:
            raise ValueError("dataset id cannot be blank")
        return normalized

    @field_validator("sync_status", mode="before")
    @classmethod
    def _normalize_state(cls, value: Any) -> SyncState:
        if value is None:
            return SyncState.IDLE
        if isinstance(value, SyncState):
            return value
        token = str(value).strip().lower()
        try:
            return _STATE_LOOKUP[token]
        except KeyError as exc:
            allowed = ", ".join(state.value for state in SyncState)
            raise ValueError(f"Unknown sync status: {value}. Allowed: {allowed}") from exc

    @field_validator(
        "total_records_to_sync",
        "records_processed",
        "records_inserted",
        "records_updated",
        "records_deleted",
        "records_skipped",
        mode="before",
    )
    @classmethod
    def _null_counter_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("sync_started_at", "sync_completed_at", mode="after")
    @classmethod
    def _coerce_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def to_job_status(
        self,
        *,
        observed_at: datetime,
        observed_via: ObservationSource | None = None,
    ) -> JobStatus:
        processed = self.records_processed
        total = self.total_records_to_sync
        if total > 0 and processed > total:
            logger.debug("Clamping processed=%s to total=%s for dataset %s", processed, total, self.id)
            processed = total

        return JobStatus(
            dataset_id=self.id,
            state=self.sync_status,
            total_to_process=total,
            processed=processed,
            inserted=self.records_inserted,
            updated=self.records_updated,
            deleted=self.records_deleted,
            skipped=self.records_skipped,
            started_at=self.sync_started_at,
            completed_at=self.sync_completed_at,
            started_by=self.sync_started_by,
            error_message=self.sync_error_message if self.sync_status == SyncState.FAILED else None,
            last_observed_at=observed_at,
            observed_via=observed_via,
            max_duration_minutes=self.max_sync_duration_minutes,
        )


class Pagination(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    page: int = 1
    page_size: int = 0
    total_count: int = 0
    total_pages: int = 1


@dataclass(frozen=True, slots=True)
class TriggerResponse:
    accepted: bool
    message: str | None = None
