from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, status

from syncwatch.api.dependencies import get_monitor
from syncwatch.api.schemas.datasets import (
    DatasetSyncStatusListResponse,
    DatasetSyncStatusResponse,
    ProgressResponse,
    TriggerSyncResponse,
)
from syncwatch.monitor.service import SyncMonitor, status_to_dict
from syncwatch.monitor.types import JobStatus, TriggerOutcome

router = APIRouter(prefix="/datasets", tags=["datasets"])


def _to_response(monitor: SyncMonitor, job: JobStatus) -> DatasetSyncStatusResponse:
    progress = monitor.estimate(job)
    return DatasetSyncStatusResponse(
        **status_to_dict(job),
        watching=monitor.has_session(job.dataset_id),
        progress=ProgressResponse(**asdict(progress)),
    )


@router.get("/sync-status", response_model=DatasetSyncStatusListResponse)
async def list_sync_statuses(monitor: SyncMonitor = Depends(get_monitor)) -> DatasetSyncStatusListResponse:
    items = [_to_response(monitor, job) for job in sorted(monitor.statuses(), key=lambda job: job.dataset_id)]
    return DatasetSyncStatusListResponse(items=items, running=sum(1 for item in items if item.state == "Running"))


@router.get("/{dataset_id}/sync-status", response_model=DatasetSyncStatusResponse)
async def get_sync_status(dataset_id: str, monitor: SyncMonitor = Depends(get_monitor)) -> DatasetSyncStatusResponse:
    job = monitor.status(dataset_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Dataset has not been observed: {dataset_id}")
    return _to_response(monitor, job)


@router.post("/{dataset_id}/sync", response_model=TriggerSyncResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_sync(dataset_id: str, monitor: SyncMonitor = Depends(get_monitor)) -> TriggerSyncResponse:
    result = await monitor.request_trigger(dataset_id)
    if result.outcome == TriggerOutcome.ALREADY_RUNNING:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Sync already running for dataset {dataset_id}")
    if result.outcome == TriggerOutcome.REJECTED:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=result.message or "Backend rejected the sync request")
    return TriggerSyncResponse(dataset_id=result.dataset_id, outcome=result.outcome.value, message=result.message)
