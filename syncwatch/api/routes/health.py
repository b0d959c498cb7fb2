from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from syncwatch.api.dependencies import get_monitor
from syncwatch.core.config import get_settings
from syncwatch.monitor.service import SyncMonitor

router = APIRouter(tags=["health"])


@router.get("/health")
async def get_health(monitor: SyncMonitor = Depends(get_monitor)) -> dict[str, object]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.environment,
        "sweep_running": monitor.sweep.running,
        "watched_datasets": len(monitor.sessions.sessions()),
        "timestamp": datetime.now(tz=timezone.utc),
    }
