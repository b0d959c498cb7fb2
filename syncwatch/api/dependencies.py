from __future__ import annotations

from fastapi import Request

from syncwatch.monitor.notifications import NotificationFeed
from syncwatch.monitor.service import SyncMonitor


def get_monitor(request: Request) -> SyncMonitor:
    return request.app.state.monitor


def get_notification_feed(request: Request) -> NotificationFeed:
    return request.app.state.notification_feed
