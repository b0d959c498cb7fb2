from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import T0, FakeBackend, ManualClock, dataset_payload, make_settings
from syncwatch.backend.client import DatasetApiError, DatasetNotFoundError
from syncwatch.monitor.service import SyncMonitor
from syncwatch.monitor.types import (
    JobStatus,
    NotificationKind,
    ObservationSource,
    SessionState,
    SyncNotification,
    SyncState,
    TriggerOutcome,
)

STARTED = T0.isoformat()
IDLE = dataset_payload("ds1")


def running(processed: int, *, started: str = STARTED) -> dict:
    return dataset_payload(
        "ds1",
        "Running",
        syncStartedAt=started,
        totalRecordsToSync=100,
        recordsProcessed=processed,
    )


@pytest.mark.asyncio
async def test_session_tracks_progress_and_notifies_once(
    monitor: SyncMonitor, backend: FakeBackend, clock: ManualClock
) -> None:
    notifications: list[SyncNotification] = []
    monitor.on_terminal(notifications.append)
    backend.queue_status(
        "ds1",
        IDLE,
        running(10),
        running(50),
        dataset_payload(
            "ds1",
            "Completed",
            syncStartedAt=STARTED,
            syncCompletedAt=(T0 + timedelta(seconds=20)).isoformat(),
            totalRecordsToSync=100,
            recordsProcessed=100,
        ),
    )

    result = await monitor.request_trigger("ds1")
    assert result.outcome == TriggerOutcome.ACCEPTED
    session = monitor.session("ds1")
    assert session is not None
    assert session.state == SessionState.POLLING

    await session.tick()
    assert monitor.status("ds1").processed == 10

    clock.advance(10)
    await session.tick()
    progress = monitor.progress("ds1")
    assert progress.percent == 50
    assert progress.throughput == pytest.approx(5.0)
    assert progress.eta_seconds == pytest.approx(10.0)

    clock.advance(10)
    await session.tick()

    assert await session.wait() == SessionState.COMPLETED
    assert [item.kind for item in notifications] == [NotificationKind.COMPLETED]
    assert notifications[0].source == ObservationSource.TARGETED
    assert monitor.status("ds1").state == SyncState.COMPLETED
    assert monitor.has_session("ds1") is False
    assert session.handle.cancelled
    assert monitor.scheduler.live_handles() == []


@pytest.mark.asyncio
async def test_failed_job_notifies_with_error_message(monitor: SyncMonitor, backend: FakeBackend) -> None:
    notifications: list[SyncNotification] = []
    monitor.on_terminal(notifications.append)
    backend.queue_status(
        "ds1",
        IDLE,
        dataset_payload("ds1", "Failed", syncStartedAt=STARTED, syncErrorMessage="source unreachable"),
    )

    await monitor.request_trigger("ds1")
    session = monitor.session("ds1")
    await session.tick()

    assert session.state == SessionState.FAILED
    assert notifications[0].kind == NotificationKind.FAILED
    assert notifications[0].message == "source unreachable"


@pytest.mark.asyncio
async def test_transient_error_keeps_polling(monitor: SyncMonitor, backend: FakeBackend, clock: ManualClock) -> None:
    backend.queue_status("ds1", IDLE, DatasetApiError("HTTP 503"), running(20))

    await monitor.request_trigger("ds1")
    session = monitor.session("ds1")
    await session.tick()
    assert session.state == SessionState.POLLING
    assert monitor.status("ds1").state == SyncState.IDLE

    clock.advance(10)
    await session.tick()
    assert session.state == SessionState.POLLING
    assert monitor.status("ds1").processed == 20


@pytest.mark.asyncio
async def test_timeout_stops_watching_without_touching_registry(backend: FakeBackend) -> None:
    clock = ManualClock()
    settings = make_settings(targeted_poll_timeout_seconds=30)
    monitor = SyncMonitor(settings, backend, clock=clock)
    notifications: list[SyncNotification] = []
    monitor.on_terminal(notifications.append)
    backend.queue_status("ds1", IDLE, running(10))

    try:
        await monitor.request_trigger("ds1")
        session = monitor.session("ds1")
        clock.advance(10)
        await session.tick()

        clock.advance(25)
        await session.tick()

        assert session.state == SessionState.TIMED_OUT
        assert monitor.status("ds1").state == SyncState.RUNNING
        assert backend.status_calls == ["ds1", "ds1"]
        assert [item.kind for item in notifications] == [NotificationKind.TIMED_OUT]
        assert notifications[0].message == "Monitoring stopped after 30 seconds"
        assert monitor.has_session("ds1") is False
    finally:
        await monitor.close()


@pytest.mark.asyncio
async def test_previous_finished_job_is_not_reported_as_new(
    monitor: SyncMonitor, backend: FakeBackend, clock: ManualClock
) -> None:
    old_start = T0 - timedelta(hours=1)
    monitor.registry.set(
        JobStatus(dataset_id="ds1", state=SyncState.COMPLETED, started_at=old_start, processed=100, total_to_process=100)
    )
    notifications: list[SyncNotification] = []
    monitor.on_terminal(notifications.append)
    backend.queue_status(
        "ds1",
        dataset_payload("ds1", "Completed", syncStartedAt=old_start.isoformat()),
        running(5),
        dataset_payload("ds1", "Completed", syncStartedAt=STARTED, totalRecordsToSync=100, recordsProcessed=100),
    )

    await monitor.request_trigger("ds1")
    session = monitor.session("ds1")
    assert session.baseline_started_at == old_start

    clock.advance(10)
    await session.tick()
    assert session.state == SessionState.POLLING
    assert notifications == []

    clock.advance(10)
    await session.tick()
    clock.advance(10)
    await session.tick()

    assert session.state == SessionState.COMPLETED
    assert len(notifications) == 1
    assert notifications[0].status.started_at == T0


@pytest.mark.asyncio
async def test_unobserved_dataset_reads_baseline_before_trigger(
    monitor: SyncMonitor, backend: FakeBackend, clock: ManualClock
) -> None:
    old_start = T0 - timedelta(hours=1)
    notifications: list[SyncNotification] = []
    monitor.on_terminal(notifications.append)
    backend.queue_status(
        "ds1",
        dataset_payload("ds1", "Completed", syncStartedAt=old_start.isoformat()),
        running(5),
    )

    result = await monitor.request_trigger("ds1")
    assert result.outcome == TriggerOutcome.ACCEPTED
    session = monitor.session("ds1")
    assert session.baseline_started_at == old_start
    assert monitor.status("ds1").state == SyncState.COMPLETED

    clock.advance(10)
    await session.tick()

    assert session.state == SessionState.POLLING
    assert notifications == []
    assert monitor.status("ds1").state == SyncState.RUNNING


@pytest.mark.asyncio
async def test_unreadable_baseline_ignores_jobs_completed_before_trigger(
    monitor: SyncMonitor, backend: FakeBackend, clock: ManualClock
) -> None:
    old_start = T0 - timedelta(hours=1)
    notifications: list[SyncNotification] = []
    monitor.on_terminal(notifications.append)
    backend.queue_status(
        "ds1",
        DatasetApiError("HTTP 503"),
        dataset_payload(
            "ds1",
            "Completed",
            syncStartedAt=old_start.isoformat(),
            syncCompletedAt=(old_start + timedelta(minutes=5)).isoformat(),
        ),
        dataset_payload(
            "ds1",
            "Completed",
            syncStartedAt=STARTED,
            syncCompletedAt=(T0 + timedelta(seconds=15)).isoformat(),
        ),
    )

    await monitor.request_trigger("ds1")
    session = monitor.session("ds1")
    assert session.baseline_started_at is None
    assert session.triggered_at == T0

    clock.advance(10)
    await session.tick()
    assert session.state == SessionState.POLLING
    assert notifications == []

    clock.advance(10)
    await session.tick()
    assert session.state == SessionState.COMPLETED
    assert [item.status.started_at for item in notifications] == [T0]


@pytest.mark.asyncio
async def test_timeout_is_reported_even_if_new_job_never_showed_up(backend: FakeBackend) -> None:
    clock = ManualClock()
    monitor = SyncMonitor(make_settings(targeted_poll_timeout_seconds=20), backend, clock=clock)
    notifications: list[SyncNotification] = []
    monitor.on_terminal(notifications.append)
    old_completed = dataset_payload("ds1", "Completed", syncStartedAt=(T0 - timedelta(hours=1)).isoformat())
    backend.queue_status("ds1", old_completed)

    try:
        await monitor.request_trigger("ds1")
        session = monitor.session("ds1")
        clock.advance(10)
        await session.tick()
        clock.advance(10)
        await session.tick()

        assert session.state == SessionState.TIMED_OUT
        assert [item.kind for item in notifications] == [NotificationKind.TIMED_OUT]
        assert notifications[0].status.state == SyncState.COMPLETED
    finally:
        await monitor.close()


@pytest.mark.asyncio
async def test_missing_dataset_cancels_session(monitor: SyncMonitor, backend: FakeBackend) -> None:
    notifications: list[SyncNotification] = []
    monitor.on_terminal(notifications.append)
    backend.queue_status("ds1", IDLE, DatasetNotFoundError("Dataset not found: ds1"))

    await monitor.request_trigger("ds1")
    session = monitor.session("ds1")
    await session.tick()

    assert session.state == SessionState.CANCELLED
    assert notifications == []
    assert "ds1" not in monitor.sessions


@pytest.mark.asyncio
async def test_cancel_all_releases_sessions(monitor: SyncMonitor, backend: FakeBackend) -> None:
    await monitor.request_trigger("ds1")
    await monitor.request_trigger("ds2")
    sessions = monitor.sessions.sessions()

    assert monitor.targeted.cancel_all() == 2
    assert [session.state for session in sessions] == [SessionState.CANCELLED, SessionState.CANCELLED]
    assert len(monitor.sessions) == 0

    # ticks on a closed session are ignored
    calls = len(backend.status_calls)
    await sessions[0].tick()
    assert len(backend.status_calls) == calls

    result = await monitor.request_trigger("ds1")
    assert result.outcome == TriggerOutcome.ACCEPTED
