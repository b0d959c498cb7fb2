from __future__ import annotations

from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator

import pytest
import pytest_asyncio

from syncwatch.backend.client import DatasetApiError
from syncwatch.backend.payloads import DatasetSyncPayload, TriggerResponse
from syncwatch.core.config import Settings
from syncwatch.monitor.service import SyncMonitor

T0 = datetime(2024, 5, 1, 8, 0, 0, tzinfo=timezone.utc)


class ManualClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


def dataset_payload(dataset_id: str, status: str = "Idle", **fields: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"id": dataset_id, "name": f"Dataset {dataset_id}", "syncStatus": status}
    payload.update(fields)
    return payload


class FakeBackend:
    """Scripted stand-in for the dataset REST API.

    ``status_replies[id]`` and ``list_replies`` are queues of payload dicts or
    exceptions; the last reply repeats once the queue is drained.
    """

    def __init__(self) -> None:
        self.status_replies: dict[str, deque[Any]] = defaultdict(deque)
        self.list_replies: deque[Any] = deque()
        self.trigger_replies: dict[str, TriggerResponse | Exception] = {}
        self.trigger_calls: list[str] = []
        self.status_calls: list[str] = []
        self.list_calls = 0
        self._last_status: dict[str, Any] = {}
        self._last_list: Any = []

    def queue_status(self, dataset_id: str, *replies: Any) -> None:
        self.status_replies[dataset_id].extend(replies)

    def queue_list(self, *replies: Any) -> None:
        self.list_replies.extend(replies)

    async def list_datasets(self) -> list[DatasetSyncPayload]:
        self.list_calls += 1
        reply = self.list_replies.popleft() if self.list_replies else self._last_list
        self._last_list = reply
        if isinstance(reply, Exception):
            raise reply
        return [DatasetSyncPayload.model_validate(item) for item in reply]

    async def get_sync_status(self, dataset_id: str) -> DatasetSyncPayload:
        self.status_calls.append(dataset_id)
        queue = self.status_replies[dataset_id]
        if queue:
            reply = queue.popleft()
        elif dataset_id in self._last_status:
            reply = self._last_status[dataset_id]
        else:
            raise DatasetApiError(f"no scripted status for {dataset_id}")
        self._last_status[dataset_id] = reply
        if isinstance(reply, Exception):
            raise reply
        return DatasetSyncPayload.model_validate(reply)

    async def trigger_sync(self, dataset_id: str) -> TriggerResponse:
        self.trigger_calls.append(dataset_id)
        reply = self.trigger_replies.get(dataset_id, TriggerResponse(accepted=True))
        if isinstance(reply, Exception):
            raise reply
        return reply


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "backend_base_url": "http://backend.test",
        "targeted_poll_interval_seconds": 10.0,
        "targeted_poll_timeout_seconds": 1800,
        "sweep_interval_seconds": 10.0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def monitor(settings: Settings, backend: FakeBackend, clock: ManualClock) -> AsyncIterator[SyncMonitor]:
    sync_monitor = SyncMonitor(settings, backend, clock=clock)
    yield sync_monitor
    await sync_monitor.close()
