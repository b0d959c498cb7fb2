from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from syncwatch.monitor.registry import JobRegistry
from syncwatch.monitor.types import SyncState, TriggerDecision

if TYPE_CHECKING:
    from syncwatch.monitor.targeted import PollSession

logger = logging.getLogger(__name__)


class SessionConflictError(RuntimeError):
    pass


class SessionTable:
    """At most one poll session, or a reservation for one, per dataset."""

    def __init__(self) -> None:
        self._slots: dict[str, PollSession | None] = {}

    def __contains__(self, dataset_id: object) -> bool:
        return dataset_id in self._slots

    def __len__(self) -> int:
        return len(self._slots)

    def reserve(self, dataset_id: str) -> bool:
        if dataset_id in self._slots:
            return False
        self._slots[dataset_id] = None
        return True

    def attach(self, dataset_id: str, session: PollSession) -> None:
        if dataset_id not in self._slots:
            raise SessionConflictError(f"No reservation held for dataset {dataset_id}")
        if self._slots[dataset_id] is not None:
            raise SessionConflictError(f"A poll session already exists for dataset {dataset_id}")
        self._slots[dataset_id] = session

    def release(self, dataset_id: str, session: PollSession | None = None) -> None:
        if dataset_id not in self._slots:
            return
        if session is not None and self._slots[dataset_id] is not session:
            return
        del self._slots[dataset_id]

    def get(self, dataset_id: str) -> PollSession | None:
        return self._slots.get(dataset_id)

    def sessions(self) -> list[PollSession]:
        return [session for session in self._slots.values() if session is not None]


class TriggerGuard:
    def __init__(self, registry: JobRegistry, sessions: SessionTable):
        self._registry = registry
        self._sessions = sessions

    def try_trigger(self, dataset_id: str) -> TriggerDecision:
        status = self._registry.get(dataset_id)
        if status is not None and status.state == SyncState.RUNNING:
            logger.info("Trigger for dataset %s refused: registry shows it running", dataset_id)
            return TriggerDecision.ALREADY_RUNNING
        if not self._sessions.reserve(dataset_id):
            logger.info("Trigger for dataset %s refused: a poll session is already active", dataset_id)
            return TriggerDecision.ALREADY_RUNNING
        return TriggerDecision.ACCEPTED

    def release(self, dataset_id: str) -> None:
        if self._sessions.get(dataset_id) is None:
            self._sessions.release(dataset_id)
