from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from checkin.domain import Event
from checkin.service import MembershipService
from checkin.store import InMemoryStore


class RecordingBroadcaster:
    """publishされたメッセージを記録するだけのBroadcaster。"""

    def __init__(self) -> None:
        self.messages: list = []
        self.started = False
        self._lock = threading.Lock()

    def publish(self, message) -> None:
        with self._lock:
            self.messages.append(message)

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    def of_kind(self, kind: str) -> list:
        return [m for m in self.messages if m.kind == kind]


class FailingBroadcaster(RecordingBroadcaster):
    def publish(self, message) -> None:
        raise ConnectionError("transport down")


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore.create()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def service(store: InMemoryStore, broadcaster: RecordingBroadcaster) -> MembershipService:
    return MembershipService(store, broadcaster)


@pytest.fixture
def event(store: InMemoryStore) -> Event:
    return store.create_event(
        "Tech Meetup", "Downtown Hall", datetime(2024, 12, 20, 18, 0, tzinfo=timezone.utc)
    )


@pytest.fixture
def failing_broadcaster() -> FailingBroadcaster:
    return FailingBroadcaster()
