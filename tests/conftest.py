"""Shared fakes for the sync engine tests."""

import asyncio

import pytest

from marksync.errors import RemoteStoreError
from marksync.records import Bookmark, CorrelationKey, DurableId
from marksync.remote.base import RemoteStore


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRemote(RemoteStore):
    """In-memory remote store with switchable failures.

    Rows are kept newest first. ``create_gate`` (an asyncio.Event) holds
    creates until it is set.
    """

    def __init__(self, next_id: int = 100):
        self.rows: list[Bookmark] = []
        self.next_id = next_id
        self.create_gate: asyncio.Event | None = None
        self.fail_create = False
        self.fail_delete = False
        self.fail_fetch = False
        self.fetch_count = 0
        self.deleted: list[DurableId] = []

    def add_row(self, id: str, title: str = "Title", url: str = "https://example.com",
                owner_id: str = "user-1") -> Bookmark:
        row = Bookmark(DurableId(id), title, url, owner_id)
        self.rows.insert(0, row)
        return row

    async def fetch_all(self, owner_id: str) -> list[Bookmark]:
        self.fetch_count += 1
        if self.fail_fetch:
            raise RemoteStoreError("fetch unavailable", status_code=503)
        return [row for row in self.rows if row.owner_id == owner_id]

    async def create(self, title: str, url: str, owner_id: str,
                     correlation: CorrelationKey | None = None) -> DurableId:
        if self.create_gate is not None:
            await self.create_gate.wait()
        if self.fail_create:
            raise RemoteStoreError("insert rejected", status_code=403)

        durable_id = DurableId(str(self.next_id))
        self.next_id += 1
        self.rows.insert(0, Bookmark(durable_id, title, url, owner_id, correlation))
        return durable_id

    async def delete(self, identifier: DurableId) -> None:
        if self.fail_delete:
            raise RemoteStoreError("delete rejected", status_code=500)
        self.rows = [row for row in self.rows if row.id != identifier]
        self.deleted.append(identifier)


class FakePushChannel:
    """Stand-in for MQTTPushChannel that delivers payloads synchronously."""

    def __init__(self):
        self.subscriptions: dict[int, tuple[str, object]] = {}
        self.unsubscribed: list[int] = []
        self.is_connected = True
        self._next = 1

    def topic_for(self, owner_id: str) -> str:
        return f"marksync/bookmarks/{owner_id}"

    def subscribe(self, topic, callback):
        handle = self._next
        self._next += 1
        self.subscriptions[handle] = (topic, callback)
        return handle

    def unsubscribe(self, handle) -> None:
        self.subscriptions.pop(handle, None)
        self.unsubscribed.append(handle)

    def publish(self, topic: str, payload: str) -> None:
        for sub_topic, callback in list(self.subscriptions.values()):
            if sub_topic == topic:
                callback(payload)


def make_bookmark(id: str, title: str = "Title", url: str = "https://example.com",
                  owner_id: str = "user-1", correlation: CorrelationKey | None = None) -> Bookmark:
    """Build a durable bookmark."""
    return Bookmark(DurableId(id), title, url, owner_id, correlation)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def remote():
    return FakeRemote()
