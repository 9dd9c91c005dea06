"""Shared test fixtures for the scheduled delivery engine."""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest

from channels.base import DeliveryTransport, TransportError
from config.settings import MediaConfig, QueueConfig, ReminderConfig
from core.events import EventBus
from core.timers import Clock
from database.jobs import JobStore
from database.sources import ReminderSourceStore
from database.store_base import StoreUnavailable
from database.store_memory import InMemoryRowStore
from media.lifecycle import MediaLifecycleManager
from models.schemas import Job, MediaPayload, new_id

# 2024-05-01 10:00 in Asia/Colombo (UTC+05:30)
NOW = datetime(2024, 5, 1, 4, 30, tzinfo=timezone.utc)


class FakeClock(Clock):
    """Manual clock: ``sleep`` advances time and yields once to the loop."""

    def __init__(self, now: datetime = NOW):
        self._now = now
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)


class RecordingRowStore(InMemoryRowStore):
    """In-memory store that records every call and can be told to fail."""

    def __init__(self):
        super().__init__()
        self.calls: list[tuple[str, str]] = []
        self.fail_on: set[str] = set()

    def _record(self, op: str, table: str) -> None:
        self.calls.append((op, table))
        if op in self.fail_on:
            raise StoreUnavailable(f"{op} failed", table)

    async def list_rows(self, table):
        self._record("list_rows", table)
        return await super().list_rows(table)

    async def append_rows(self, table, records):
        self._record("append_rows", table)
        await super().append_rows(table, records)

    async def update_row(self, table, row_id, patch):
        self._record("update_row", table)
        await super().update_row(table, row_id, patch)

    async def delete_row(self, table, row_id):
        self._record("delete_row", table)
        await super().delete_row(table, row_id)


class FakeTransport(DeliveryTransport):
    """Records deliveries; ``failures`` maps a recipient to an error message."""

    channel = "fake"

    def __init__(self, connected: bool = True):
        super().__init__()
        self.texts: list[tuple[str, str]] = []
        self.media: list[tuple[str, MediaPayload, Optional[str]]] = []
        self.failures: dict[str, str] = {}
        self.open_error: str = ""
        self.credentials: dict[str, Any] = {}
        self.gate: Optional[asyncio.Event] = None
        if connected:
            self.connection.notify("connect_requested")
            self.connection.notify("opened")

    async def initialize(self, config, credentials=None):
        self.credentials = credentials or {}
        self._initialized = True

    async def _open(self):
        if self.open_error:
            raise TransportError(self.open_error, self.channel)

    async def _deliver(self, recipient: str) -> None:
        self._require_connected()
        if self.gate is not None:
            await self.gate.wait()
        if recipient in self.failures:
            raise TransportError(self.failures[recipient], self.channel)

    async def send_text(self, recipient, text):
        await self._deliver(recipient)
        self.texts.append((recipient, text))
        return {"status": "sent"}

    async def send_media(self, recipient, media, caption=None):
        await self._deliver(recipient)
        self.media.append((recipient, media, caption))
        return {"status": "sent"}


def make_job(**overrides) -> Job:
    data = {
        "id": new_id(),
        "batch_id": "batch-1",
        "recipient": "94771234567",
        "caption": "hi",
        "send_at": NOW - timedelta(seconds=5),
    }
    data.update(overrides)
    return Job(**data)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rows() -> RecordingRowStore:
    return RecordingRowStore()


@pytest.fixture
def job_store(rows) -> JobStore:
    return JobStore(rows)


@pytest.fixture
def source_store(rows) -> ReminderSourceStore:
    return ReminderSourceStore(rows)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def events():
    """An EventBus plus the list of (name, payload) it has emitted."""
    bus = EventBus()
    received: list[tuple[str, dict]] = []
    bus.subscribe(lambda name, payload: received.append((name, payload)))
    return bus, received


@pytest.fixture
def media_config(tmp_path) -> MediaConfig:
    (tmp_path / "uploads").mkdir()
    return MediaConfig(root=str(tmp_path), uploads_dir="uploads")


@pytest.fixture
def media_manager(media_config, job_store, clock) -> MediaLifecycleManager:
    return MediaLifecycleManager(media_config, job_store, clock)


@pytest.fixture
def queue_config() -> QueueConfig:
    return QueueConfig()


@pytest.fixture
def reminder_config() -> ReminderConfig:
    return ReminderConfig()
