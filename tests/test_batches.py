"""Tests for batch scheduling."""
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from core.events import QUEUE_UPDATE
from job_queue.batches import ScheduleRequest, parse_send_at, schedule_batch
from models.schemas import ValidationError

COLOMBO = ZoneInfo("Asia/Colombo")


@pytest.mark.asyncio
async def test_one_job_per_recipient_sharing_batch(job_store, events):
    bus, received = events
    req = ScheduleRequest(recipients="94771234567, 94770000000;94779999999",
                          caption="  Meeting at 5  ", send_at="2024-05-02T09:00:00")

    jobs = await schedule_batch(job_store, req, COLOMBO, events=bus)

    assert len(jobs) == 3
    assert len({j.batch_id for j in jobs}) == 1
    assert len({j.id for j in jobs}) == 3
    stored = await job_store.list_jobs()
    assert [j.recipient for j in stored] == ["94771234567", "94770000000", "94779999999"]
    assert all(j.caption == "Meeting at 5" for j in stored)
    assert stored[0].send_at == datetime(2024, 5, 2, 9, 0, tzinfo=COLOMBO)
    assert received == [(QUEUE_UPDATE, {"size": 3})]


@pytest.mark.asyncio
async def test_media_only_batch(job_store):
    req = ScheduleRequest(recipients=["94771234567"], media_url="/uploads/a.png",
                          media_type="image/png", send_at="2024-05-02T03:30:00Z")
    [job] = await schedule_batch(job_store, req, COLOMBO)
    assert job.caption is None
    assert job.send_at == datetime(2024, 5, 2, 3, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
@pytest.mark.parametrize("kwargs", [
    {"recipients": "", "caption": "hi", "send_at": "2024-05-02T09:00:00"},
    {"recipients": "94771234567", "caption": "   ", "send_at": "2024-05-02T09:00:00"},
    {"recipients": "94771234567", "caption": "hi", "send_at": "tomorrow-ish"},
])
async def test_rejected_requests_write_nothing(job_store, rows, kwargs):
    with pytest.raises(ValidationError):
        await schedule_batch(job_store, ScheduleRequest(**kwargs), COLOMBO)
    assert await rows.list_rows("Schedule") == []


def test_aware_datetime_kept():
    aware = datetime(2024, 5, 2, 0, 0, tzinfo=timezone.utc)
    assert parse_send_at(aware, COLOMBO) is aware
