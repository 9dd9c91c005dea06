"""
Batch scheduling — one request, many recipients, one batch id.

This is the producer behind ``POST /api/schedule``: it expands the request
into one pending job per recipient and appends them in a single store call.
"""
from __future__ import annotations

import structlog
from datetime import datetime, tzinfo
from typing import Optional, Union

from pydantic import BaseModel, Field

from core.events import EventBus, QUEUE_UPDATE
from database.jobs import JobStore
from models.schemas import Job, ValidationError, new_id
from utils.phone import split_recipients

logger = structlog.get_logger()


class ScheduleRequest(BaseModel):
    recipients: Union[list[str], str] = Field(default_factory=list)
    caption: Optional[str] = None
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    send_at: Union[datetime, str]


def parse_send_at(value: Union[datetime, str], tz: tzinfo) -> datetime:
    """Naive times are wall-clock times in ``tz``."""
    if isinstance(value, datetime):
        dt = value
    else:
        text = (value or "").strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"Invalid send time: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt


async def schedule_batch(
    store: JobStore,
    request: ScheduleRequest,
    tz: tzinfo,
    events: Optional[EventBus] = None,
) -> list[Job]:
    recipients = split_recipients(request.recipients)
    if not recipients:
        raise ValidationError("At least one recipient is required")

    caption = (request.caption or "").strip() or None
    media_url = (request.media_url or "").strip() or None
    if not caption and not media_url:
        raise ValidationError("media or caption required")

    send_at = parse_send_at(request.send_at, tz)
    batch_id = new_id()
    jobs = [
        Job(
            id=new_id(),
            batch_id=batch_id,
            recipient=recipient,
            caption=caption,
            media_url=media_url,
            media_type=request.media_type,
            send_at=send_at,
        )
        for recipient in recipients
    ]
    await store.create_jobs(jobs)
    logger.info("batch_scheduled", batch_id=batch_id, count=len(jobs),
                send_at=send_at.isoformat(), has_media=bool(media_url))

    if events is not None:
        events.emit(QUEUE_UPDATE, size=await store.count_pending())
    return jobs
