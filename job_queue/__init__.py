"""
Job queue — drains the Schedule table and feeds it.

- QueueProcessor: polled sweep over due jobs (single-flight)
- schedule_batch: expands one scheduling request into per-recipient jobs
"""
from job_queue.processor import QueueProcessor, MEDIA_MISSING_ERROR, PAYLOAD_MISSING_ERROR
from job_queue.batches import ScheduleRequest, schedule_batch, parse_send_at

__all__ = [
    "QueueProcessor", "MEDIA_MISSING_ERROR", "PAYLOAD_MISSING_ERROR",
    "ScheduleRequest", "schedule_batch", "parse_send_at",
]
