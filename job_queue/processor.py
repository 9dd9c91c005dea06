"""
Queue Processor — drains due jobs from the Schedule table.

One sweep:
    1. single-flight guard: a sweep already running makes this call a no-op
    2. fetch all jobs, select pending ones with send_at <= now + tolerance
    3. per job, in isolation: normalise recipient → resolve media → send
       → persist sent/failed → delete the local media file after a send
    4. delete sent rows, publish the new pending count

Per-job failures (bad recipient, missing media, transport errors) are recorded
on the job. A StoreError aborts the sweep; everything still pending is picked
up again by the next poll.
"""
from __future__ import annotations

import structlog
from datetime import datetime
from typing import Any, Optional

from channels.base import DeliveryTransport, TransportError
from config.settings import QueueConfig
from core.events import EventBus, QUEUE_ITEM, QUEUE_UPDATE
from core.timers import Clock
from database.jobs import JobStore
from database.store_base import RowNotFound, StoreError
from media.lifecycle import MediaLifecycleManager, ResourceMissingError
from models.schemas import Job, JobPatch, JobStatus, ValidationError
from utils.phone import normalize_recipient

logger = structlog.get_logger()

MEDIA_MISSING_ERROR = "Media file not found"
PAYLOAD_MISSING_ERROR = "media or caption required"


class QueueProcessor:
    """
    Usage:
        processor = QueueProcessor(job_store, transport, media_manager)
        stats = await processor.sweep()      # driven by a PeriodicTask
    """

    def __init__(
        self,
        jobs: JobStore,
        transport: DeliveryTransport,
        media: MediaLifecycleManager,
        config: Optional[QueueConfig] = None,
        events: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
    ):
        self.jobs = jobs
        self.transport = transport
        self.media = media
        self.config = config or QueueConfig()
        self.events = events or EventBus()
        self.clock = clock or Clock()
        self.running = False
        self.last_sweep_at: Optional[datetime] = None
        self.last_stats: dict[str, Any] = {}

    async def sweep(self) -> dict[str, Any]:
        """
        Run one sweep.

        Returns counts: {"due": N, "sent": N, "failed": N, "deleted": N,
        "skipped": reason or None, "aborted": bool}
        """
        stats: dict[str, Any] = {
            "due": 0, "sent": 0, "failed": 0, "deleted": 0,
            "skipped": None, "aborted": False,
        }
        # Checked and set before the first await.
        if self.running:
            stats["skipped"] = "in_progress"
            logger.debug("sweep_skipped", reason="in_progress")
            return stats
        if not self.transport.is_connected:
            stats["skipped"] = "disconnected"
            logger.debug("sweep_skipped", reason="disconnected", state=self.transport.state.value)
            return stats

        self.running = True
        now = self.clock.now()
        try:
            jobs = await self.jobs.list_jobs()
            due = [job for job in jobs if job.is_due(now, self.config.due_tolerance_s)]
            stats["due"] = len(due)

            sent_ids: list[str] = []
            for job in due:
                status = await self._process(job)
                if status == JobStatus.SENT:
                    stats["sent"] += 1
                    sent_ids.append(job.id)
                else:
                    stats["failed"] += 1

            # Rows already marked sent by an aborted earlier sweep go too.
            stale = [job.id for job in jobs if job.status == JobStatus.SENT and job.id not in sent_ids]
            for job_id in sent_ids + stale:
                try:
                    await self.jobs.delete_job(job_id)
                except RowNotFound:
                    continue
                stats["deleted"] += 1

            self.events.emit(QUEUE_UPDATE, size=await self.jobs.count_pending())
            if stats["due"] or stats["deleted"]:
                logger.info("sweep_complete", **{k: v for k, v in stats.items() if k != "skipped"})
        except StoreError as e:
            stats["aborted"] = True
            logger.error("sweep_aborted", error=str(e), table=e.table, sent=stats["sent"],
                         failed=stats["failed"])
        finally:
            self.running = False
            self.last_sweep_at = now
            self.last_stats = stats
        return stats

    async def _process(self, job: Job) -> JobStatus:
        """Deliver one job and persist its outcome. Only StoreError escapes."""
        try:
            recipient = normalize_recipient(
                job.recipient,
                min_digits=self.config.min_recipient_digits,
                default_country_code=self.config.default_country_code,
            )
        except ValidationError as e:
            logger.warning("job_invalid_recipient", job_id=job.id, recipient=job.recipient)
            await self._mark_failed(job, str(e))
            return JobStatus.FAILED

        # Rows can reach the table without going through create_jobs.
        if not (job.caption and job.caption.strip()) and not job.has_media:
            logger.warning("job_missing_payload", job_id=job.id)
            await self._mark_failed(job, PAYLOAD_MISSING_ERROR)
            return JobStatus.FAILED

        try:
            if job.has_media:
                try:
                    payload = await self.media.resolve(job)
                except ResourceMissingError as e:
                    logger.warning("job_media_missing", job_id=job.id, path=e.path)
                    await self._send_caption_only(job, recipient)
                    await self._mark_failed(job, MEDIA_MISSING_ERROR)
                    return JobStatus.FAILED
                await self.transport.send_media(recipient, payload, job.caption)
            else:
                await self.transport.send_text(recipient, job.caption or "")
        except StoreError:
            raise
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.warning("job_send_failed", job_id=job.id, error=error, error_type=type(e).__name__,
                           retryable=isinstance(e, TransportError) and e.retryable)
            await self._mark_failed(job, error)
            return JobStatus.FAILED

        await self._mark_sent(job)
        if job.has_media and not job.is_remote_media:
            await self.media.delete_for(job)
        return JobStatus.SENT

    async def _send_caption_only(self, job: Job, recipient: str) -> None:
        if not job.caption:
            return
        try:
            await self.transport.send_text(recipient, job.caption)
            logger.info("job_caption_fallback_sent", job_id=job.id)
        except Exception as e:
            logger.warning("job_caption_fallback_failed", job_id=job.id, error=str(e))

    async def _mark_sent(self, job: Job) -> None:
        job.check_transition(JobStatus.SENT)
        sent_at = self.clock.now()
        await self.jobs.update_job(job.id, JobPatch(status=JobStatus.SENT, sent_at=sent_at))
        job.status = JobStatus.SENT
        job.sent_at = sent_at
        logger.info("job_sent", job_id=job.id, batch_id=job.batch_id)
        self.events.emit(QUEUE_ITEM, id=job.id, status=JobStatus.SENT.value)

    async def _mark_failed(self, job: Job, error: str) -> None:
        job.check_transition(JobStatus.FAILED)
        await self.jobs.update_job(job.id, JobPatch(status=JobStatus.FAILED, error=error))
        job.status = JobStatus.FAILED
        job.error = error
        self.events.emit(QUEUE_ITEM, id=job.id, status=JobStatus.FAILED.value, error=error)
