"""
Recurring Reminder Producer — turns Birthdays rows into scheduled jobs.

Runs once at startup and once a day from a DailyTask. For every source whose
date falls on the target day it enqueues one job, unless the Schedule table
already holds a reminder for the same recipient on that day; the check makes
repeated runs before the target day harmless.

Text resolution order:
    1. the source's custom message
    2. the text generator (failures are logged, never fatal)
    3. the relationship/gender fallback template
"""
from __future__ import annotations

import re
import structlog
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Optional

from config.settings import ReminderConfig
from core.events import EventBus, QUEUE_UPDATE, REMINDER_SCHEDULED
from core.generator import CollaboratorError, TextGenerator
from core.timers import Clock
from database.jobs import JobStore
from database.sources import ReminderSourceStore
from models.schemas import Job, ReminderSource, ValidationError, format_timestamp, new_id
from reminders.templates import build_prompt, fallback_message

logger = structlog.get_logger()


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value or "")


class ReminderProducer:
    def __init__(
        self,
        sources: ReminderSourceStore,
        jobs: JobStore,
        config: ReminderConfig,
        tz: tzinfo,
        generator: Optional[TextGenerator] = None,
        events: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
    ):
        self.sources = sources
        self.jobs = jobs
        self.config = config
        self.tz = tz
        self.generator = generator
        self.events = events or EventBus()
        self.clock = clock or Clock()

    def target_day(self, now: datetime) -> date:
        today = now.astimezone(self.tz).date()
        if self.config.target == "today":
            return today
        return today + timedelta(days=1)

    def send_instant(self, day: date) -> datetime:
        return datetime.combine(day, time(self.config.send_hour, self.config.send_minute), tzinfo=self.tz)

    def _already_scheduled(self, source: ReminderSource, jobs: list[Job], day: date) -> bool:
        phone = _digits(source.phone)
        for job in jobs:
            if _digits(job.recipient) != phone:
                continue
            if self.config.marker not in (job.caption or ""):
                continue
            if job.send_at.astimezone(self.tz).date() == day:
                return True
        return False

    async def _message_for(self, source: ReminderSource, day: date) -> tuple[str, bool]:
        """Returns (text, generated)."""
        if source.custom_message:
            return source.custom_message, False
        if self.generator is not None:
            try:
                return await self.generator.generate(build_prompt(source, day)), True
            except CollaboratorError as e:
                logger.warning("reminder_generation_fallback", source_id=source.id, error=str(e))
            except Exception as e:
                logger.warning("reminder_generation_fallback", source_id=source.id,
                               error=str(e), error_type=type(e).__name__)
        return fallback_message(source, day), False

    def _with_marker(self, text: str) -> str:
        text = text.strip()
        if self.config.marker in text:
            return text
        return f"{text} {self.config.marker}"

    async def run(self) -> dict[str, Any]:
        """
        Single producer pass.

        Store failures propagate to the caller; a source that cannot become a
        valid job is logged and skipped.

        Returns counts: {"matched": N, "created": N, "skipped": N, "errors": N}
        """
        stats = {"matched": 0, "created": 0, "skipped": 0, "errors": 0}
        day = self.target_day(self.clock.now())
        send_at = self.send_instant(day)

        matching = [s for s in await self.sources.list_sources() if s.occurs_on(day)]
        stats["matched"] = len(matching)
        if not matching:
            logger.info("reminder_run_complete", target_day=day.isoformat(), **stats)
            return stats

        existing = await self.jobs.list_jobs()

        for source in matching:
            if self._already_scheduled(source, existing, day):
                stats["skipped"] += 1
                logger.debug("reminder_already_scheduled", source_id=source.id)
                continue

            text, generated = await self._message_for(source, day)
            job = Job(
                id=new_id(),
                batch_id=new_id(),
                recipient=source.phone,
                caption=self._with_marker(text),
                send_at=send_at,
            )
            try:
                await self.jobs.create_jobs([job])
            except ValidationError as e:
                stats["errors"] += 1
                logger.warning("reminder_source_invalid", source_id=source.id, error=str(e))
                continue

            existing.append(job)
            stats["created"] += 1
            logger.info("reminder_scheduled", source_id=source.id, name=source.name,
                        job_id=job.id, send_at=format_timestamp(send_at),
                        source_type="custom" if source.custom_message else
                        ("generated" if generated else "template"))
            self.events.emit(REMINDER_SCHEDULED, source_id=source.id, job_id=job.id,
                             send_at=format_timestamp(send_at), generated=generated)

        self.events.emit(QUEUE_UPDATE, size=await self.jobs.count_pending())
        logger.info("reminder_run_complete", target_day=day.isoformat(), **stats)
        return stats
