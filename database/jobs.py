"""
Job Store — CRUD view over the Schedule table.

Every call is a round trip to the row store and may raise StoreUnavailable;
callers treat that as fatal for the current sweep, never as a dropped write.
Rows are decoded into ``Job`` here and nowhere else.
"""
from __future__ import annotations

import structlog
from typing import Sequence

from pydantic import ValidationError as RowDecodeError

from database.store_base import BaseRowStore
from models.schemas import (
    SCHEDULE_COLUMNS, Job, JobPatch, JobStatus, ValidationError,
)

logger = structlog.get_logger()

CLEAR_MODES = ("sent", "failed", "all")


def validate_job(job: Job) -> None:
    """Reject jobs that can never be delivered."""
    if not (job.recipient or "").strip():
        raise ValidationError(f"Job {job.id}: recipient is required")
    if not (job.caption and job.caption.strip()) and not job.media_url:
        raise ValidationError(f"Job {job.id}: media or caption required")


class JobStore:
    def __init__(self, rows: BaseRowStore, table: str = "Schedule"):
        self.rows = rows
        self.table = table

    async def ensure_table(self) -> bool:
        return await self.rows.ensure_table(self.table, SCHEDULE_COLUMNS)

    async def list_jobs(self) -> list[Job]:
        jobs = []
        for row in await self.rows.list_rows(self.table):
            try:
                jobs.append(Job.from_row(row))
            except (RowDecodeError, ValueError) as e:
                logger.warning("schedule_row_skipped", row_id=row.get("ID"), error=str(e))
        return jobs

    async def create_jobs(self, jobs: Sequence[Job]) -> None:
        """Validate the whole batch, then append it. Nothing is written if any job is invalid."""
        for job in jobs:
            validate_job(job)
        if not jobs:
            return
        await self.rows.append_rows(self.table, [job.to_row() for job in jobs])
        logger.info("jobs_created", count=len(jobs))

    async def update_job(self, job_id: str, patch: JobPatch) -> None:
        await self.rows.update_row(self.table, job_id, patch.to_row())

    async def delete_job(self, job_id: str) -> None:
        await self.rows.delete_row(self.table, job_id)

    async def count_pending(self) -> int:
        return sum(1 for job in await self.list_jobs() if job.status == JobStatus.PENDING)

    async def clear(self, mode: str = "sent") -> int:
        """Operator clear: delete sent (default), failed, or all jobs."""
        if mode not in CLEAR_MODES:
            raise ValidationError(f"Unknown clear mode: {mode!r}")
        jobs = await self.list_jobs()
        if mode == "all":
            doomed = jobs
        else:
            doomed = [j for j in jobs if j.status.value == mode]
        for job in doomed:
            await self.delete_job(job.id)
        logger.info("schedule_cleared", mode=mode, deleted=len(doomed))
        return len(doomed)
