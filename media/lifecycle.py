"""
Media Lifecycle Manager — local media files attached to scheduled jobs.

Uploaded media lives under ``<root>/<uploads_dir>`` and is referenced from a
job's ``media_url`` either as an absolute http(s) URL or as a path relative to
``<root>`` (e.g. ``/uploads/abc.jpg``). A file is live while a pending or
failed job references its basename; the sender deletes a file right after
its job is sent, and the reaper removes whatever is left over once it is
older than the retention window.
"""
from __future__ import annotations

import asyncio
import mimetypes
import structlog
from datetime import datetime
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

from config.settings import MediaConfig
from core.timers import Clock
from database.jobs import JobStore
from models.schemas import Job, JobStatus, MediaCategory, MediaPayload

logger = structlog.get_logger()


class ResourceMissingError(Exception):
    """A job's local media file could not be read."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        super().__init__(f"Media file not found: {path}" + (f" ({reason})" if reason else ""))


def guess_mime(name: str, declared: Optional[str] = None) -> str:
    if declared:
        return declared
    return mimetypes.guess_type(name)[0] or "application/octet-stream"


class MediaLifecycleManager:
    def __init__(self, config: MediaConfig, jobs: Optional[JobStore] = None, clock: Optional[Clock] = None):
        self.config = config
        self.jobs = jobs
        self.clock = clock or Clock()
        self.root = Path(config.root)
        self.uploads = self.root / config.uploads_dir

    # ── Resolution ────────────────────────────────────────────

    def local_path(self, media_url: str) -> Path:
        """Map a root-relative media URL to a path, refusing anything outside the root."""
        rel = media_url.lstrip("/").replace("\\", "/")
        path = (self.root / rel).resolve()
        root = self.root.resolve()
        if path != root and root not in path.parents:
            raise ResourceMissingError(media_url, "outside media root")
        return path

    async def resolve(self, job: Job) -> MediaPayload:
        """
        Build the transport payload for a job with media.

        Remote URLs pass through as references; local files are read into
        memory. Raises ResourceMissingError when the local read fails.
        """
        if job.is_remote_media:
            filename = Path(urlparse(job.media_url).path).name
            mime_type = guess_mime(filename, job.media_type)
            return MediaPayload(
                category=MediaCategory.from_mime(mime_type),
                mime_type=mime_type,
                filename=filename,
                url=job.media_url,
            )

        path = self.local_path(job.media_url)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise ResourceMissingError(str(path), e.strerror or str(e)) from e
        mime_type = guess_mime(path.name, job.media_type)
        return MediaPayload(
            category=MediaCategory.from_mime(mime_type),
            mime_type=mime_type,
            filename=path.name,
            data=data,
        )

    async def delete_for(self, job: Job) -> bool:
        """Delete the local file a sent job referenced. Failures are logged, not raised."""
        if not job.has_media or job.is_remote_media:
            return False
        try:
            path = self.local_path(job.media_url)
            await asyncio.to_thread(path.unlink)
        except (OSError, ResourceMissingError) as e:
            logger.warning("media_delete_failed", job_id=job.id, media_url=job.media_url, error=str(e))
            return False
        logger.info("media_deleted_after_send", job_id=job.id, file=path.name)
        return True

    # ── Reaper ────────────────────────────────────────────────

    @staticmethod
    def referenced_files(jobs: list[Job]) -> set[str]:
        """Basenames of local media referenced by pending or failed jobs."""
        live = set()
        for job in jobs:
            if job.status not in (JobStatus.PENDING, JobStatus.FAILED):
                continue
            if job.has_media and not job.is_remote_media:
                live.add(Path(job.media_url.replace("\\", "/")).name)
        return live

    def _list_uploads(self, keep: set[str]) -> list[Path]:
        return sorted(entry for entry in self.uploads.iterdir()
                      if entry.name not in keep and entry.is_file())

    @staticmethod
    def _delete_if_expired(entry: Path, cutoff: float) -> bool:
        if entry.stat().st_mtime >= cutoff:
            return False
        entry.unlink()
        return True

    async def reap(self, now: Optional[datetime] = None) -> dict[str, Any]:
        """
        Delete unreferenced files older than the retention window.

        A failure on one file is logged and the pass continues.
        Returns counts: {"scanned": N, "deleted": N, "kept": N, "errors": N}
        """
        stats = {"scanned": 0, "deleted": 0, "kept": 0, "errors": 0}
        if not await asyncio.to_thread(self.uploads.is_dir):
            logger.info("media_reap_skipped", reason="uploads directory missing", path=str(self.uploads))
            return stats

        live = self.referenced_files(await self.jobs.list_jobs()) if self.jobs else set()
        cutoff = (now or self.clock.now()).timestamp() - self.config.retention_hours * 3600
        entries = await asyncio.to_thread(self._list_uploads, set(self.config.keep_files))

        for entry in entries:
            stats["scanned"] += 1
            if entry.name in live:
                stats["kept"] += 1
                continue
            try:
                expired = await asyncio.to_thread(self._delete_if_expired, entry, cutoff)
            except OSError as e:
                stats["errors"] += 1
                logger.warning("media_reap_delete_failed", file=entry.name, error=str(e))
                continue
            if not expired:
                stats["kept"] += 1
                continue
            stats["deleted"] += 1
            logger.info("media_reaped", file=entry.name)
        if stats["deleted"]:
            logger.info("media_reap_complete", **stats)
        return stats
