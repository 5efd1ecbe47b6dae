"""Archival sweep — reclaims temporary blob storage by age.

A job is eligible when it is not yet ARCHIVED, has ``ready_at`` and a
``temp_asset_url``, and ``now - ready_at`` is strictly greater than the
retention window (48 hours by default).  For each eligible job the blob is
deleted and the job moves to ARCHIVED with ``temp_asset_url`` cleared.

Deletion failures (typically "already gone") are logged and do not block the
transition, so a job is never swept twice.  ``permanent_asset_url`` is left
alone.

``STORAGE_LIMIT_BYTES`` mirrors the configured storage quota.  It is
advisory: the sweep only applies the age rule.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from fora.config import settings
from fora.logging_config import bind_job_id
from fora.models.job import Job, JobStatus, utcnow
from fora.services import lifecycle
from fora.services.blob_storage import BlobStore, get_blob_store
from fora.services.errors import BlobStorageError
from fora.services.job_store import JobStore, get_job_store, replace_if_unchanged

logger = logging.getLogger(__name__)

# Re-reads allowed when the ARCHIVED write loses to a concurrent writer
MAX_WRITE_ATTEMPTS = 3

STORAGE_LIMIT_BYTES = settings.storage_limit_bytes


@dataclass
class SweepResult:
    archived: list[str] = field(default_factory=list)
    deleted: int = 0
    delete_failures: int = 0


def is_eligible(job: Job, now: datetime, max_age: timedelta) -> bool:
    if job.status is JobStatus.ARCHIVED:
        return False
    if job.ready_at is None or not job.temp_asset_url:
        return False
    return now - job.ready_at > max_age


class ArchivalSweep:
    def __init__(
        self,
        store: JobStore | None = None,
        blob_store: BlobStore | None = None,
        max_age: timedelta | None = None,
    ) -> None:
        self._store = store or get_job_store()
        self._blob_store = blob_store or get_blob_store()
        self._max_age = max_age or timedelta(hours=settings.archive_after_hours)

    async def _archive(self, job: Job, result: SweepResult) -> None:
        if not lifecycle.can_transition(job.status, JobStatus.ARCHIVED):
            logger.info("Job %s is %s, not archivable", job.id, job.status.value)
            return
        try:
            await self._blob_store.delete(job.temp_asset_url)
            result.deleted += 1
        except BlobStorageError as exc:
            result.delete_failures += 1
            logger.warning(
                "Failed to delete blob for job %s (may already be gone): %s", job.id, exc
            )
        except Exception:
            result.delete_failures += 1
            logger.exception("Unexpected error deleting blob for job %s", job.id)

        # Re-read before each attempt so a concurrent share is not clobbered.
        for _ in range(MAX_WRITE_ATTEMPTS):
            current = await self._store.get(job.id)
            if current is None:
                logger.info("Job %s disappeared before it could be archived", job.id)
                return
            archived = lifecycle.mark_archived(current)
            if archived is None:
                logger.info(
                    "Job %s not archivable from %s, leaving as is", job.id, current.status.value
                )
                return
            if await replace_if_unchanged(self._store, archived, current):
                result.archived.append(job.id)
                logger.info("Archived job %s", job.id)
                return
        logger.warning("Job %s kept changing; archive left for the next sweep", job.id)

    async def run(self, now: datetime | None = None) -> SweepResult:
        """Run one sweep.  Per-job failures are logged and never raised."""
        now = now or utcnow()
        result = SweepResult()

        jobs = await self._store.list_all()
        eligible = [j for j in jobs if is_eligible(j, now, self._max_age)]
        logger.info(
            "Archival sweep found %d of %d jobs older than %s",
            len(eligible),
            len(jobs),
            self._max_age,
        )

        for job in eligible:
            with bind_job_id(job.id):
                try:
                    await self._archive(job, result)
                except Exception:
                    logger.exception("Archival of job %s failed", job.id)

        logger.info(
            "Archival sweep finished: %d archived, %d blobs deleted, %d delete failures",
            len(result.archived),
            result.deleted,
            result.delete_failures,
        )
        return result


_sweep: ArchivalSweep | None = None


def get_sweep() -> ArchivalSweep:
    global _sweep
    if _sweep is None:
        _sweep = ArchivalSweep()
    return _sweep
