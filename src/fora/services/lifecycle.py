"""Job lifecycle state machine.

Every status change in the service goes through ``transition()``.  An edge
that is not in ``_TRANSITIONS`` is rejected by returning ``None``; the caller
then simply does not write, so duplicate or late events leave the stored
record untouched.

Records are never mutated in place.  A successful transition returns a copy
with the new status and its side-effect fields applied.
"""

import logging
from datetime import datetime

from fora.models.job import Job, JobStatus, utcnow

logger = logging.getLogger(__name__)

TERMINAL_STATES: frozenset[JobStatus] = frozenset(
    {JobStatus.FAILED, JobStatus.ARCHIVED}
)

_TRANSITIONS: frozenset[tuple[JobStatus, JobStatus]] = frozenset(
    {
        (JobStatus.PENDING, JobStatus.PROCESSING),
        (JobStatus.PROCESSING, JobStatus.READY),
        (JobStatus.PROCESSING, JobStatus.FAILED),
        (JobStatus.READY, JobStatus.SHARED),
        (JobStatus.READY, JobStatus.ARCHIVED),
        (JobStatus.SHARED, JobStatus.ARCHIVED),
    }
)


def is_terminal(status: JobStatus) -> bool:
    return status in TERMINAL_STATES


def can_transition(from_status: JobStatus, to_status: JobStatus) -> bool:
    """Return True if ``from_status → to_status`` is an edge of the graph."""
    return (from_status, to_status) in _TRANSITIONS


def transition(
    job: Job,
    to_status: JobStatus,
    *,
    temp_asset_url: str | None = None,
    permanent_asset_url: str | None = None,
    share_reference: str | None = None,
    error: str | None = None,
    now: datetime | None = None,
) -> Job | None:
    """Apply one transition and its side effects.

    Args:
        job: Current record.  Not modified.
        to_status: Target status.
        temp_asset_url: Required when entering READY.
        permanent_asset_url: Required when entering SHARED.
        share_reference: Public post URL, recorded when entering SHARED.
        error: Failure summary, recorded when entering FAILED.
        now: Clock override for ``ready_at`` / ``shared_at``.

    Returns:
        The updated copy, or ``None`` when the edge is not allowed or the
        side-effect preconditions are not met.
    """
    if not can_transition(job.status, to_status):
        logger.info(
            "Rejected transition %s -> %s for job %s",
            job.status.value,
            to_status.value,
            job.id,
        )
        return None

    now = now or utcnow()
    update: dict = {"status": to_status}

    if to_status is JobStatus.READY:
        if not temp_asset_url:
            logger.warning("READY transition for job %s without asset URL", job.id)
            return None
        update["temp_asset_url"] = temp_asset_url
        if job.ready_at is None:
            update["ready_at"] = now

    elif to_status is JobStatus.SHARED:
        # A permanent copy can only exist because a temporary one was staged.
        if not permanent_asset_url or not job.temp_asset_url:
            logger.warning("SHARED transition for job %s missing asset URLs", job.id)
            return None
        update["permanent_asset_url"] = permanent_asset_url
        if share_reference:
            update["share_reference"] = share_reference
        if job.shared_at is None:
            update["shared_at"] = now

    elif to_status is JobStatus.FAILED:
        if error:
            update["last_error"] = error[:500]

    elif to_status is JobStatus.ARCHIVED:
        update["temp_asset_url"] = None

    return job.model_copy(update=update)


def mark_processing(job: Job) -> Job | None:
    return transition(job, JobStatus.PROCESSING)


def mark_ready(job: Job, temp_asset_url: str, now: datetime | None = None) -> Job | None:
    return transition(job, JobStatus.READY, temp_asset_url=temp_asset_url, now=now)


def mark_failed(job: Job, error: str | None = None) -> Job | None:
    return transition(job, JobStatus.FAILED, error=error)


def mark_shared(
    job: Job,
    permanent_asset_url: str,
    share_reference: str | None,
    now: datetime | None = None,
) -> Job | None:
    return transition(
        job,
        JobStatus.SHARED,
        permanent_asset_url=permanent_asset_url,
        share_reference=share_reference,
        now=now,
    )


def mark_archived(job: Job) -> Job | None:
    return transition(job, JobStatus.ARCHIVED)
