"""Job service — intake and read-only status queries.

Intake validates a submission and creates the job in PENDING; it is the only
place jobs are created.  Status queries never write.
"""

import logging
import uuid
from collections import defaultdict

from fora.config import settings
from fora.models.job import Job, JobStatus
from fora.services.errors import JobValidationError
from fora.services.job_store import JobStore, get_job_store

logger = logging.getLogger(__name__)


def new_job_id(owner: int) -> str:
    """Return a fresh job id.  The owner prefix keeps ids readable in logs."""
    return f"job-{owner}-{uuid.uuid4().hex}"


class JobService:
    """Creates jobs and answers status queries."""

    def __init__(
        self, store: JobStore | None = None, min_prompt_length: int | None = None
    ) -> None:
        self._store = store
        self._min_prompt_length = (
            min_prompt_length
            if min_prompt_length is not None
            else settings.min_prompt_length
        )

    @property
    def store(self) -> JobStore:
        return self._store or get_job_store()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_job(
        self,
        owner: int,
        prompt: str,
        *,
        input_reference: str | None = None,
    ) -> Job:
        """Validate a submission and store a new PENDING job.

        Raises:
            JobValidationError: bad owner id or prompt too short.  Nothing
                is stored in that case.
        """
        if isinstance(owner, bool) or not isinstance(owner, int) or owner <= 0:
            raise JobValidationError("A numeric user id is required.")
        if not isinstance(prompt, str) or len(prompt.strip()) < self._min_prompt_length:
            raise JobValidationError(
                f"A prompt of at least {self._min_prompt_length} characters is required."
            )

        job = Job(
            id=new_job_id(owner),
            owner=owner,
            prompt=prompt,
            input_reference=input_reference or None,
            status=JobStatus.PENDING,
        )
        await self.store.put(job)
        logger.info("Created job %s for owner %s", job.id, owner)
        return job

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get(self, job_id: str) -> Job | None:
        return await self.store.get(job_id)

    async def list_for_owner(self, owner: int) -> list[Job]:
        """Return the owner's jobs, newest first."""
        store = self.store
        if hasattr(store, "list_for_owner"):
            jobs = await store.list_for_owner(owner)
        else:
            jobs = [j for j in await store.list_all() if j.owner == owner]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    async def grouped_for_owner(self, owner: int) -> dict[str, list[Job]]:
        """Return the owner's jobs grouped by status, each group newest first."""
        grouped: dict[str, list[Job]] = defaultdict(list)
        for job in await self.list_for_owner(owner):
            grouped[job.status.value].append(job)
        return dict(grouped)
