"""Job store — the single source of truth for job records.

Records live in the ``job_records`` table keyed by ``job:<id>``, with the
full ``Job`` serialised as JSON in ``document``.  There are no partial
updates: ``put`` always replaces the whole document, so writers must
read-modify-write.

There are two conditional writes.  ``claim`` only succeeds when the stored
status and document are still exactly what the caller last read, which makes
PENDING → PROCESSING safe when several worker activations race.
``put_if_unchanged`` replaces a record only if it still equals the copy the
caller read, so the webhook and the archival sweep cannot overwrite each
other's transitions.

SQLAlchemy sessions are synchronous; every public method runs its DB work
in the default executor so a slow query never blocks other activations on
the event loop.
"""

import asyncio
import functools
import logging
from typing import Any, Callable, Protocol

from sqlalchemy import select, update
from sqlalchemy.orm import sessionmaker

from fora.models.job import Job, JobRecord, JobStatus, job_key

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    supports_atomic_claim: bool

    async def put(self, job: Job) -> None: ...

    async def get(self, job_id: str) -> Job | None: ...

    async def list_all(self) -> list[Job]: ...

    async def claim(
        self, job_id: str, expected_status: JobStatus, new_status: JobStatus
    ) -> bool: ...

    async def put_if_unchanged(self, job: Job, expected: Job) -> bool: ...


class SqlJobStore:
    """``JobStore`` backed by a SQLAlchemy session factory."""

    supports_atomic_claim = True

    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        if session_factory is None:
            from fora.database import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    def _put_sync(self, job: Job) -> None:
        with self._session_factory() as db:
            db.merge(
                JobRecord(
                    key=job_key(job.id),
                    status=job.status.value,
                    owner=job.owner,
                    created_at=job.created_at,
                    document=job.model_dump_json(),
                )
            )
            db.commit()

    def _get_sync(self, job_id: str) -> Job | None:
        with self._session_factory() as db:
            row = db.get(JobRecord, job_key(job_id))
            if row is None:
                return None
            return Job.model_validate_json(row.document)

    def _list_sync(self, owner: int | None = None) -> list[Job]:
        stmt = select(JobRecord.document).order_by(
            JobRecord.created_at, JobRecord.key
        )
        if owner is not None:
            stmt = stmt.where(JobRecord.owner == owner)
        with self._session_factory() as db:
            return [Job.model_validate_json(doc) for doc in db.scalars(stmt)]

    def _replace_sync(self, key: str, current_doc: str, new_job: Job, db) -> bool:
        """Swap ``current_doc`` for ``new_job`` unless another writer got there first."""
        result = db.execute(
            update(JobRecord)
            .where(JobRecord.key == key, JobRecord.document == current_doc)
            .values(status=new_job.status.value, document=new_job.model_dump_json())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    def _claim_sync(
        self, job_id: str, expected_status: JobStatus, new_status: JobStatus
    ) -> bool:
        key = job_key(job_id)
        with self._session_factory() as db:
            row = db.get(JobRecord, key)
            if row is None or row.status != expected_status.value:
                return False
            current_doc = row.document
            claimed = Job.model_validate_json(current_doc).model_copy(
                update={"status": new_status}
            )
            return self._replace_sync(key, current_doc, claimed, db)

    def _put_if_unchanged_sync(self, job: Job, expected: Job) -> bool:
        key = job_key(job.id)
        with self._session_factory() as db:
            row = db.get(JobRecord, key)
            if row is None:
                return False
            current_doc = row.document
            if Job.model_validate_json(current_doc) != expected:
                return False
            return self._replace_sync(key, current_doc, job, db)

    def _document_sync(self, job_id: str) -> str | None:
        with self._session_factory() as db:
            row = db.get(JobRecord, job_key(job_id))
            return row.document if row is not None else None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def put(self, job: Job) -> None:
        """Upsert the full record for ``job``."""
        await self._run(self._put_sync, job)
        logger.debug("Stored job %s (%s)", job.id, job.status.value)

    async def get(self, job_id: str) -> Job | None:
        return await self._run(self._get_sync, job_id)

    async def list_all(self) -> list[Job]:
        """Return every job, oldest first.

        O(n) over all records.  Fine at current volume; the ``status``
        column is indexed if this needs to become a per-status query.
        """
        return await self._run(self._list_sync)

    async def list_for_owner(self, owner: int) -> list[Job]:
        return await self._run(self._list_sync, owner)

    async def claim(
        self, job_id: str, expected_status: JobStatus, new_status: JobStatus
    ) -> bool:
        """Atomically move a job from ``expected_status`` to ``new_status``.

        Returns False (not an error) when the job is gone or another writer
        changed it first.
        """
        claimed = await self._run(self._claim_sync, job_id, expected_status, new_status)
        if not claimed:
            logger.info(
                "Claim %s -> %s lost for job %s",
                expected_status.value,
                new_status.value,
                job_id,
            )
        return claimed

    async def put_if_unchanged(self, job: Job, expected: Job) -> bool:
        """Replace the record with ``job`` only if it still equals ``expected``.

        ``expected`` is the copy the caller read and derived ``job`` from.
        Returns False (not an error) when the job is gone or was rewritten in
        between; the caller should re-read and decide again.
        """
        written = await self._run(self._put_if_unchanged_sync, job, expected)
        if not written:
            logger.info("Conditional write lost for job %s", job.id)
        return written

    async def document(self, job_id: str) -> str | None:
        """Return the raw stored JSON for a job."""
        return await self._run(self._document_sync, job_id)


async def replace_if_unchanged(store: JobStore, job: Job, expected: Job) -> bool:
    """Write ``job`` only if the stored record still equals ``expected``.

    Stores without an atomic conditional write get a re-read and compare,
    which narrows the race without closing it.
    """
    if getattr(store, "supports_atomic_claim", False):
        return await store.put_if_unchanged(job, expected)
    logger.warning("Store %s has no atomic conditional write", type(store).__name__)
    if await store.get(job.id) != expected:
        return False
    await store.put(job)
    return True


_store: SqlJobStore | None = None


def get_job_store() -> SqlJobStore:
    """Return the module-level store singleton."""
    global _store
    if _store is None:
        _store = SqlJobStore()
    return _store
