"""Generation worker — turns one PENDING job into READY or FAILED per activation.

Each activation:
    1. Lists jobs and picks the oldest PENDING one.
    2. Claims it (PENDING → PROCESSING) with the store's atomic claim.  A lost
       claim means another activation got there first: skip quietly.
    3. Resolves the source image (download / local path / placeholder).
    4. Renders the animation (bounded by ``render_timeout``).
    5. Uploads it under ``pfp-animation-<job id>.mp4`` (bounded by
       ``upload_timeout``).
    6. Marks the job READY and notifies the owner.  The local render is
       removed whatever the notifier does.
    7. Any error in 3–6 marks the job FAILED.  Nothing is retried.

Only one job is handled per activation so a single activation never holds the
renderer for more than one job and a crash costs at most one job.

``WorkerScheduler`` re-arms activations on a fixed interval as an explicit
asyncio task with a stop event, so shutdown is deterministic.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from fora.config import settings
from fora.logging_config import bind_job_id
from fora.models.job import Job, JobStatus
from fora.services import lifecycle
from fora.services.blob_storage import BlobStore, asset_key_for_job, get_blob_store
from fora.services.errors import PipelineError
from fora.services.inputs import is_remote, resolve_input
from fora.services.job_store import JobStore, get_job_store
from fora.services.notifier import (
    READY_BODY,
    READY_TITLE,
    Notifier,
    build_deep_link,
    get_notifier,
)
from fora.services.renderer import Renderer, get_renderer

logger = logging.getLogger(__name__)

OUTCOME_IDLE = "idle"
OUTCOME_SKIPPED = "skipped"
OUTCOME_READY = "ready"
OUTCOME_FAILED = "failed"


@dataclass
class ActivationResult:
    outcome: str
    job_id: str | None = None
    error: str | None = None


def _failure_summary(stage: str, exc: BaseException) -> str:
    """Short, user-safe description of a pipeline failure.

    The full exception is logged separately; only this summary is stored.
    """
    if isinstance(exc, asyncio.TimeoutError):
        return f"Timed out while {stage}."
    if isinstance(exc, PipelineError):
        first_line = str(exc).splitlines()[0] if str(exc) else exc.__class__.__name__
        return f"Failed while {stage}: {first_line}"[:500]
    return f"Failed while {stage}."


class GenerationWorker:
    """One-job-per-activation render pipeline.

    Collaborators default to the module singletons; tests pass fakes.
    """

    def __init__(
        self,
        store: JobStore | None = None,
        renderer: Renderer | None = None,
        blob_store: BlobStore | None = None,
        notifier: Notifier | None = None,
        *,
        work_dir: str | Path | None = None,
        public_base_url: str | None = None,
        render_timeout: float | None = None,
        upload_timeout: float | None = None,
        duration_seconds: int | None = None,
    ) -> None:
        self._store = store or get_job_store()
        self._renderer = renderer or get_renderer()
        self._blob_store = blob_store or get_blob_store()
        self._notifier = notifier or get_notifier()
        self._work_dir = Path(work_dir or settings.work_dir)
        self._public_base_url = public_base_url or settings.public_base_url
        self._render_timeout = render_timeout or settings.render_timeout_seconds
        self._upload_timeout = upload_timeout or settings.upload_timeout_seconds
        self._duration_seconds = duration_seconds or settings.render_duration_seconds

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    async def _next_pending(self) -> Job | None:
        for job in await self._store.list_all():
            if job.status is JobStatus.PENDING:
                return job
        return None

    async def _claim(self, job: Job) -> Job | None:
        """Claim ``job`` and return the PROCESSING record, or None if lost."""
        if getattr(self._store, "supports_atomic_claim", False):
            if not await self._store.claim(job.id, JobStatus.PENDING, JobStatus.PROCESSING):
                return None
            return await self._store.get(job.id)

        # Store has no conditional write: read-check-write is the best we can do.
        logger.warning("Job store has no atomic claim; duplicate work is possible")
        current = await self._store.get(job.id)
        if current is None:
            return None
        claimed = lifecycle.mark_processing(current)
        if claimed is None:
            return None
        await self._store.put(claimed)
        return claimed

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _notify_ready(self, job: Job) -> None:
        """Best-effort READY notification; never raises."""
        try:
            delivered = await self._notifier.notify(
                job.owner,
                READY_TITLE,
                READY_BODY,
                build_deep_link(self._public_base_url, job.id),
            )
            if not delivered:
                logger.warning("Ready notification for job %s not delivered", job.id)
        except Exception:
            logger.exception("Error notifying owner of job %s", job.id)

    async def _mark_failed(self, job_id: str, summary: str) -> None:
        current = await self._store.get(job_id)
        if current is None:
            return
        failed = lifecycle.mark_failed(current, summary)
        if failed is not None:
            await self._store.put(failed)

    async def _process(self, job: Job) -> ActivationResult:
        local_files: list[Path] = []
        stage = "fetching the source image"
        try:
            input_path = await resolve_input(job.input_reference, self._work_dir, job.id)
            if job.input_reference and is_remote(job.input_reference):
                local_files.append(input_path)

            stage = "rendering"
            video_path = Path(
                await asyncio.wait_for(
                    self._renderer.render(
                        input_path, self._work_dir / "renders", self._duration_seconds
                    ),
                    timeout=self._render_timeout,
                )
            )
            local_files.append(video_path)

            stage = "uploading"
            temp_url = await asyncio.wait_for(
                self._blob_store.upload(asset_key_for_job(job.id), video_path),
                timeout=self._upload_timeout,
            )

            stage = "saving the result"
            current = await self._store.get(job.id) or job
            ready = lifecycle.mark_ready(current, temp_url)
            if ready is None:
                # Status moved under us (should not happen after a claim).
                logger.error("Job %s left PROCESSING during generation", job.id)
                return ActivationResult(OUTCOME_SKIPPED, job.id)
            await self._store.put(ready)
            logger.info("Job %s READY: %s", job.id, temp_url)

            await self._notify_ready(ready)
            return ActivationResult(OUTCOME_READY, job.id)

        except Exception as exc:
            summary = _failure_summary(stage, exc)
            logger.exception("Job %s failed: %s", job.id, summary)
            try:
                await self._mark_failed(job.id, summary)
            except Exception:
                logger.exception("Could not mark job %s as failed", job.id)
            return ActivationResult(OUTCOME_FAILED, job.id, summary)

        finally:
            for path in local_files:
                try:
                    path.unlink(missing_ok=True)
                except OSError:
                    logger.warning("Could not remove local file %s", path)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process_one_pending_job(self) -> ActivationResult:
        """Run one activation.  Never raises for per-job problems."""
        job = await self._next_pending()
        if job is None:
            return ActivationResult(OUTCOME_IDLE)

        with bind_job_id(job.id):
            claimed = await self._claim(job)
            if claimed is None or claimed.status is not JobStatus.PROCESSING:
                logger.info("Job %s already claimed, skipping", job.id)
                return ActivationResult(OUTCOME_SKIPPED, job.id)

            logger.info("Claimed job %s", job.id)
            return await self._process(claimed)


class WorkerScheduler:
    """Runs ``GenerationWorker`` activations every ``interval`` seconds.

    ``stop()`` is the cancellation token: it ends the loop after the current
    activation.  ``nudge()`` starts the next activation early (used after
    intake so a fresh job does not wait a full interval).
    """

    def __init__(self, worker: GenerationWorker, interval: float | None = None) -> None:
        self._worker = worker
        self._interval = interval if interval is not None else settings.worker_poll_interval_seconds
        self._stop_event = asyncio.Event()
        self._wake_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.activations = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run_forever(), name="generation-worker")
        logger.info("Worker scheduler started (interval=%ss)", self._interval)
        return self._task

    def nudge(self) -> None:
        self._wake_event.set()

    async def stop(self) -> None:
        self._stop_event.set()
        self._wake_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Worker scheduler stopped after %d activations", self.activations)

    async def run_forever(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self._worker.process_one_pending_job()
            except Exception:
                logger.exception("Worker activation crashed")
            self.activations += 1

            if self._stop_event.is_set():
                break
            try:
                await asyncio.wait_for(self._wake_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
            self._wake_event.clear()


_worker: GenerationWorker | None = None


def get_worker() -> GenerationWorker:
    global _worker
    if _worker is None:
        _worker = GenerationWorker()
    return _worker
