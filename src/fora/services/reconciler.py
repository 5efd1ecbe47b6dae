"""Webhook reconciler — folds "user shared the video" events into job state.

Inbound events are Neynar ``cast.created`` webhooks.  They arrive
at-least-once and in any order, so every step here is idempotent:

1. The raw body must carry a valid HMAC-SHA512 signature for the shared
   webhook secret.  Anything else is rejected before it is even parsed.
2. The job id is taken from an embed that points at a temporary asset
   (``.../pfp-animation-<job id>.mp4``) or, failing that, from a deep link
   back into the app carrying ``?job=<job id>``.
3. Unknown jobs are acknowledged and dropped.
4. A READY job with a distinct permanent embed moves to SHARED.
5. A READY job without one only gets its ``share_reference`` recorded.
6. Every other state is a no-op, so replays against SHARED or ARCHIVED jobs
   change nothing.

Which embed counts as "the permanent copy" is a pluggable predicate.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Callable
from urllib.parse import parse_qs, urlparse

from pydantic import BaseModel, ConfigDict, ValidationError

from fora.config import settings
from fora.logging_config import bind_job_id
from fora.models.job import Job, JobStatus
from fora.services import lifecycle
from fora.services.blob_storage import job_id_from_asset_url
from fora.services.job_store import JobStore, get_job_store, replace_if_unchanged

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Neynar-Signature"
SHARE_URL_BASE = "https://warpcast.com"

OUTCOME_REJECTED = "rejected"
OUTCOME_IGNORED = "ignored"
OUTCOME_SHARED = "shared"
OUTCOME_PARTIAL = "partial"
OUTCOME_NOOP = "noop"
OUTCOME_ERROR = "error"

# Re-reads allowed when a conditional write loses to a concurrent writer
MAX_WRITE_ATTEMPTS = 3


# ---------------------------------------------------------------------------
# Payload schema
# ---------------------------------------------------------------------------


class EmbedMedia(BaseModel):
    model_config = ConfigDict(extra="allow")

    url: str | None = None


class Embed(BaseModel):
    model_config = ConfigDict(extra="allow")

    url: str | None = None
    media: EmbedMedia | None = None

    @property
    def resolved_url(self) -> str | None:
        if self.url:
            return self.url
        return self.media.url if self.media else None


class CastAuthor(BaseModel):
    model_config = ConfigDict(extra="allow")

    fid: int
    username: str = ""


class Cast(BaseModel):
    model_config = ConfigDict(extra="allow")

    hash: str
    author: CastAuthor
    embeds: list[Embed] = []


class WebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "cast.created"
    data: Cast


@dataclass
class ReconcileResult:
    outcome: str
    job_id: str | None = None
    message: str = ""


# Decides whether ``url`` is the permanent copy of ``job``'s asset.
PermanentCopyPredicate = Callable[[str, Job], bool]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def sign_payload(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha512).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    """Constant-time check of the webhook HMAC.  No secret means unverifiable."""
    if not secret or not signature:
        return False
    return hmac.compare_digest(sign_payload(raw_body, secret), signature.strip().lower())


def job_id_from_deep_link(url: str, public_base_url: str) -> str | None:
    """Return the ``job`` query parameter of a link into this app."""
    if not url.startswith(public_base_url.rstrip("/")):
        return None
    values = parse_qs(urlparse(url).query).get("job")
    return values[0] if values else None


def share_reference_for(cast: Cast) -> str:
    """Public link to ``cast``; authors without a username are addressed by fid."""
    name = cast.author.username or str(cast.author.fid)
    return f"{SHARE_URL_BASE}/{name}/{cast.hash}"


class EventReconciler:
    def __init__(
        self,
        store: JobStore | None = None,
        *,
        secret: str | None = None,
        public_base_url: str | None = None,
        monitor_fid: int | None = None,
        is_permanent_copy: PermanentCopyPredicate | None = None,
    ) -> None:
        self._store = store or get_job_store()
        self._secret = secret if secret is not None else settings.neynar_webhook_secret
        self._public_base_url = public_base_url or settings.public_base_url
        self._monitor_fid = monitor_fid if monitor_fid is not None else settings.webhook_monitor_fid
        self._is_permanent_copy = is_permanent_copy or self.default_is_permanent_copy

    @property
    def configured(self) -> bool:
        return bool(self._secret)

    def default_is_permanent_copy(self, url: str, job: Job) -> bool:
        """Any embed that is not a temporary asset and not a link back to us."""
        if url == job.temp_asset_url or job_id_from_asset_url(url):
            return False
        return job_id_from_deep_link(url, self._public_base_url) is None

    def extract_job_id(self, cast: Cast) -> str | None:
        urls = [e.resolved_url for e in cast.embeds if e.resolved_url]
        for url in urls:
            job_id = job_id_from_asset_url(url)
            if job_id:
                return job_id
        for url in urls:
            job_id = job_id_from_deep_link(url, self._public_base_url)
            if job_id:
                return job_id
        return None

    def find_permanent_url(self, cast: Cast, job: Job) -> str | None:
        for embed in cast.embeds:
            url = embed.resolved_url
            if url and self._is_permanent_copy(url, job):
                return url
        return None

    async def _apply(self, cast: Cast, job: Job) -> ReconcileResult | None:
        """Fold ``cast`` into ``job``.  None means the job changed under us."""
        if job.status is not JobStatus.READY:
            logger.info("Job %s is %s, event is a no-op", job.id, job.status.value)
            return ReconcileResult(OUTCOME_NOOP, job.id, f"Job already {job.status.value}")

        share_ref = share_reference_for(cast)
        permanent_url = self.find_permanent_url(cast, job)

        if permanent_url:
            shared = lifecycle.mark_shared(job, permanent_url, share_ref)
            if shared is not None:
                if not await replace_if_unchanged(self._store, shared, job):
                    return None
                logger.info("Job %s shared; permanent copy %s", job.id, permanent_url)
                return ReconcileResult(OUTCOME_SHARED, job.id, "Permanent copy recorded")

        # Share seen but no distinguishable permanent copy (yet).
        logger.warning("No permanent copy found for job %s; recording share only", job.id)
        if job.share_reference != share_ref:
            updated = job.model_copy(update={"share_reference": share_ref})
            if not await replace_if_unchanged(self._store, updated, job):
                return None
        return ReconcileResult(OUTCOME_PARTIAL, job.id, "Share recorded without permanent copy")

    async def handle(self, raw_body: bytes, signature: str | None) -> ReconcileResult:
        """Verify and apply one webhook delivery.  Never raises."""
        if not verify_signature(raw_body, signature, self._secret):
            logger.warning("Invalid webhook signature; event rejected")
            return ReconcileResult(OUTCOME_REJECTED, message="Unauthorized")

        try:
            event = WebhookEvent.model_validate_json(raw_body)
        except ValidationError as exc:
            logger.warning("Unparseable webhook payload: %s", exc.errors()[:3])
            return ReconcileResult(OUTCOME_IGNORED, message="Unsupported payload")

        if event.type != "cast.created":
            logger.info("Ignoring %s webhook", event.type)
            return ReconcileResult(OUTCOME_IGNORED, message="Unsupported event type")

        cast = event.data
        if self._monitor_fid and cast.author.fid != self._monitor_fid:
            return ReconcileResult(OUTCOME_IGNORED, message="Not monitoring this author")

        job_id = self.extract_job_id(cast)
        if job_id is None:
            return ReconcileResult(OUTCOME_IGNORED, message="No job reference in embeds")

        with bind_job_id(job_id):
            try:
                for _ in range(MAX_WRITE_ATTEMPTS):
                    job = await self._store.get(job_id)
                    if job is None:
                        logger.info("Webhook references unknown job %s", job_id)
                        return ReconcileResult(OUTCOME_IGNORED, job_id, "Job not found")
                    result = await self._apply(cast, job)
                    if result is not None:
                        return result
                logger.warning("Job %s kept changing; giving up on this event", job_id)
                return ReconcileResult(OUTCOME_ERROR, job_id, "Job changed concurrently")
            except Exception:
                logger.exception("Failed to reconcile event for job %s", job_id)
                return ReconcileResult(OUTCOME_ERROR, job_id, "Reconciliation failed")


_reconciler: EventReconciler | None = None


def get_reconciler() -> EventReconciler:
    global _reconciler
    if _reconciler is None:
        _reconciler = EventReconciler()
    return _reconciler
