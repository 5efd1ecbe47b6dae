"""Job model — one user-requested render-and-publish unit of work.

Status lifecycle:
    PENDING → PROCESSING → READY → SHARED
                         ↘ FAILED     ↘
                               READY/SHARED → ARCHIVED

The domain record (``Job``) is a pydantic model.  It is persisted whole as a
JSON document in ``JobRecord`` under the key ``job:<id>``; the ``status``
column mirrors the document so the store can do a conditional claim.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field
from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fora.models import Base

JOB_KEY_PREFIX = "job:"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    READY = "READY"
    SHARED = "SHARED"
    FAILED = "FAILED"
    ARCHIVED = "ARCHIVED"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Job(BaseModel):
    """Full job record. Writers always replace the whole document."""

    id: str
    owner: int
    prompt: str
    input_reference: str | None = None
    status: JobStatus = JobStatus.PENDING

    # --- Assets ---
    temp_asset_url: str | None = None
    permanent_asset_url: str | None = None
    share_reference: str | None = None

    # --- Timestamps ---
    created_at: datetime = Field(default_factory=utcnow)
    ready_at: datetime | None = None
    shared_at: datetime | None = None

    # Short summary of the last pipeline failure (status stays the source of truth)
    last_error: str | None = None


def job_key(job_id: str) -> str:
    """Return the namespaced store key for a job id."""
    return f"{JOB_KEY_PREFIX}{job_id}"


class JobRecord(Base):
    __tablename__ = "job_records"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    status: Mapped[str] = mapped_column(String(20), index=True)
    owner: Mapped[int] = mapped_column(index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    document: Mapped[str] = mapped_column(Text)
