"""Tests for the age-based archival sweep."""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from fora.models import Base
from fora.models.job import Job, JobStatus
from fora.services import lifecycle
from fora.services.archival import ArchivalSweep, is_eligible
from fora.services.blob_storage import LocalBlobStorage
from fora.services.errors import BlobStorageError
from fora.services.job_store import SqlJobStore

BASE_URL = "http://app.test"
NOW = datetime(2025, 5, 3, 12, 0, tzinfo=timezone.utc)
MAX_AGE = timedelta(hours=48)


def _make_store(tmp_path: Path) -> SqlJobStore:
    engine = create_engine(
        f"sqlite:///{tmp_path}/jobs.db",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    return SqlJobStore(sessionmaker(bind=engine))


async def _stage(blob_store: LocalBlobStorage, job_id: str) -> str:
    return await blob_store.upload(f"pfp-animation-{job_id}.mp4", b"video")


def _job(job_id: str, status: JobStatus, ready_age: timedelta | None, **kwargs) -> Job:
    return Job(
        id=job_id,
        owner=7,
        prompt="a cat surfing a wave",
        status=status,
        ready_at=NOW - ready_age if ready_age is not None else None,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------


def test_eligibility_boundary_is_strict():
    url = "http://app.test/api/blobs/pfp-animation-job-7-aa.mp4"
    assert is_eligible(
        _job("job-7-aa", JobStatus.READY, MAX_AGE + timedelta(seconds=1), temp_asset_url=url),
        NOW,
        MAX_AGE,
    )
    assert not is_eligible(
        _job("job-7-aa", JobStatus.READY, MAX_AGE, temp_asset_url=url), NOW, MAX_AGE
    )
    assert not is_eligible(
        _job("job-7-aa", JobStatus.READY, timedelta(hours=47, minutes=59), temp_asset_url=url),
        NOW,
        MAX_AGE,
    )


def test_jobs_without_asset_or_ready_time_are_not_eligible():
    old = MAX_AGE + timedelta(hours=1)
    assert not is_eligible(_job("job-7-aa", JobStatus.READY, old), NOW, MAX_AGE)
    assert not is_eligible(_job("job-7-aa", JobStatus.PENDING, None), NOW, MAX_AGE)
    assert not is_eligible(_job("job-7-aa", JobStatus.ARCHIVED, old), NOW, MAX_AGE)


# ---------------------------------------------------------------------------
# Sweep
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_sweep_archives_old_ready_and_shared_jobs(tmp_path):
    store = _make_store(tmp_path)
    blobs = LocalBlobStorage(str(tmp_path / "storage"), BASE_URL)
    old = MAX_AGE + timedelta(seconds=1)

    ready_url = await _stage(blobs, "job-7-aa")
    shared_url = await _stage(blobs, "job-7-bb")
    fresh_url = await _stage(blobs, "job-7-cc")
    await store.put(_job("job-7-aa", JobStatus.READY, old, temp_asset_url=ready_url))
    await store.put(
        _job(
            "job-7-bb",
            JobStatus.SHARED,
            old,
            temp_asset_url=shared_url,
            permanent_asset_url="https://cdn.example/perm.mp4",
        )
    )
    await store.put(
        _job("job-7-cc", JobStatus.READY, timedelta(hours=47, minutes=59), temp_asset_url=fresh_url)
    )

    result = await ArchivalSweep(store, blobs, MAX_AGE).run(now=NOW)

    assert sorted(result.archived) == ["job-7-aa", "job-7-bb"]
    assert result.deleted == 2
    assert result.delete_failures == 0

    ready = await store.get("job-7-aa")
    assert ready.status is JobStatus.ARCHIVED
    assert ready.temp_asset_url is None
    shared = await store.get("job-7-bb")
    assert shared.status is JobStatus.ARCHIVED
    assert shared.permanent_asset_url == "https://cdn.example/perm.mp4"

    assert blobs.resolve("pfp-animation-job-7-aa.mp4").exists() is False
    assert blobs.resolve("pfp-animation-job-7-cc.mp4").exists()
    assert (await store.get("job-7-cc")).status is JobStatus.READY


@pytest.mark.asyncio
async def test_second_sweep_is_a_noop(tmp_path):
    store = _make_store(tmp_path)
    blobs = LocalBlobStorage(str(tmp_path / "storage"), BASE_URL)
    url = await _stage(blobs, "job-7-aa")
    await store.put(_job("job-7-aa", JobStatus.READY, MAX_AGE * 2, temp_asset_url=url))
    sweep = ArchivalSweep(store, blobs, MAX_AGE)

    await sweep.run(now=NOW)
    before = await store.document("job-7-aa")
    again = await sweep.run(now=NOW + timedelta(hours=1))

    assert again.archived == []
    assert again.deleted == 0
    assert await store.document("job-7-aa") == before


@pytest.mark.asyncio
async def test_delete_failure_still_archives(tmp_path):
    store = _make_store(tmp_path)
    blobs = LocalBlobStorage(str(tmp_path / "storage"), BASE_URL)
    # Never uploaded, so deletion reports "already gone"
    url = f"{BASE_URL}/api/blobs/pfp-animation-job-7-aa.mp4"
    await store.put(_job("job-7-aa", JobStatus.READY, MAX_AGE * 2, temp_asset_url=url))

    result = await ArchivalSweep(store, blobs, MAX_AGE).run(now=NOW)

    assert result.archived == ["job-7-aa"]
    assert result.delete_failures == 1
    assert (await store.get("job-7-aa")).status is JobStatus.ARCHIVED


@pytest.mark.asyncio
async def test_failed_jobs_are_left_alone(tmp_path):
    store = _make_store(tmp_path)
    blob_store = AsyncMock()
    url = f"{BASE_URL}/api/blobs/pfp-animation-job-7-aa.mp4"
    # A FAILED job should never carry an asset, but even if it does it is terminal.
    await store.put(_job("job-7-aa", JobStatus.FAILED, MAX_AGE * 2, temp_asset_url=url))

    result = await ArchivalSweep(store, blob_store, MAX_AGE).run(now=NOW)

    assert result.archived == []
    blob_store.delete.assert_not_awaited()
    assert (await store.get("job-7-aa")).status is JobStatus.FAILED


@pytest.mark.asyncio
async def test_one_bad_job_does_not_stop_the_sweep(tmp_path):
    store = _make_store(tmp_path)
    blob_store = AsyncMock()
    blob_store.delete.side_effect = [RuntimeError("network"), None]
    for job_id in ("job-7-aa", "job-7-bb"):
        await store.put(
            _job(
                job_id,
                JobStatus.READY,
                MAX_AGE * 2,
                temp_asset_url=f"https://blob.example/pfp-animation-{job_id}.mp4",
            )
        )

    result = await ArchivalSweep(store, blob_store, MAX_AGE).run(now=NOW)

    assert sorted(result.archived) == ["job-7-aa", "job-7-bb"]
    assert result.deleted == 1
    assert result.delete_failures == 1


@pytest.mark.asyncio
async def test_blob_storage_error_counts_as_delete_failure(tmp_path):
    store = _make_store(tmp_path)
    blob_store = AsyncMock()
    blob_store.delete.side_effect = BlobStorageError("404")
    await store.put(
        _job(
            "job-7-aa",
            JobStatus.READY,
            MAX_AGE * 2,
            temp_asset_url="https://blob.example/pfp-animation-job-7-aa.mp4",
        )
    )

    result = await ArchivalSweep(store, blob_store, MAX_AGE).run(now=NOW)

    assert result.delete_failures == 1
    assert (await store.get("job-7-aa")).temp_asset_url is None


class _PausingStore(SqlJobStore):
    """Holds its first ``get`` open until ``resume`` is set."""

    def __init__(self, session_factory) -> None:
        super().__init__(session_factory)
        self.paused = asyncio.Event()
        self.resume = asyncio.Event()
        self._reads = 0

    async def get(self, job_id: str) -> Job | None:
        job = await super().get(job_id)
        self._reads += 1
        if self._reads == 1:
            self.paused.set()
            await self.resume.wait()
        return job


@pytest.mark.asyncio
async def test_share_between_read_and_write_is_kept(tmp_path):
    store = _make_store(tmp_path)
    url = "https://blob.example/pfp-animation-job-7-aa.mp4"
    await store.put(_job("job-7-aa", JobStatus.READY, MAX_AGE * 2, temp_asset_url=url))
    pausing = _PausingStore(store._session_factory)

    sweep = asyncio.create_task(ArchivalSweep(pausing, AsyncMock(), MAX_AGE).run(now=NOW))
    await pausing.paused.wait()
    shared = lifecycle.mark_shared(
        await store.get("job-7-aa"),
        "https://stream.example/v1/video/abc.m3u8",
        "https://warpcast.com/alice/0xfeed",
    )
    await store.put(shared)
    pausing.resume.set()
    result = await sweep

    assert result.archived == ["job-7-aa"]
    job = await store.get("job-7-aa")
    assert job.status is JobStatus.ARCHIVED
    assert job.temp_asset_url is None
    assert job.permanent_asset_url == "https://stream.example/v1/video/abc.m3u8"
    assert job.share_reference == "https://warpcast.com/alice/0xfeed"
