"""Tests for the SQL-backed job store."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from fora.models import Base
from fora.models.job import Job, JobRecord, JobStatus
from fora.services.job_store import SqlJobStore, replace_if_unchanged

T0 = datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc)


def _make_store(tmp_path: Path) -> SqlJobStore:
    """Return a store on an isolated file-backed SQLite DB."""
    engine = create_engine(
        f"sqlite:///{tmp_path}/jobs.db",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    return SqlJobStore(sessionmaker(bind=engine))


def _job(job_id: str = "job-1-aa", owner: int = 1, **kwargs) -> Job:
    kwargs.setdefault("created_at", T0)
    return Job(id=job_id, owner=owner, prompt="a dog on the moon", **kwargs)


@pytest.mark.asyncio
async def test_put_then_get_round_trips(tmp_path):
    store = _make_store(tmp_path)
    job = _job(input_reference="https://img.example/a.png")
    await store.put(job)

    loaded = await store.get(job.id)
    assert loaded == job


@pytest.mark.asyncio
async def test_get_missing_returns_none(tmp_path):
    store = _make_store(tmp_path)
    assert await store.get("job-1-missing") is None


@pytest.mark.asyncio
async def test_put_replaces_whole_record(tmp_path):
    store = _make_store(tmp_path)
    job = _job()
    await store.put(job)
    await store.put(job.model_copy(update={"status": JobStatus.FAILED, "last_error": "boom"}))

    loaded = await store.get(job.id)
    assert loaded.status is JobStatus.FAILED
    assert loaded.last_error == "boom"
    assert len(await store.list_all()) == 1


@pytest.mark.asyncio
async def test_records_are_keyed_by_job_prefix(tmp_path):
    store = _make_store(tmp_path)
    await store.put(_job("job-1-bb"))

    with store._session_factory() as db:
        keys = list(db.scalars(select(JobRecord.key)))
    assert keys == ["job:job-1-bb"]

    doc = json.loads(await store.document("job-1-bb"))
    assert doc["id"] == "job-1-bb"
    assert doc["status"] == "PENDING"


@pytest.mark.asyncio
async def test_list_all_is_oldest_first(tmp_path):
    store = _make_store(tmp_path)
    await store.put(_job("job-1-cc", created_at=T0 + timedelta(minutes=2)))
    await store.put(_job("job-1-aa", created_at=T0))
    await store.put(_job("job-2-bb", owner=2, created_at=T0 + timedelta(minutes=1)))

    ids = [j.id for j in await store.list_all()]
    assert ids == ["job-1-aa", "job-2-bb", "job-1-cc"]


@pytest.mark.asyncio
async def test_list_for_owner_filters(tmp_path):
    store = _make_store(tmp_path)
    await store.put(_job("job-1-aa"))
    await store.put(_job("job-2-bb", owner=2))

    assert [j.id for j in await store.list_for_owner(2)] == ["job-2-bb"]


@pytest.mark.asyncio
async def test_claim_moves_status(tmp_path):
    store = _make_store(tmp_path)
    await store.put(_job())

    assert await store.claim("job-1-aa", JobStatus.PENDING, JobStatus.PROCESSING)
    loaded = await store.get("job-1-aa")
    assert loaded.status is JobStatus.PROCESSING


@pytest.mark.asyncio
async def test_claim_fails_on_status_mismatch(tmp_path):
    store = _make_store(tmp_path)
    await store.put(_job(status=JobStatus.READY))

    assert not await store.claim("job-1-aa", JobStatus.PENDING, JobStatus.PROCESSING)
    assert (await store.get("job-1-aa")).status is JobStatus.READY


@pytest.mark.asyncio
async def test_claim_unknown_job_fails(tmp_path):
    store = _make_store(tmp_path)
    assert not await store.claim("job-9-zz", JobStatus.PENDING, JobStatus.PROCESSING)


@pytest.mark.asyncio
async def test_concurrent_claims_have_one_winner(tmp_path):
    store = _make_store(tmp_path)
    await store.put(_job())

    results = await asyncio.gather(
        *[store.claim("job-1-aa", JobStatus.PENDING, JobStatus.PROCESSING) for _ in range(5)]
    )
    assert results.count(True) == 1
    assert (await store.get("job-1-aa")).status is JobStatus.PROCESSING


@pytest.mark.asyncio
async def test_put_if_unchanged_writes_over_the_copy_it_read(tmp_path):
    store = _make_store(tmp_path)
    await store.put(_job(status=JobStatus.READY, temp_asset_url="https://blob.example/a.mp4"))
    read = await store.get("job-1-aa")

    archived = read.model_copy(update={"status": JobStatus.ARCHIVED, "temp_asset_url": None})
    assert await store.put_if_unchanged(archived, read)

    loaded = await store.get("job-1-aa")
    assert loaded.status is JobStatus.ARCHIVED
    assert loaded.temp_asset_url is None
    with store._session_factory() as db:
        assert db.get(JobRecord, "job:job-1-aa").status == "ARCHIVED"


@pytest.mark.asyncio
async def test_put_if_unchanged_refuses_a_stale_copy(tmp_path):
    store = _make_store(tmp_path)
    await store.put(_job(status=JobStatus.READY, temp_asset_url="https://blob.example/a.mp4"))
    stale = await store.get("job-1-aa")
    await store.put(stale.model_copy(update={"status": JobStatus.ARCHIVED, "temp_asset_url": None}))
    before = await store.document("job-1-aa")

    revived = stale.model_copy(update={"share_reference": "https://warpcast.com/alice/0x1"})
    assert not await store.put_if_unchanged(revived, stale)
    assert await store.document("job-1-aa") == before


@pytest.mark.asyncio
async def test_put_if_unchanged_unknown_job_fails(tmp_path):
    store = _make_store(tmp_path)
    job = _job("job-9-zz")
    assert not await store.put_if_unchanged(job, job)
    assert await store.get("job-9-zz") is None


class _NonAtomicStore(SqlJobStore):
    supports_atomic_claim = False


@pytest.mark.asyncio
async def test_replace_if_unchanged_without_atomic_support(tmp_path):
    atomic = _make_store(tmp_path)
    store = _NonAtomicStore(atomic._session_factory)
    await store.put(_job())
    read = await store.get("job-1-aa")
    processing = read.model_copy(update={"status": JobStatus.PROCESSING})

    assert await replace_if_unchanged(store, processing, read)
    assert not await replace_if_unchanged(store, read.model_copy(update={"prompt": "x" * 20}), read)
    assert (await store.get("job-1-aa")).status is JobStatus.PROCESSING
