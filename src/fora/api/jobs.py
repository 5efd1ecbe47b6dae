"""Jobs API — read-only status view for a user.

Implements:
  GET /api/jobs?fid=<fid>   — the user's jobs grouped by status, newest first
  GET /api/jobs/{job_id}    — a single job
"""

import logging

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse

from fora.services.job_service import JobService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])
_job_service = JobService()


@router.get("")
async def list_jobs(fid: str | None = Query(default=None)) -> JSONResponse:
    if not fid:
        return JSONResponse({"error": "FID parameter is required."}, status_code=400)
    try:
        owner = int(fid)
    except ValueError:
        return JSONResponse({"error": "Invalid FID format."}, status_code=400)

    try:
        grouped = await _job_service.grouped_for_owner(owner)
    except Exception:
        logger.exception("Error fetching jobs for fid %s", owner)
        return JSONResponse({"error": "Failed to retrieve jobs."}, status_code=500)

    return JSONResponse(
        {
            "success": True,
            "groupedJobs": {
                status: [job.model_dump(mode="json") for job in jobs]
                for status, jobs in grouped.items()
            },
        }
    )


@router.get("/{job_id}")
async def get_job(job_id: str) -> dict:
    job = await _job_service.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.model_dump(mode="json")
