"""Intake API — submit a prompt for animation.

Implements:
  POST /api/generate   — create a PENDING job and wake the worker
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from fora.config import settings
from fora.services.errors import JobValidationError
from fora.services.job_service import JobService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["generate"])
_job_service = JobService()


class GenerateUser(BaseModel):
    fid: int | None = None


class GenerateRequest(BaseModel):
    prompt: str | None = None
    user: GenerateUser | None = None
    image_url: str | None = None


@router.post("/generate", status_code=202)
async def generate(body: GenerateRequest, request: Request) -> JSONResponse:
    """Accept a generation request.

    Returns 400 for a missing/short prompt, 401 when no user fid is present,
    and 202 with the new job id otherwise.  Rendering happens later in the
    worker.
    """
    min_length = settings.min_prompt_length
    if not body.prompt or len(body.prompt.strip()) < min_length:
        return JSONResponse(
            {"error": f"A prompt of at least {min_length} characters is required."},
            status_code=400,
        )
    if not body.user or not body.user.fid:
        return JSONResponse(
            {"error": "Farcaster user authentication failed."}, status_code=401
        )

    try:
        job = await _job_service.create_job(
            body.user.fid, body.prompt, input_reference=body.image_url
        )
    except JobValidationError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)
    except Exception:
        logger.exception("Error creating generation job")
        return JSONResponse({"error": "Failed to submit generation job."}, status_code=500)

    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.nudge()

    return JSONResponse(
        {"success": True, "message": "Generation request submitted.", "jobId": job.id},
        status_code=202,
    )
