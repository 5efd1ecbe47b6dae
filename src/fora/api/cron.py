"""Scheduler-triggered endpoints.

Implements:
  GET /api/process-pending   — one generation worker activation
  GET /api/cron/cleanup      — one archival sweep

Both require ``Authorization: Bearer <CRON_JOB_SECRET>``.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from fora.deps import require_cron_secret
from fora.services.archival import get_sweep
from fora.services.job_worker import get_worker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["cron"], dependencies=[Depends(require_cron_secret)])


@router.get("/process-pending")
async def process_pending() -> JSONResponse:
    try:
        result = await get_worker().process_one_pending_job()
    except Exception:
        logger.exception("Process pending job failed")
        return JSONResponse({"success": False, "message": "Processing failed"}, status_code=500)
    return JSONResponse(
        {"success": True, "result": {"outcome": result.outcome, "jobId": result.job_id}}
    )


@router.get("/cron/cleanup")
async def cleanup() -> JSONResponse:
    logger.info("Blob cleanup initiated")
    try:
        result = await get_sweep().run()
    except Exception:
        logger.exception("Cleanup sweep failed")
        return JSONResponse(
            {"success": False, "message": "Cron Job execution failed."}, status_code=500
        )
    return JSONResponse(
        {
            "success": True,
            "message": f"Cleanup complete. {len(result.archived)} assets archived.",
            "archived": result.archived,
            "deleteFailures": result.delete_failures,
        }
    )
