"""Webhook API — Neynar cast events that prove a video was shared.

Implements:
  POST /api/webhook
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from fora.services.reconciler import (
    OUTCOME_ERROR,
    OUTCOME_REJECTED,
    SIGNATURE_HEADER,
    get_reconciler,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["webhook"])


@router.post("/webhook")
async def webhook(request: Request) -> JSONResponse:
    """Verify and reconcile one event.

    401 on a bad signature, 500 when no secret is configured or the store
    failed (so the sender redelivers), 200 for everything else including
    events that reference unknown jobs.
    """
    reconciler = get_reconciler()
    if not reconciler.configured:
        logger.error("NEYNAR_WEBHOOK_SECRET is not set")
        return JSONResponse({"message": "Internal Server Error"}, status_code=500)

    raw_body = await request.body()
    result = await reconciler.handle(raw_body, request.headers.get(SIGNATURE_HEADER))

    if result.outcome == OUTCOME_REJECTED:
        return JSONResponse({"message": "Unauthorized"}, status_code=401)
    if result.outcome == OUTCOME_ERROR:
        return JSONResponse({"message": result.message}, status_code=500)
    return JSONResponse(
        {
            "success": True,
            "outcome": result.outcome,
            "jobId": result.job_id,
            "message": result.message,
        }
    )
