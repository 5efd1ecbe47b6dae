"""FastAPI dependency functions shared across routers."""

import hmac
import logging

from fastapi import HTTPException, Request

from fora.config import settings

logger = logging.getLogger(__name__)


def require_cron_secret(request: Request) -> None:
    """Guard scheduler-triggered endpoints with ``Authorization: Bearer <secret>``.

    An unset ``CRON_JOB_SECRET`` locks the endpoints rather than opening them.
    """
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    expected = settings.cron_job_secret

    if (
        not expected
        or scheme.lower() != "bearer"
        or not hmac.compare_digest(token.strip().encode(), expected.encode())
    ):
        logger.warning(
            "Rejected scheduler call",
            extra={"path": request.url.path, "has_auth": bool(header)},
        )
        raise HTTPException(status_code=401, detail="Unauthorized Cron Job Access")
