"""Manual notification trigger for checking push setup.

Implements:
  POST /api/test-notification   — body ``{fid, jobTitle?, jobBody?, jobDeepLink?}``
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from fora.services.notifier import get_notifier

router = APIRouter(prefix="/api", tags=["notifications"])


class TestNotificationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    fid: int | None = None
    job_title: str = Field(default="Test Notification from Fora", alias="jobTitle")
    job_body: str = Field(
        default="This is a test notification sent via the Fora mini app.", alias="jobBody"
    )
    job_deep_link: str = Field(default="/", alias="jobDeepLink")


@router.post("/test-notification")
async def test_notification(body: TestNotificationRequest) -> JSONResponse:
    if not body.fid:
        return JSONResponse({"error": "Missing or invalid fid"}, status_code=400)

    delivered = await get_notifier().notify(
        body.fid, body.job_title, body.job_body, body.job_deep_link
    )
    if not delivered:
        return JSONResponse({"error": "Failed to send notification"}, status_code=500)
    return JSONResponse({"success": True})
