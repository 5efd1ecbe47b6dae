"""Source-image upload.

Implements:
  POST /api/upload   — multipart ``file``; stores it and returns its URL
                       for use as ``image_url`` on /api/generate
"""

import logging
import re
import time

from fastapi import APIRouter, File, UploadFile
from fastapi.responses import JSONResponse

from fora.services.blob_storage import get_blob_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["upload"])

_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


@router.post("/upload")
async def upload(file: UploadFile | None = File(default=None)) -> JSONResponse:
    if file is None:
        return JSONResponse({"error": "No file provided"}, status_code=400)

    data = await file.read()
    if not data:
        return JSONResponse({"error": "No file provided"}, status_code=400)
    if len(data) > _MAX_UPLOAD_BYTES:
        return JSONResponse({"error": "File too large"}, status_code=413)

    safe_name = _UNSAFE_CHARS.sub("_", file.filename or "file")
    key = f"upload-{int(time.time() * 1000)}-{safe_name}"
    try:
        url = await get_blob_store().upload(key, data)
    except Exception:
        logger.exception("Upload of %s failed", key)
        return JSONResponse({"error": "Upload failed"}, status_code=500)
    return JSONResponse({"success": True, "url": url})
