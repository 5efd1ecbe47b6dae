"""Serves blobs held by the local storage backend.

Stable URL pattern: /api/blobs/{key}
Only active when the local backend is in use; with Vercel Blob the asset
URLs point straight at the Vercel CDN.
"""

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse

from fora.services.blob_storage import LocalBlobStorage, content_type_for, get_blob_store

router = APIRouter(prefix="/api/blobs", tags=["blobs"])


@router.get("/{key:path}")
async def serve_blob(key: str) -> FileResponse:
    storage = get_blob_store()
    if not isinstance(storage, LocalBlobStorage):
        raise HTTPException(status_code=404, detail="Not found")

    # resolve() returns None for keys that escape the storage root
    path = storage.resolve(key)
    if path is None or not path.is_file():
        raise HTTPException(status_code=404, detail="Not found")
    return FileResponse(path, media_type=content_type_for(key))
