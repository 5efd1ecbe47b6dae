"""Blob storage for rendered assets (the temporary staging area).

Two backends share one interface:

* ``LocalBlobStorage`` writes to ``{base_path}/blobs/{key}`` and serves the
  file at ``{public_base_url}/api/blobs/{key}``.  Used in development and
  tests.
* ``VercelBlobStorage`` uploads to Vercel Blob over HTTP and returns the
  public blob URL.  Selected when ``BLOB_READ_WRITE_TOKEN`` is set.

Keys are chosen by the caller.  The worker derives them from the job id, so
uploading the same job twice overwrites the same object.
"""

import asyncio
import functools
import logging
import re
from pathlib import Path
from typing import Protocol

import httpx

from fora.config import settings
from fora.services.errors import BlobStorageError

logger = logging.getLogger(__name__)

_CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}


def content_type_for(key: str) -> str:
    return _CONTENT_TYPES.get(Path(key).suffix.lower(), "application/octet-stream")


def _read_source(source: Path | bytes) -> bytes:
    if isinstance(source, bytes):
        return source
    return Path(source).read_bytes()


class BlobStore(Protocol):
    async def upload(self, key: str, source: Path | bytes) -> str: ...

    async def delete(self, url: str) -> None: ...


class LocalBlobStorage:
    """Disk-backed blob store with stable public URLs."""

    URL_PATH_PREFIX = "/api/blobs/"

    def __init__(
        self, base_path: str | None = None, public_base_url: str | None = None
    ) -> None:
        self._base = Path(base_path or settings.storage_path) / "blobs"
        self._public_base_url = (public_base_url or settings.public_base_url).rstrip("/")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _write(self, dest: Path, data: bytes) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(self, key: str) -> Path | None:
        """Return the on-disk path for ``key``, or None if it escapes the root."""
        path = (self._base / key).resolve()
        if not path.is_relative_to(self._base.resolve()):
            return None
        return path

    def url_to_key(self, url: str) -> str | None:
        """Convert a public blob URL back to its key (None if not ours)."""
        prefix = self._public_base_url + self.URL_PATH_PREFIX
        if not url.startswith(prefix):
            return None
        return url[len(prefix):]

    async def upload(self, key: str, source: Path | bytes) -> str:
        dest = self.resolve(key)
        if dest is None:
            raise BlobStorageError(f"Invalid blob key: {key}")
        loop = asyncio.get_running_loop()
        try:
            data = await loop.run_in_executor(None, _read_source, source)
            await loop.run_in_executor(None, functools.partial(self._write, dest, data))
        except OSError as exc:
            raise BlobStorageError(f"Failed to store blob {key}: {exc}") from exc
        logger.debug("Stored %d bytes → %s", len(data), dest)
        return f"{self._public_base_url}{self.URL_PATH_PREFIX}{key}"

    async def delete(self, url: str) -> None:
        key = self.url_to_key(url)
        path = self.resolve(key) if key else None
        if path is None:
            raise BlobStorageError(f"Not a local blob URL: {url}")
        try:
            await asyncio.get_running_loop().run_in_executor(None, path.unlink)
        except FileNotFoundError as exc:
            raise BlobStorageError(f"Blob already deleted: {url}") from exc
        logger.info("Deleted blob %s", key)


class VercelBlobStorage:
    """Vercel Blob HTTP backend.

    Uploads use a fixed pathname (no random suffix, overwrite allowed) so the
    URL is reproducible from the key.
    """

    API_VERSION = "7"

    def __init__(
        self,
        token: str,
        api_url: str | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = (api_url or settings.blob_api_url).rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {token}",
            "x-api-version": self.API_VERSION,
        }

    async def upload(self, key: str, source: Path | bytes) -> str:
        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(None, _read_source, source)
        headers = {
            **self._headers,
            "x-content-type": content_type_for(key),
            "x-add-random-suffix": "0",
            "x-allow-overwrite": "1",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.put(f"{self._api_url}/{key}", content=data, headers=headers)
                if not resp.is_success:
                    logger.error(
                        "Blob upload error %s for %s: %s",
                        resp.status_code,
                        key,
                        resp.text[:500],
                    )
                resp.raise_for_status()
                url = resp.json()["url"]
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            raise BlobStorageError(f"Failed to upload {key} to Vercel Blob") from exc
        logger.info("Blob uploaded: %s", url)
        return url

    async def delete(self, url: str) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(
                    f"{self._api_url}/delete",
                    json={"urls": [url]},
                    headers=self._headers,
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise BlobStorageError(f"Failed to delete blob {url}") from exc
        logger.info("Blob deleted: %s", url)


# Built on first use so tests can override settings first.
_blob_store: BlobStore | None = None


def get_blob_store() -> BlobStore:
    """Return the configured blob backend."""
    global _blob_store
    if _blob_store is None:
        if settings.blob_read_write_token:
            _blob_store = VercelBlobStorage(
                settings.blob_read_write_token,
                timeout=settings.upload_timeout_seconds,
            )
        else:
            _blob_store = LocalBlobStorage()
    return _blob_store


# ---------------------------------------------------------------------------
# Asset naming
# ---------------------------------------------------------------------------

ASSET_KEY_PREFIX = "pfp-animation-"

# Matches the job id inside any temporary-asset URL, local or Vercel.
ASSET_URL_PATTERN = re.compile(r"/pfp-animation-(job-\d+-[0-9a-f]+)\.mp4(?:$|\?)")


def asset_key_for_job(job_id: str) -> str:
    """Blob key for a job's rendered video.  Always derivable from the id."""
    return f"{ASSET_KEY_PREFIX}{job_id}.mp4"


def job_id_from_asset_url(url: str) -> str | None:
    match = ASSET_URL_PATTERN.search(url)
    return match.group(1) if match else None
