"""Source-image resolution for the generation worker.

A job's ``input_reference`` may be:

* an ``http(s)://`` URL — downloaded into the work directory;
* anything else non-empty — treated as a local path and used as is;
* missing — replaced by a generated placeholder image.
"""

import asyncio
import logging
from pathlib import Path
from urllib.parse import urlparse

import httpx
from PIL import Image, ImageDraw

from fora.config import settings
from fora.services.errors import InputResolutionError

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = "placeholder-input.png"
_PLACEHOLDER_SIZE = (512, 512)


def is_remote(reference: str) -> bool:
    return urlparse(reference).scheme in ("http", "https")


def _write_placeholder(path: Path) -> None:
    width, height = _PLACEHOLDER_SIZE
    img = Image.new("RGB", _PLACEHOLDER_SIZE)
    draw = ImageDraw.Draw(img)
    # Vertical purple gradient
    for y in range(height):
        shade = int(60 + 120 * y / height)
        draw.line([(0, y), (width, y)], fill=(shade, 40, 200))
    path.parent.mkdir(parents=True, exist_ok=True)
    img.save(path, format="PNG")


async def placeholder_input(work_dir: Path) -> Path:
    """Return the placeholder image, creating it on first use."""
    path = Path(work_dir) / PLACEHOLDER_NAME
    if not path.exists():
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _write_placeholder, path)
        logger.info("Created placeholder input %s", path)
    return path


async def download_input(url: str, dest: Path, timeout: float | None = None) -> Path:
    """Download ``url`` to ``dest``.  Raises ``InputResolutionError``."""
    timeout = timeout or settings.download_timeout_seconds
    logger.debug("Downloading input %s", url)
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            resp = await client.get(url)
            if not resp.is_success:
                logger.error("Input download error %s for %s", resp.status_code, url)
            resp.raise_for_status()
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(resp.content)
    except httpx.HTTPError as exc:
        raise InputResolutionError(f"Failed to download {url}: {exc}") from exc
    return dest


async def resolve_input(
    input_reference: str | None, work_dir: Path, job_id: str
) -> Path:
    """Return a local image path to render from."""
    if input_reference and is_remote(input_reference):
        suffix = Path(urlparse(input_reference).path).suffix or ".img"
        return await download_input(input_reference, Path(work_dir) / f"{job_id}-input{suffix}")
    if input_reference:
        return Path(input_reference)
    return await placeholder_input(work_dir)
