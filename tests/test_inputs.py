"""Tests for source-image resolution."""

from pathlib import Path
from unittest.mock import patch

import httpx
import pytest
from PIL import Image

from fora.services.errors import InputResolutionError
from fora.services.inputs import (
    PLACEHOLDER_NAME,
    download_input,
    is_remote,
    resolve_input,
)

_RealAsyncClient = httpx.AsyncClient


def _client_with(handler):
    """Patch target that builds real clients on a mock transport."""

    def factory(**kwargs):
        return _RealAsyncClient(transport=httpx.MockTransport(handler), **kwargs)

    return factory


def test_is_remote():
    assert is_remote("https://img.example/a.png")
    assert is_remote("http://img.example/a.png")
    assert not is_remote("/tmp/a.png")
    assert not is_remote("file:///tmp/a.png")


@pytest.mark.asyncio
async def test_missing_reference_uses_placeholder(tmp_path):
    path = await resolve_input(None, tmp_path, "job-1-aa")

    assert path == tmp_path / PLACEHOLDER_NAME
    with Image.open(path) as img:
        assert img.size == (512, 512)

    # Reused, not regenerated
    mtime = path.stat().st_mtime_ns
    assert await resolve_input("", tmp_path, "job-1-bb") == path
    assert path.stat().st_mtime_ns == mtime


@pytest.mark.asyncio
async def test_local_reference_is_used_as_is(tmp_path):
    src = tmp_path / "mine.png"
    src.write_bytes(b"png")
    assert await resolve_input(str(src), tmp_path / "work", "job-1-aa") == src


@pytest.mark.asyncio
async def test_remote_reference_is_downloaded(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == "https://img.example/pics/cat.jpg"
        return httpx.Response(200, content=b"jpeg-bytes")

    with patch("fora.services.inputs.httpx.AsyncClient", side_effect=_client_with(handler)):
        path = await resolve_input("https://img.example/pics/cat.jpg", tmp_path, "job-1-aa")

    assert path == tmp_path / "job-1-aa-input.jpg"
    assert path.read_bytes() == b"jpeg-bytes"


@pytest.mark.asyncio
async def test_download_failure_raises(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    with patch("fora.services.inputs.httpx.AsyncClient", side_effect=_client_with(handler)):
        with pytest.raises(InputResolutionError):
            await download_input("https://img.example/gone.png", Path(tmp_path / "x.png"))

    assert not (tmp_path / "x.png").exists()
