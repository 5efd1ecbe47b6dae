"""Video renderer — turns a still image into a short zoom animation.

``FfmpegRenderer`` shells out to ffmpeg's ``zoompan`` filter: the input is
looped at 25 fps while the zoom factor grows a little every frame, producing
a 512x512 H.264 MP4.  When ffmpeg is not installed it copies a configured
fallback clip instead, so the rest of the pipeline can still be exercised in
development.  With neither available it raises ``RenderError``.
"""

import asyncio
import logging
import shutil
import uuid
from pathlib import Path
from typing import Protocol

from fora.config import settings
from fora.services.errors import RenderError

logger = logging.getLogger(__name__)

_FPS = 25
_FRAME_SIZE = "512x512"
_ZOOM_STEP = "zoom+0.002"


class Renderer(Protocol):
    async def render(
        self, input_path: Path, output_dir: Path, duration_seconds: int
    ) -> Path: ...


def build_ffmpeg_args(
    ffmpeg_bin: str, input_path: Path, output_path: Path, duration_seconds: int
) -> list[str]:
    """Return the ffmpeg argv for a zoompan animation of ``input_path``."""
    frames = duration_seconds * _FPS
    return [
        ffmpeg_bin,
        "-y",
        "-loop", "1",
        "-i", str(input_path),
        "-filter_complex",
        f"zoompan=z='{_ZOOM_STEP}':d={frames}:s={_FRAME_SIZE},format=yuv420p",
        "-c:v", "libx264",
        "-t", str(duration_seconds),
        "-r", str(_FPS),
        "-pix_fmt", "yuv420p",
        str(output_path),
    ]


class FfmpegRenderer:
    def __init__(
        self,
        ffmpeg_bin: str | None = None,
        fallback_video: str | Path | None = None,
    ) -> None:
        self._ffmpeg_bin = ffmpeg_bin or settings.ffmpeg_bin
        self._fallback_video = Path(fallback_video or settings.fallback_video_path)

    def is_available(self) -> bool:
        return shutil.which(self._ffmpeg_bin) is not None

    async def render(
        self, input_path: Path, output_dir: Path, duration_seconds: int = 4
    ) -> Path:
        input_path = Path(input_path)
        if not input_path.exists():
            raise RenderError(f"Input file not found: {input_path}")

        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"pfp-anim-{uuid.uuid4().hex[:12]}.mp4"

        if not self.is_available():
            if self._fallback_video.exists():
                logger.warning(
                    "ffmpeg not found, using fallback clip %s", self._fallback_video
                )
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(
                    None, shutil.copyfile, self._fallback_video, output_path
                )
                return output_path
            raise RenderError("ffmpeg not available and no fallback video found")

        args = build_ffmpeg_args(self._ffmpeg_bin, input_path, output_path, duration_seconds)
        logger.info("Rendering %s → %s", input_path.name, output_path.name)

        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise RenderError(f"Could not start ffmpeg: {exc}") from exc

        try:
            _, stderr = await proc.communicate()
        except asyncio.CancelledError:
            # Timeout from the caller: don't leave ffmpeg running.
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            tail = stderr.decode(errors="replace")[-800:]
            raise RenderError(f"ffmpeg exited with code {proc.returncode}:\n{tail}")
        return output_path


_renderer: Renderer | None = None


def get_renderer() -> Renderer:
    global _renderer
    if _renderer is None:
        _renderer = FfmpegRenderer()
    return _renderer
