from __future__ import annotations

import asyncio
import logging
import os
import shutil
from collections.abc import Collection
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError

from attachkit.core.config import Settings, get_settings
from attachkit.features.shared.filenames import strip_trim_token

from .errors import TranscodeError
from .types import StagedFile

logger = logging.getLogger(__name__)

_TRANSCODE_EXTENSIONS = {"mov", "qt", "m4v"}
_STDERR_TAIL_LIMIT = 2_000
_TRANSPARENT_MODES = {"RGBA", "LA", "P"}
_NORMALIZED_DIR = ".normalized"


def _trim_tail(value: str, *, limit: int = _STDERR_TAIL_LIMIT) -> str:
    if len(value) <= limit:
        return value
    return f"...{value[-limit:]}"


def _flatten_to_rgb(image: Image.Image) -> Image.Image:
    if image.mode in _TRANSPARENT_MODES:
        if image.mode == "P":
            image = image.convert("RGBA")
        background = Image.new("RGB", image.size, (255, 255, 255))
        background.paste(image, mask=image.split()[-1])
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def _remove_if_exists(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.warning("Could not remove %s", path, exc_info=True)


class Normalizer:
    def __init__(self, *, settings: Settings | None = None):
        self._settings = settings or get_settings()

    def image_target(self, staged: StagedFile, *, reserved: Collection[str] = ()) -> Path:
        target = staged.path.with_name(f"{staged.stem}.jpg")
        if target == staged.path or target.name not in reserved:
            return target
        # Another staged file owns "<stem>.jpg"; keep the stem but move out of its way.
        return staged.path.parent / _NORMALIZED_DIR / staged.name / target.name

    def normalize_image(self, staged: StagedFile, *, reserved: Collection[str] = ()) -> StagedFile:
        """Re-encode a decodable raster image as an upright JPEG.

        The output lands at ``<stem>.jpg`` beside the source unless that name is
        in ``reserved``. Files that Pillow cannot decode are returned unchanged.
        The source is only removed once the JPEG is fully written.
        """
        try:
            with Image.open(staged.path) as source:
                source.load()
                upright = ImageOps.exif_transpose(source)
                rgb = _flatten_to_rgb(upright)
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError):
            return staged

        target = self.image_target(staged, reserved=reserved)
        partial = target.with_name(f"{target.name}.partial")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            # Saving without exif/icc arguments drops the orientation tag along with the rest of the metadata.
            rgb.save(partial, "JPEG", quality=self._settings.jpeg_quality, subsampling=0)
            os.replace(partial, target)
        except (OSError, ValueError):
            _remove_if_exists(partial)
            raise
        if target != staged.path:
            _remove_if_exists(staged.path)
        logger.debug("Normalized image %s -> %s", staged.name, target)
        return staged.replaced_by(target)

    def needs_transcode(self, staged: StagedFile) -> bool:
        return staged.extension in _TRANSCODE_EXTENSIONS

    def transcode_dir(self, run_id: str) -> Path:
        return Path(self._settings.transcode_root) / run_id

    def discard_transcodes(self, run_id: str) -> None:
        directory = self.transcode_dir(run_id)
        if not directory.exists():
            return
        shutil.rmtree(directory, ignore_errors=True)

    def _ffmpeg_command(self, source: Path, target: Path) -> list[str]:
        return [
            self._settings.ffmpeg_bin,
            "-nostdin",
            "-hide_banner",
            "-loglevel",
            "error",
            "-y",
            "-i",
            str(source),
            "-map",
            "0",
            "-c",
            "copy",
            "-movflags",
            "+faststart",
            "-f",
            "mp4",
            str(target),
        ]

    async def normalize_video(self, staged: StagedFile, *, run_id: str) -> StagedFile | None:
        """Remux a non-MP4 movie container into MP4 without re-encoding.

        Returns ``None`` when the transcoder was terminated by a signal; that is
        a cancellation, not a failure. Raises ``TranscodeError`` otherwise.
        """
        if not self.needs_transcode(staged):
            return staged

        # One directory per staged file: "clip.mov" and "clip.m4v" both become "clip.mp4".
        output_dir = self.transcode_dir(run_id) / staged.name
        target = output_dir / f"{strip_trim_token(staged.stem)}.mp4"
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise TranscodeError(f"Could not prepare video conversion output: {exc}") from exc
        _remove_if_exists(target)

        try:
            process = await asyncio.create_subprocess_exec(
                *self._ffmpeg_command(staged.path, target),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TranscodeError(f"Video converter is unavailable: {exc}") from exc

        try:
            _stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self._settings.transcode_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            _remove_if_exists(target)
            raise TranscodeError(f"Video conversion of '{staged.source_name}' timed out.") from exc
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            _remove_if_exists(target)
            raise

        if process.returncode is not None and process.returncode < 0:
            logger.info("Video conversion of '%s' was cancelled", staged.source_name)
            _remove_if_exists(target)
            return None

        if process.returncode != 0:
            _remove_if_exists(target)
            detail = _trim_tail((stderr or b"").decode("utf-8", errors="replace").strip())
            message = detail or f"Video converter exited with code {process.returncode}."
            raise TranscodeError(message)

        if not target.exists():
            raise TranscodeError(f"Video conversion of '{staged.source_name}' produced no output.")

        logger.debug("Transcoded %s -> %s", staged.name, target)
        return staged.replaced_by(target)
