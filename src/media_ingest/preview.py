"""Thumbnail and scrub-frame generation for images, video, audio and archives."""

from __future__ import annotations

import asyncio
import inspect
import io
import math
import os
import shutil
import subprocess
import zipfile
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

from PIL import Image, ImageOps

from .artifacts import ArtifactKind, frame_name
from .errors import ArtifactStoreError
from .media_types import IMAGE_EXTENSIONS, classify_extension
from .models import MediaType, PreviewArtifact, RegenerateResult
from .progress import ProgressReporter

if TYPE_CHECKING:
    import logging

    from .artifacts import ArtifactStore
    from .config import IngestConfig
    from .models import RegenerateItem

# WebP quality per artifact kind
WEBP_QUALITY: dict[ArtifactKind, int] = {
    ArtifactKind.IMAGE: 82,
    ArtifactKind.VIDEO: 75,
    ArtifactKind.AUDIO: 80,
    ArtifactKind.ARCHIVE: 80,
    ArtifactKind.PREVIEW: 40,
}

# Video thumbnails are taken at this fraction of the duration
THUMBNAIL_POSITION = 0.10

# Height bound passed to Image.thumbnail so only the width constrains the resize
_UNBOUNDED = 65535

# Pillow signals undecodable input with any of these
_DECODE_ERRORS = (OSError, ValueError, SyntaxError, EOFError, Image.DecompressionBombError, zipfile.BadZipFile)

PersistCallback = Callable[[str, Path], Any]


def preview_timestamps(duration: float, frame_count: int) -> list[float]:
    """Evenly spaced sample times across 5%-95% of ``duration``."""
    if frame_count <= 1:
        return [duration * 0.5]
    step = 90.0 / (frame_count - 1)
    return [duration * (5.0 + i * step) / 100.0 for i in range(frame_count)]


def format_duration(seconds: float) -> str:
    """Format seconds as ``m:ss``."""
    total = int(seconds) if math.isfinite(seconds) and seconds > 0 else 0
    minutes, secs = divmod(total, 60)
    return f"{minutes}:{secs:02d}"


def _prepare(img: Image.Image) -> Image.Image:
    frame = ImageOps.exif_transpose(img)
    if frame.mode in ("RGB", "RGBA"):
        return frame
    has_alpha = "A" in frame.getbands() or "transparency" in frame.info
    return frame.convert("RGBA" if has_alpha else "RGB")


def render_webp(source: Path | bytes, dest: Path, width: int, quality: int) -> None:
    """Decode ``source``, shrink it to at most ``width`` pixels wide and write WebP.

    The image is written to a temporary sibling and moved into place, so
    ``dest`` only ever holds a complete file.
    """
    stream = io.BytesIO(source) if isinstance(source, bytes) else source
    with Image.open(stream) as img:
        frame = _prepare(img)
        frame.thumbnail((width, _UNBOUNDED), Image.Resampling.LANCZOS)
        tmp = dest.with_name(f"{dest.name}.tmp")
        try:
            frame.save(tmp, "WEBP", quality=quality)
            os.replace(tmp, dest)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise


def first_archive_image(path: Path) -> bytes | None:
    """Return the bytes of the first image member of a zip/cbz archive, by name."""
    if not zipfile.is_zipfile(path):
        return None
    raster = IMAGE_EXTENSIONS - {".svg"}
    with zipfile.ZipFile(path) as archive:
        names = sorted(
            info.filename
            for info in archive.infolist()
            if not info.is_dir() and Path(info.filename).suffix.lower() in raster
        )
        if not names:
            return None
        return archive.read(names[0])


def frame_count(path: Path) -> int:
    """Number of frames Pillow finds in a raster file."""
    with Image.open(path) as img:
        return int(getattr(img, "n_frames", 1))


class PreviewGenerator:
    """Produces preview artifacts and swaps them into the catalog safely."""

    def __init__(self, config: IngestConfig, store: ArtifactStore, logger: logging.Logger) -> None:
        """Initialize the generator.

        Args:
            config: Ingestion configuration.
            store: Artifact directory layout.
            logger: Logger instance.

        """
        self.config = config
        self.store = store
        self.logger = logger

    # ------------------------------------------------------------------
    # External tools
    # ------------------------------------------------------------------
    async def _run_tool(self, args: Sequence[str], *, text: bool = False) -> subprocess.CompletedProcess | None:
        """Run ffmpeg/ffprobe in a worker thread. Returns None if it cannot run."""
        try:
            return await asyncio.to_thread(
                subprocess.run,
                list(args),
                capture_output=True,
                text=text,
                check=False,
                timeout=self.config.tool_timeout,
            )
        except subprocess.TimeoutExpired:
            self.logger.warning("%s timed out after %.0fs", args[0], self.config.tool_timeout)
        except OSError as e:
            self.logger.error("Cannot run %s: %s", args[0], e)
        return None

    async def probe_duration(self, path: Path) -> float | None:
        """Container duration in seconds; 0.0 when unknown, None when the probe fails."""
        completed = await self._run_tool(
            [
                self.config.ffprobe_path,
                "-v",
                "error",
                "-show_entries",
                "format=duration",
                "-of",
                "csv=p=0",
                str(path),
            ],
            text=True,
        )
        if completed is None or completed.returncode != 0:
            return None
        output = (completed.stdout or "").strip()
        try:
            value = float(output.splitlines()[0])
        except (ValueError, IndexError):
            return 0.0
        return value if math.isfinite(value) and value > 0 else 0.0

    async def _extract_frame(self, path: Path, timestamp: float | None) -> bytes | None:
        """Grab a single frame (or embedded cover art when ``timestamp`` is None) as PNG."""
        args = [self.config.ffmpeg_path, "-hide_banner", "-loglevel", "error"]
        if timestamp:
            args.extend(["-ss", f"{timestamp:.3f}"])
        args.extend(["-i", str(path)])
        if timestamp is None:
            args.append("-an")
        args.extend(["-threads", "1", "-frames:v", "1", "-f", "image2pipe", "-vcodec", "png", "pipe:1"])

        completed = await self._run_tool(args)
        if completed is None or completed.returncode != 0 or not completed.stdout:
            return None
        return completed.stdout

    # ------------------------------------------------------------------
    # Single-file operations
    # ------------------------------------------------------------------
    async def generate_thumbnail(
        self,
        path: Path,
        resolution: int | None = None,
        *,
        media_type: MediaType | None = None,
    ) -> Path | None:
        """Write a resized WebP thumbnail for a media file.

        Args:
            path: Source media file.
            resolution: Maximum thumbnail width. Defaults to config.
            media_type: Classification, when already known (e.g. sniffed by signature).

        Returns:
            Path of the new artifact, or None if the source could not be decoded.

        Raises:
            ArtifactStoreError: The artifact directory is unusable.

        """
        media_type = media_type or classify_extension(path)
        width = resolution or self.config.thumbnail_resolution
        source: Path | bytes | None

        try:
            if media_type is MediaType.IMAGE:
                kind, source = ArtifactKind.IMAGE, path
            elif media_type is MediaType.VIDEO:
                duration = await self.probe_duration(path) or 0.0
                kind, source = ArtifactKind.VIDEO, await self._extract_frame(path, duration * THUMBNAIL_POSITION)
            elif media_type is MediaType.AUDIO:
                kind, source = ArtifactKind.AUDIO, await self._extract_frame(path, None)
            elif media_type is MediaType.ARCHIVE:
                kind, source = ArtifactKind.ARCHIVE, await asyncio.to_thread(first_archive_image, path)
            else:
                self.logger.debug("No thumbnail strategy for %s", path)
                return None
        except _DECODE_ERRORS as e:
            self.logger.warning("Cannot read %s for thumbnail: %s", path, e)
            return None

        if source is None:
            self.logger.debug("No frame or cover image in %s", path)
            return None

        dest = self.store.new_artifact_path(kind)
        try:
            await asyncio.to_thread(render_webp, source, dest, width, WEBP_QUALITY[kind])
        except _DECODE_ERRORS as e:
            self.logger.warning("Failed to generate thumbnail for %s: %s", path, e)
            return None

        self.logger.debug("Thumbnail written: %s -> %s", path.name, dest)
        return dest

    async def generate_preview_frames(self, path: Path, frame_count: int | None = None) -> str | None:
        """Write evenly spaced scrub frames for a video.

        Args:
            path: Source video.
            frame_count: Number of frames. Defaults to config (6).

        Returns:
            Comma-joined frame paths in timestamp order, or None when the
            video is shorter than a second or no frame could be extracted.

        """
        count = max(1, frame_count or self.config.preview_frame_count)
        duration = await self.probe_duration(path)
        if not duration or duration < 1:
            return None

        frames_dir = self.store.new_frames_dir()
        written: list[Path] = []
        for index, timestamp in enumerate(preview_timestamps(duration, count), start=1):
            data = await self._extract_frame(path, timestamp)
            if data is None:
                continue
            dest = frames_dir / frame_name(index)
            try:
                await asyncio.to_thread(
                    render_webp, data, dest, self.config.preview_frame_width, WEBP_QUALITY[ArtifactKind.PREVIEW]
                )
            except _DECODE_ERRORS as e:
                self.logger.debug("Frame %d of %s undecodable: %s", index, path.name, e)
                continue
            written.append(dest)

        if not written:
            self.logger.warning("No preview frames extracted from %s", path)
            await asyncio.to_thread(shutil.rmtree, frames_dir, True)
            return None

        return ",".join(str(p) for p in written)

    async def get_video_duration(self, path: Path) -> str:
        """Duration as ``m:ss``; ``""`` if the probe fails, ``"0:00"`` if unknown."""
        seconds = await self.probe_duration(path)
        if seconds is None:
            return ""
        return format_duration(seconds)

    async def check_is_animated(self, path: Path) -> bool:
        """True when the raster file holds more than one frame, whatever its extension."""
        try:
            return await asyncio.to_thread(frame_count, path) > 1
        except _DECODE_ERRORS:
            return False

    async def build_artifacts(self, path: Path, media_type: MediaType) -> PreviewArtifact:
        """Generate every preview field appropriate for a media type."""
        artifact = PreviewArtifact(thumbnail_path=await self.generate_thumbnail(path, media_type=media_type))

        if media_type is MediaType.VIDEO:
            artifact.preview_frames = await self.generate_preview_frames(path)
            artifact.duration = await self.get_video_duration(path)
        elif media_type is MediaType.IMAGE:
            artifact.is_animated = await self.check_is_animated(path)

        return artifact

    async def _delete_file(self, path: Path) -> bool:
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return True
        except OSError as e:
            self.logger.warning("Could not delete old artifact %s: %s", path, e)
            return False
        self.logger.debug("Deleted old artifact: %s", path)
        return True

    async def discard_artifact(self, old: PreviewArtifact, keep: PreviewArtifact | None = None) -> None:
        """Delete the files of a superseded artifact, sparing any still in ``keep``."""
        kept: set[Path] = set()
        if keep is not None:
            kept.update(keep.frame_paths)
            if keep.thumbnail_path:
                kept.add(keep.thumbnail_path)

        if old.thumbnail_path and old.thumbnail_path not in kept:
            await self._delete_file(old.thumbnail_path)

        frame_dirs: set[Path] = set()
        for frame in old.frame_paths:
            if frame in kept:
                continue
            await self._delete_file(frame)
            frame_dirs.add(frame.parent)

        for directory in frame_dirs:
            try:
                await asyncio.to_thread(directory.rmdir)
            except OSError:
                # Not empty or already gone
                continue

    # ------------------------------------------------------------------
    # Bulk regeneration
    # ------------------------------------------------------------------
    async def _regenerate_one(self, item: RegenerateItem, persist_callback: PersistCallback) -> bool:
        try:
            new_path = await self.generate_thumbnail(item.path)
        except ArtifactStoreError:
            raise
        except Exception:
            self.logger.exception("Thumbnail regeneration crashed for %s", item.path)
            return False

        if new_path is None:
            self.logger.warning("Regeneration failed, keeping old thumbnail: %s", item.path)
            return False

        try:
            outcome = persist_callback(item.file_id, new_path)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            # The new file stays behind as an orphan; the old one is still referenced
            self.logger.exception("Persisting new thumbnail failed for %s", item.file_id)
            return False

        if item.old_thumbnail and item.old_thumbnail != new_path:
            await self._delete_file(item.old_thumbnail)
        return True

    async def regenerate_all_thumbnails(
        self,
        items: Sequence[RegenerateItem],
        persist_callback: PersistCallback,
        on_progress: Callable[..., Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> RegenerateResult:
        """Rebuild thumbnails for many records.

        Each item runs generate -> persist -> delete-old, in that order, so the
        catalog never points at a deleted file. Items are independent and run
        with bounded concurrency.

        Args:
            items: Records to regenerate.
            persist_callback: ``(file_id, new_path)``; may be sync or async.
            on_progress: Called with ``(current, total)`` after every item.
            cancel_event: When set, items not yet started are skipped.

        Returns:
            Success and failure counts.

        """
        result = RegenerateResult()
        total = len(items)
        reporter = ProgressReporter(on_progress, self.logger, timeout=self.config.progress_timeout)
        semaphore = asyncio.Semaphore(max(1, self.config.regenerate_concurrency))
        done = 0

        async def _one(item: RegenerateItem) -> None:
            nonlocal done
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return
                ok = await self._regenerate_one(item, persist_callback)
            if ok:
                result.success += 1
            else:
                result.failed += 1
            done += 1
            await reporter.emit(done, total)

        tasks = [asyncio.create_task(_one(item)) for item in items]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        self.logger.info(
            "Thumbnail regeneration finished: %d succeeded, %d failed",
            result.success,
            result.failed,
        )
        return result
