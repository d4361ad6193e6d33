"""Two-pass directory scanner: count candidates, then register each media file.

The count pass only gives the progress bar a denominator. The tree can change
between passes, so the total is a best-effort estimate: entries that vanish
shrink it when the scan completes, entries that appear are still processed.
"""

from __future__ import annotations

import asyncio
import os
from contextlib import aclosing
from pathlib import Path
from typing import TYPE_CHECKING, Any

from . import media_types
from .errors import IngestError, ScanRootError
from .models import DiscoveredFile, HashMode, MediaType, PreviewArtifact, ScanPhase, ScanProgress, ScanSummary
from .path_validator import get_error_code, is_skippable_error, validate_path_sync
from .progress import ProgressReporter

if TYPE_CHECKING:
    import logging
    from collections.abc import AsyncIterator, Callable

    from .catalog import Catalog
    from .config import IngestConfig
    from .hasher import ContentHasher
    from .preview import PreviewGenerator


def _list_dir(directory: Path) -> tuple[list[Path], list[Path]]:
    """Split a directory's entries into (subdirectories, files). Symlinked dirs are not followed."""
    dirs: list[Path] = []
    files: list[Path] = []
    with os.scandir(directory) as it:
        for entry in it:
            try:
                if entry.is_dir(follow_symlinks=False):
                    dirs.append(Path(entry.path))
                elif entry.is_file():
                    files.append(Path(entry.path))
            except OSError:
                continue
    return dirs, files


def _classify_and_stat(path: Path) -> tuple[MediaType | None, os.stat_result | None]:
    media_type = media_types.classify(path)
    if media_type is None:
        return None, None
    return media_type, path.stat()


class DirectoryScanner:
    """Walks a folder tree and hands every media file to the catalog."""

    def __init__(
        self,
        config: IngestConfig,
        catalog: Catalog,
        logger: logging.Logger,
        *,
        hasher: ContentHasher | None = None,
        previews: PreviewGenerator | None = None,
    ) -> None:
        """Initialize the scanner.

        Args:
            config: Ingestion configuration.
            catalog: Catalog that receives discovered files.
            logger: Logger instance.
            hasher: Fingerprints new and changed files when given.
            previews: Generates previews for new and changed files when given.

        """
        self.config = config
        self.catalog = catalog
        self.logger = logger
        self.hasher = hasher
        self.previews = previews

    async def _walk(self, root: Path) -> AsyncIterator[Path]:
        """Yield candidate media files below ``root``, skipping unreadable directories."""
        pending = [root]
        while pending:
            directory = pending.pop()
            try:
                dirs, files = await asyncio.to_thread(_list_dir, directory)
            except OSError as e:
                if not is_skippable_error(e):
                    self.logger.warning("Unexpected error listing %s (%s): %s", directory, get_error_code(e), e)
                else:
                    self.logger.debug("Skipping unreadable directory %s (%s)", directory, get_error_code(e))
                continue
            for path in files:
                if media_types.is_candidate(path):
                    yield path
            pending.extend(reversed(dirs))

    async def count_files(self, root: Path, *, cancel_event: asyncio.Event | None = None) -> int:
        """Count candidate media files below ``root`` (best effort).

        Stops early, returning the partial count, once ``cancel_event`` is set.
        """
        count = 0
        async with aclosing(self._walk(root)) as entries:
            async for _path in entries:
                if cancel_event is not None and cancel_event.is_set():
                    break
                count += 1
        return count

    async def _check_root(self, root: Path) -> None:
        if not root.exists():
            raise ScanRootError(root, "directory does not exist")
        if not root.is_dir():
            raise ScanRootError(root, "not a directory")
        try:
            await asyncio.to_thread(_list_dir, root)
        except OSError as e:
            raise ScanRootError(root, f"cannot list directory ({get_error_code(e) or e})") from e

    async def scan(
        self,
        root: Path,
        on_progress: Callable[..., Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ScanSummary:
        """Scan a folder tree into the catalog.

        Args:
            root: Folder to scan.
            on_progress: Receives a ScanProgress after every phase change and entry.
            cancel_event: Checked before every entry; when set the scan stops
                and nothing further is registered.

        Returns:
            Counts for the run.

        Raises:
            ScanRootError: ``root`` is missing, not a directory or unreadable. An ``error``
                progress event is emitted first.

        """
        reporter = ProgressReporter(on_progress, self.logger, timeout=self.config.progress_timeout)
        summary = ScanSummary(root=root)

        try:
            await self._check_root(root)
        except ScanRootError as e:
            self.logger.error("%s", e)
            await reporter.emit(ScanProgress(ScanPhase.ERROR, 0, 0, message=str(e)))
            raise

        self.logger.info("Scanning %s", root)
        await reporter.emit(ScanProgress(ScanPhase.COUNTING, 0, 0, message="Counting files..."))
        summary.total = await self.count_files(root, cancel_event=cancel_event)
        if cancel_event is not None and cancel_event.is_set():
            summary.cancelled = True
            self.logger.info("Scan of %s cancelled while counting", root)
            return summary
        await reporter.emit(ScanProgress(ScanPhase.SCANNING, 0, summary.total, message="Scan started"))

        seen: set[Path] = set()
        try:
            async with aclosing(self._walk(root)) as entries:
                async for path in entries:
                    if cancel_event is not None and cancel_event.is_set():
                        summary.cancelled = True
                        self.logger.info("Scan of %s cancelled after %d entries", root, summary.processed)
                        return summary

                    if await self._process_entry_safely(root, path, summary):
                        seen.add(path)
                    summary.processed += 1
                    await reporter.emit(
                        ScanProgress(ScanPhase.SCANNING, summary.processed, summary.total, current_file=path)
                    )
        except IngestError as e:
            self.logger.error("Scan of %s aborted: %s", root, e)
            await reporter.emit(ScanProgress(ScanPhase.ERROR, summary.processed, summary.total, message=str(e)))
            raise

        # Only ever shrink the estimate; entries that appeared mid-scan were still processed
        if summary.processed < summary.total:
            summary.total = summary.processed

        summary.removed = await self.catalog.remove_missing(root, seen)

        message = (
            f"Done: {summary.registered} registered, {summary.unchanged} unchanged, "
            f"{summary.skipped} skipped, {summary.removed} removed"
        )
        self.logger.info("Scan of %s complete. %s", root, message)
        await reporter.emit(ScanProgress(ScanPhase.COMPLETE, summary.processed, summary.total, message=message))
        return summary

    async def _process_entry_safely(self, root: Path, path: Path, summary: ScanSummary) -> bool:
        """Run :meth:`_process_entry`, turning any non-fatal fault into a skip."""
        try:
            return await self._process_entry(root, path, summary)
        except IngestError:
            raise
        except Exception:
            self.logger.exception("Failed to scan entry %s", path)
            summary.skipped += 1
            return False

    async def _process_entry(self, root: Path, path: Path, summary: ScanSummary) -> bool:
        """Validate, classify and register one file.

        Returns:
            True when the file is (still) a live catalog entry.

        """
        validation = validate_path_sync(path)
        if not validation.valid:
            kind = validation.error.value if validation.error else "invalid"
            self.logger.debug("Skipping %s: %s", path, kind)
            summary.skipped += 1
            return False

        try:
            media_type, stat = await asyncio.to_thread(_classify_and_stat, path)
        except OSError as e:
            if not is_skippable_error(e):
                self.logger.warning("Unexpected error reading %s (%s): %s", path, get_error_code(e), e)
            summary.skipped += 1
            return False
        if media_type is None:
            summary.skipped += 1
            return False

        existing = await self.catalog.find_file(path)
        if existing is not None and existing.size == stat.st_size and existing.mtime == stat.st_mtime:
            summary.unchanged += 1
            return True
        previous = None
        if existing is not None:
            previous = PreviewArtifact(thumbnail_path=existing.thumbnail_path, preview_frames=existing.preview_frames)

        discovered = DiscoveredFile(
            path=path,
            media_type=media_type,
            size=stat.st_size,
            mtime=stat.st_mtime,
            root=root,
        )
        await self._fingerprint(discovered)

        file_id = await self.catalog.upsert_file(discovered)
        summary.registered += 1

        if self.previews is not None and self.config.previews_on_scan:
            await self._refresh_previews(file_id, discovered, previous)
        return True

    async def _fingerprint(self, discovered: DiscoveredFile) -> None:
        if self.hasher is None or not self.config.hash_on_scan:
            return
        partial = self.config.partial_hash_for_video and discovered.media_type is MediaType.VIDEO
        discovered.content_hash = await self.hasher.hash_file(discovered.path, partial=partial)
        if discovered.content_hash is not None:
            discovered.hash_mode = HashMode.PARTIAL if partial else HashMode.FULL

    async def _refresh_previews(
        self,
        file_id: str,
        discovered: DiscoveredFile,
        previous: PreviewArtifact | None,
    ) -> None:
        """Generate previews, repoint the record, then delete what they replaced.

        A field the new run failed to produce keeps its previous file.
        """
        if self.previews is None:
            return
        artifact = await self.previews.build_artifacts(discovered.path, discovered.media_type)
        if artifact.is_empty:
            return

        if previous is not None:
            if artifact.thumbnail_path is None:
                artifact.thumbnail_path = previous.thumbnail_path
            if not artifact.preview_frames:
                artifact.preview_frames = previous.preview_frames

        await self.catalog.update_preview(file_id, artifact)

        if previous is not None:
            await self.previews.discard_artifact(previous, keep=artifact)
