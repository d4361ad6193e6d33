"""Detect and remove artifact files that no catalog record references.

An orphan is a file present under the profile's artifact directory and
absent from the catalog's current thumbnail/preview-frame columns. Whether
the owning folder is still meaningfully part of the library is not
considered: a record that survives keeps its artifacts alive.
"""

from __future__ import annotations

import asyncio
import errno
import json
import os
from pathlib import Path
from typing import TYPE_CHECKING

from .artifacts import ArtifactKind
from .models import CleanupResult, DiagnosticResult, OrphanedThumbnail

if TYPE_CHECKING:
    import logging
    from collections.abc import Iterable

    from .artifacts import ArtifactStore
    from .catalog import ArtifactReference, Catalog

SAMPLE_SIZE = 10

_LOCKED_ERRNOS = frozenset({errno.EBUSY, errno.EPERM, errno.EACCES})


def normalize(path: str | Path) -> str:
    """Canonical form used to compare disk paths with catalog paths."""
    return os.path.normpath(os.path.abspath(str(path).strip()))


def parse_preview_frames(value: str | None) -> list[str]:
    """Split a stored preview-frames value, accepting a JSON array or comma-joined paths."""
    if not value:
        return []
    text = value.strip()
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return [str(p) for p in parsed if str(p).strip()]
    return [p for p in text.split(",") if p.strip()]


def list_files(directory: Path) -> list[Path]:
    """All files below ``directory``; an absent directory yields nothing."""
    files: list[Path] = []
    for dirpath, _dirnames, filenames in os.walk(directory):
        files.extend(Path(dirpath) / name for name in filenames)
    return files


def reference_set(rows: Iterable[ArtifactReference]) -> set[str]:
    """Normalised paths of every thumbnail and preview frame in ``rows``."""
    referenced: set[str] = set()
    for row in rows:
        if row.thumbnail_path:
            referenced.add(normalize(row.thumbnail_path))
        referenced.update(normalize(frame) for frame in parse_preview_frames(row.preview_frames))
    return referenced


def _size_or_zero(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0


class ThumbnailDiagnostics:
    """Reconciles the artifact directory against catalog references."""

    def __init__(self, store: ArtifactStore, catalog: Catalog, logger: logging.Logger) -> None:
        """Initialize diagnostics.

        Args:
            store: Artifact directory layout.
            catalog: Catalog that owns the artifact references.
            logger: Logger instance.

        """
        self.store = store
        self.catalog = catalog
        self.logger = logger

    async def diagnose(self, profile_id: str) -> DiagnosticResult:
        """Find orphaned artifacts for a profile.

        Args:
            profile_id: Profile whose artifact directory is inspected.

        Returns:
            Counts, total orphan size, every orphan path and a short sample.

        """
        directory = self.store.profile_root(profile_id)
        self.logger.info("Starting thumbnail diagnostic for profile %s", profile_id)

        disk_files = await asyncio.to_thread(list_files, directory)
        self.logger.debug("Found %d files in %s", len(disk_files), directory)
        if not disk_files:
            return DiagnosticResult()

        rows = await self.catalog.list_artifact_references(profile_id)
        referenced = reference_set(rows)
        self.logger.debug("Catalog references %d artifact paths", len(referenced))

        orphans: list[OrphanedThumbnail] = []
        for disk_path in disk_files:
            if normalize(disk_path) in referenced:
                continue
            size = await asyncio.to_thread(_size_or_zero, disk_path)
            orphans.append(OrphanedThumbnail(path=disk_path, size=size))
            self.logger.debug("Orphaned artifact: %s", disk_path)

        self.logger.info(
            "Diagnostic complete: %d orphaned of %d artifacts",
            len(orphans),
            len(disk_files),
        )

        return DiagnosticResult(
            total_thumbnails=len(disk_files),
            orphaned_count=len(orphans),
            total_orphaned_size=sum(o.size for o in orphans),
            orphaned_files=[o.path for o in orphans],
            samples=orphans[:SAMPLE_SIZE],
        )

    async def cleanup(self, profile_id: str) -> CleanupResult:
        """Delete every orphaned artifact of a profile.

        Args:
            profile_id: Profile to clean.

        Returns:
            Deleted count, bytes freed and per-file error messages.

        """
        result = CleanupResult()
        diagnostic = await self.diagnose(profile_id)

        if diagnostic.orphaned_count == 0:
            self.logger.info("No orphaned thumbnails to clean up")
            return result

        self.logger.info("Cleaning up %d orphaned thumbnails", diagnostic.orphaned_count)

        for path in diagnostic.orphaned_files:
            try:
                size = (await asyncio.to_thread(path.stat)).st_size
                await asyncio.to_thread(path.unlink)
            except FileNotFoundError:
                self.logger.debug("Already deleted: %s", path)
                continue
            except OSError as e:
                if e.errno in _LOCKED_ERRNOS:
                    message = f"Locked: {path}"
                    self.logger.warning(message)
                else:
                    message = f"{path}: {e}"
                    self.logger.error("Failed to delete thumbnail: %s", message)
                result.errors.append(message)
                continue

            result.deleted_count += 1
            result.freed_bytes += size
            self.logger.debug("Deleted %s (%d bytes)", path, size)

        await asyncio.to_thread(self._remove_empty_frame_dirs, profile_id)

        if result.errors:
            result.success = False
            self.logger.warning("Cleanup completed with %d errors", len(result.errors))
        else:
            self.logger.info(
                "Cleanup completed: %d files deleted, %.2f MB freed",
                result.deleted_count,
                result.freed_bytes / 1024 / 1024,
            )
        return result

    def _remove_empty_frame_dirs(self, profile_id: str) -> None:
        preview_dir = self.store.kind_dir(ArtifactKind.PREVIEW, profile_id)
        if not preview_dir.is_dir():
            return
        for child in preview_dir.iterdir():
            if child.is_dir() and not any(child.iterdir()):
                try:
                    child.rmdir()
                except OSError as e:
                    self.logger.debug("Could not remove frame directory %s: %s", child, e)
