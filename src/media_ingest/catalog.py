"""Catalog collaborator interface and an in-memory implementation."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from .models import DiscoveredFile, HashMode
from .path_validator import path_is_gone

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .models import MediaType, PreviewArtifact


@dataclass
class CatalogRecord:
    """The catalog's view of one registered file."""

    id: str
    path: Path
    media_type: MediaType
    size: int
    mtime: float
    profile_id: str = "_global"
    root: Path | None = None
    content_hash: str | None = None
    hash_mode: str | None = None
    thumbnail_path: Path | None = None
    preview_frames: str | None = None
    duration: str | None = None
    is_animated: bool = False

    def to_discovered(self) -> DiscoveredFile:
        """Rebuild the scan-time view of this record, keeping its fingerprint."""
        return DiscoveredFile(
            path=self.path,
            media_type=self.media_type,
            size=self.size,
            mtime=self.mtime,
            root=self.root,
            content_hash=self.content_hash,
            hash_mode=HashMode(self.hash_mode) if self.hash_mode else None,
        )


@dataclass(frozen=True)
class ArtifactReference:
    """Artifact columns of one catalog record, as read by diagnostics."""

    thumbnail_path: str | None = None
    preview_frames: str | None = None


@runtime_checkable
class Catalog(Protocol):
    """Persistent store the pipeline registers files and artifacts into."""

    async def find_file(self, path: Path) -> CatalogRecord | None:
        """Look up a record by path. Returns a snapshot, not the stored record."""
        ...

    async def upsert_file(self, file: DiscoveredFile) -> str:
        """Insert or update a record keyed by path. Must be idempotent.

        Returns:
            The record's file id.

        """
        ...

    async def update_artifact_path(self, file_id: str, new_path: Path) -> None:
        """Repoint a record's thumbnail."""
        ...

    async def update_preview(self, file_id: str, artifact: PreviewArtifact) -> None:
        """Store every generated preview field of a record."""
        ...

    async def list_artifact_references(self, profile_id: str) -> Iterable[ArtifactReference]:
        """Return the artifact columns of every record in a profile."""
        ...

    async def remove_missing(self, root: Path, seen: set[Path]) -> int:
        """Delete records under ``root`` that are not in ``seen`` and are gone from disk.

        A record whose file still exists is kept even when this run could not
        read it.

        Returns:
            Number of records removed.

        """
        ...


@dataclass
class InMemoryCatalog:
    """Dictionary-backed catalog used by the CLI and tests."""

    profile_id: str = "_global"
    records: dict[Path, CatalogRecord] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def _by_id(self, file_id: str) -> CatalogRecord:
        for record in self.records.values():
            if record.id == file_id:
                return record
        raise KeyError(file_id)

    async def find_file(self, path: Path) -> CatalogRecord | None:
        record = self.records.get(path)
        return replace(record) if record is not None else None

    def discovered_files(self, root: Path | None = None) -> list[DiscoveredFile]:
        """Every registered file, optionally limited to one scan root."""
        return [r.to_discovered() for r in self.records.values() if root is None or r.root == root]

    async def upsert_file(self, file: DiscoveredFile) -> str:
        async with self._lock:
            record = self.records.get(file.path)
            if record is None:
                record = CatalogRecord(
                    id=uuid.uuid4().hex,
                    path=file.path,
                    media_type=file.media_type,
                    size=file.size,
                    mtime=file.mtime,
                    profile_id=self.profile_id,
                )
                self.records[file.path] = record
            record.media_type = file.media_type
            record.size = file.size
            record.mtime = file.mtime
            record.root = file.root
            record.content_hash = file.content_hash
            record.hash_mode = file.hash_mode.value if file.hash_mode else None
            return record.id

    async def update_artifact_path(self, file_id: str, new_path: Path) -> None:
        self._by_id(file_id).thumbnail_path = new_path

    async def update_preview(self, file_id: str, artifact: PreviewArtifact) -> None:
        record = self._by_id(file_id)
        record.thumbnail_path = artifact.thumbnail_path
        record.preview_frames = artifact.preview_frames
        record.duration = artifact.duration
        record.is_animated = artifact.is_animated

    async def list_artifact_references(self, profile_id: str) -> list[ArtifactReference]:
        return [
            ArtifactReference(
                thumbnail_path=str(r.thumbnail_path) if r.thumbnail_path else None,
                preview_frames=r.preview_frames,
            )
            for r in self.records.values()
            if r.profile_id == profile_id and (r.thumbnail_path or r.preview_frames)
        ]

    async def remove_missing(self, root: Path, seen: set[Path]) -> int:
        unseen = [
            path
            for path, record in self.records.items()
            if record.root == root and path not in seen
        ]
        stale = [path for path in unseen if await asyncio.to_thread(path_is_gone, path)]
        async with self._lock:
            for path in stale:
                self.records.pop(path, None)
        return len(stale)
