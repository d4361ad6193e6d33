"""Find duplicate media by hashing only files whose sizes collide."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .models import DiscoveredFile, HashMode
from .progress import ProgressReporter

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from .hasher import ContentHasher


class DuplicatePhase(Enum):
    """Stage of a duplicate search."""

    ANALYZING = "analyzing"
    HASHING = "hashing"
    COMPLETE = "complete"


@dataclass(frozen=True)
class DuplicateProgress:
    """One progress event emitted during a duplicate search."""

    phase: DuplicatePhase
    current: int
    total: int
    current_file: Path | None = None


@dataclass
class DuplicateGroup:
    """Files sharing one full-content fingerprint."""

    hash: str
    size: int
    files: list[DiscoveredFile] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.files)


@dataclass(frozen=True)
class DuplicateStats:
    """Aggregate view of a set of duplicate groups."""

    total_groups: int
    total_files: int
    wasted_space: int


def size_collisions(files: Iterable[DiscoveredFile]) -> dict[int, list[DiscoveredFile]]:
    """Group non-empty files by size, keeping only sizes shared by two or more files."""
    by_size: dict[int, list[DiscoveredFile]] = defaultdict(list)
    for file in files:
        if file.size > 0:
            by_size[file.size].append(file)
    return {size: group for size, group in by_size.items() if len(group) > 1}


async def find_duplicates(
    files: Iterable[DiscoveredFile],
    hasher: ContentHasher,
    on_progress: Callable[..., Any] | None = None,
    *,
    cancel_event: asyncio.Event | None = None,
    logger: logging.Logger | None = None,
) -> list[DuplicateGroup]:
    """Return groups of files with identical content, largest size first.

    Only files whose size matches another file are hashed. A stored full
    fingerprint is reused; partial fingerprints are never compared.

    Args:
        files: Candidate files.
        hasher: Hasher used for files without a reusable fingerprint.
        on_progress: Receives DuplicateProgress events.
        cancel_event: Stops hashing when set; groups found so far are returned.
        logger: Logger instance. Defaults to the hasher's.

    Returns:
        Duplicate groups sorted by size, descending.

    """
    log = logger or hasher.logger
    reporter = ProgressReporter(on_progress, log, timeout=hasher.config.progress_timeout)

    await reporter.emit(DuplicateProgress(DuplicatePhase.ANALYZING, 0, 0))
    collisions = size_collisions(files)
    total = sum(len(group) for group in collisions.values())
    log.info("Found %d size groups, %d files to hash", len(collisions), total)

    groups: list[DuplicateGroup] = []
    processed = 0

    for size in sorted(collisions, reverse=True):
        by_hash: dict[str, list[DiscoveredFile]] = defaultdict(list)
        for file in collisions[size]:
            if cancel_event is not None and cancel_event.is_set():
                log.info("Duplicate search cancelled")
                break

            processed += 1
            await reporter.emit(DuplicateProgress(DuplicatePhase.HASHING, processed, total, file.path))

            fingerprint = file.content_hash if file.hash_mode is HashMode.FULL else None
            if fingerprint is None:
                fingerprint = await hasher.hash_file(file.path)
            if fingerprint is None:
                continue
            by_hash[fingerprint].append(file)

        groups.extend(
            DuplicateGroup(hash=fingerprint, size=size, files=members)
            for fingerprint, members in by_hash.items()
            if len(members) > 1
        )
        if cancel_event is not None and cancel_event.is_set():
            break

    groups.sort(key=lambda g: g.size, reverse=True)
    log.info("Found %d duplicate groups", len(groups))
    await reporter.emit(DuplicateProgress(DuplicatePhase.COMPLETE, processed, total))
    return groups


def duplicate_stats(groups: Iterable[DuplicateGroup]) -> DuplicateStats:
    """Count redundant copies and the space they waste (one copy per group is kept)."""
    total_groups = 0
    total_files = 0
    wasted = 0
    for group in groups:
        total_groups += 1
        total_files += group.count - 1
        wasted += group.size * (group.count - 1)
    return DuplicateStats(total_groups=total_groups, total_files=total_files, wasted_space=wasted)
