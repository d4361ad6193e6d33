"""Shared records passed between the ingestion components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class ScanPhase(Enum):
    """Stage of the directory scanner's progress state machine."""

    COUNTING = "counting"
    SCANNING = "scanning"
    COMPLETE = "complete"
    ERROR = "error"


class MediaType(Enum):
    """Media classification assigned during a scan."""

    VIDEO = "video"
    IMAGE = "image"
    ARCHIVE = "archive"
    AUDIO = "audio"


class HashMode(Enum):
    """How a fingerprint was computed. Fingerprints of different modes never compare equal."""

    FULL = "full"
    PARTIAL = "partial"


class PathErrorKind(Enum):
    """Reason a path failed validation."""

    TOO_LONG = "too_long"
    INVALID_CHARS = "invalid_chars"
    INACCESSIBLE = "inaccessible"
    NOT_FOUND = "not_found"


# Fingerprint per path; None marks an unreadable file that should be skipped
HashResult = dict[Path, str | None]


@dataclass(frozen=True)
class ScanProgress:
    """One progress event emitted by the scanner."""

    phase: ScanPhase
    current: int
    total: int
    current_file: Path | None = None
    message: str | None = None


@dataclass(frozen=True)
class PathValidationResult:
    """Outcome of validating a single path."""

    valid: bool
    error: PathErrorKind | None = None
    message: str | None = None


@dataclass
class DiscoveredFile:
    """A media file found during traversal, handed to the catalog for upsert."""

    path: Path
    media_type: MediaType
    size: int
    mtime: float
    root: Path | None = None
    content_hash: str | None = None
    hash_mode: HashMode | None = None

    @property
    def name(self) -> str:
        return self.path.name


@dataclass
class PreviewArtifact:
    """Generated preview files for one catalog record."""

    thumbnail_path: Path | None = None
    preview_frames: str | None = None  # comma-joined, in timestamp order
    duration: str | None = None
    is_animated: bool = False

    @property
    def frame_paths(self) -> list[Path]:
        if not self.preview_frames:
            return []
        return [Path(p) for p in self.preview_frames.split(",") if p.strip()]

    @property
    def is_empty(self) -> bool:
        return self.thumbnail_path is None and not self.preview_frames


@dataclass(frozen=True)
class RegenerateItem:
    """A catalog record whose thumbnail should be rebuilt."""

    file_id: str
    path: Path
    old_thumbnail: Path | None = None


@dataclass
class RegenerateResult:
    """Counts from a bulk thumbnail regeneration."""

    success: int = 0
    failed: int = 0


@dataclass(frozen=True)
class OrphanedThumbnail:
    """An artifact file on disk that no catalog record references."""

    path: Path
    size: int


@dataclass
class DiagnosticResult:
    """Report produced by a thumbnail diagnosis."""

    total_thumbnails: int = 0
    orphaned_count: int = 0
    total_orphaned_size: int = 0
    orphaned_files: list[Path] = field(default_factory=list)
    samples: list[OrphanedThumbnail] = field(default_factory=list)


@dataclass
class CleanupResult:
    """Report produced by an orphan cleanup."""

    success: bool = True
    deleted_count: int = 0
    freed_bytes: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class ScanSummary:
    """Final counts for one scan invocation."""

    root: Path
    total: int = 0
    processed: int = 0
    registered: int = 0
    unchanged: int = 0
    skipped: int = 0
    removed: int = 0
    cancelled: bool = False
