"""On-disk layout of generated thumbnails and preview frames."""

from __future__ import annotations

import os
import uuid
from enum import Enum
from pathlib import Path

from .errors import ArtifactStoreError

PROFILES_DIR = "profiles"
FALLBACK_PROFILE_ID = "_global"
ARTIFACT_SUFFIX = ".webp"


class ArtifactKind(Enum):
    """Subdirectory an artifact is stored under."""

    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    ARCHIVE = "archive"
    PREVIEW = "preview"


def normalize_profile_id(profile_id: str | None) -> str:
    """Map a blank profile id to the shared fallback profile."""
    trimmed = (profile_id or "").strip()
    return trimmed or FALLBACK_PROFILE_ID


class ArtifactStore:
    """Resolves artifact paths under ``<root>/profiles/<profile>/<kind>/``."""

    def __init__(self, root: Path, profile_id: str | None = None) -> None:
        self.root = root
        self.profile_id = normalize_profile_id(profile_id)

    def profile_root(self, profile_id: str | None = None) -> Path:
        return self.root / PROFILES_DIR / normalize_profile_id(profile_id or self.profile_id)

    def kind_dir(self, kind: ArtifactKind, profile_id: str | None = None) -> Path:
        return self.profile_root(profile_id) / kind.value

    def _ensure(self, directory: Path) -> Path:
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArtifactStoreError(directory, str(e)) from e
        if not os.access(directory, os.W_OK):
            raise ArtifactStoreError(directory, "not writable")
        return directory

    def new_artifact_path(self, kind: ArtifactKind, profile_id: str | None = None) -> Path:
        """Return a fresh, unused artifact path, creating its directory.

        Raises:
            ArtifactStoreError: The directory cannot be created or written.

        """
        return self._ensure(self.kind_dir(kind, profile_id)) / f"{uuid.uuid4()}{ARTIFACT_SUFFIX}"

    def new_frames_dir(self, profile_id: str | None = None) -> Path:
        """Create a fresh directory for one video's preview frames."""
        return self._ensure(self.kind_dir(ArtifactKind.PREVIEW, profile_id) / uuid.uuid4().hex)


def frame_name(index: int) -> str:
    """File name of the 1-based preview frame ``index``."""
    return f"frame_{index:02d}{ARTIFACT_SUFFIX}"
