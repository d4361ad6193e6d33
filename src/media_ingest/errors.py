"""Fatal errors that abort a whole ingestion operation."""

from __future__ import annotations

from pathlib import Path


class IngestError(Exception):
    """Base class for errors that stop an operation before it can process any item."""


class ScanRootError(IngestError):
    """The scan root is missing, is not a directory, or cannot be listed."""

    def __init__(self, root: Path, reason: str) -> None:
        super().__init__(f"Cannot scan {root}: {reason}")
        self.root = root
        self.reason = reason


class ArtifactStoreError(IngestError):
    """The artifact directory cannot be created or written."""

    def __init__(self, directory: Path, reason: str) -> None:
        super().__init__(f"Artifact directory unusable {directory}: {reason}")
        self.directory = directory
        self.reason = reason
