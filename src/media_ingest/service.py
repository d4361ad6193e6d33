"""Orchestrating façade that wires the ingestion components together."""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.logging import RichHandler

from .artifacts import ArtifactStore
from .catalog import InMemoryCatalog
from .diagnostics import ThumbnailDiagnostics
from .duplicates import find_duplicates
from .hasher import ContentHasher
from .preview import PreviewGenerator
from .scanner import DirectoryScanner
from .watcher import FolderWatcher

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from .catalog import Catalog
    from .config import IngestConfig
    from .duplicates import DuplicateGroup
    from .models import (
        CleanupResult,
        DiagnosticResult,
        DiscoveredFile,
        HashResult,
        RegenerateItem,
        RegenerateResult,
        ScanSummary,
    )

LOGGER_NAME = "media-ingest"


@dataclass
class IngestStats:
    """Running totals across every operation of one service instance."""

    start_time: datetime
    scans: int = 0
    files_registered: int = 0
    files_unchanged: int = 0
    files_skipped: int = 0
    records_removed: int = 0
    thumbnails_regenerated: int = 0
    regeneration_failures: int = 0
    orphans_deleted: int = 0
    errors: int = 0


def setup_logging(config: IngestConfig) -> logging.Logger:
    """Configure the ``media-ingest`` logger with Rich console and file handlers.

    Raises:
        ValueError: ``config.log_level`` is not a logging level name.

    """
    level = logging.getLevelName(config.log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Invalid log_level: {config.log_level!r}")

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Clear existing handlers to avoid duplicates if the service is recreated
    if logger.handlers:
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_time=True,
        show_path=False,
    )
    console_handler.setLevel(logging.INFO)
    logger.addHandler(console_handler)

    config.log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
    logger.addHandler(file_handler)

    return logger


class IngestService:
    """Entry point used by the host application and the CLI."""

    def __init__(
        self,
        config: IngestConfig,
        catalog: Catalog | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            config: Ingestion configuration.
            catalog: Catalog collaborator. An in-memory catalog is used if None.
            logger: Logger injected into every component. Built from config if None.

        """
        self.config = config
        self.logger = logger or setup_logging(config)
        self.catalog: Catalog = catalog if catalog is not None else InMemoryCatalog(profile_id=config.profile_id)

        self.store = ArtifactStore(config.artifact_root, config.profile_id)
        self.hasher = ContentHasher(config, self.logger)
        self.previews = PreviewGenerator(config, self.store, self.logger)
        self.scanner = DirectoryScanner(
            config,
            self.catalog,
            self.logger,
            hasher=self.hasher,
            previews=self.previews,
        )
        self.diagnostics = ThumbnailDiagnostics(self.store, self.catalog, self.logger)
        self.watcher = FolderWatcher(config, self.scan_folder, self.logger)

        self.stats = IngestStats(start_time=datetime.now())
        self._running = False

    async def scan_folder(
        self,
        root: Path,
        on_progress: Callable[..., Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ScanSummary:
        """Scan one folder into the catalog and fold its counts into stats."""
        try:
            summary = await self.scanner.scan(root, on_progress, cancel_event=cancel_event)
        except Exception:
            self.stats.errors += 1
            raise

        self.stats.scans += 1
        self.stats.files_registered += summary.registered
        self.stats.files_unchanged += summary.unchanged
        self.stats.files_skipped += summary.skipped
        self.stats.records_removed += summary.removed
        return summary

    async def hash_files(
        self,
        paths: Iterable[Path],
        *,
        partial: bool = False,
        on_progress: Callable[..., Any] | None = None,
    ) -> HashResult:
        """Fingerprint a batch of files."""
        return await self.hasher.hash_files(paths, partial=partial, on_progress=on_progress)

    async def regenerate_thumbnails(
        self,
        items: Sequence[RegenerateItem],
        on_progress: Callable[..., Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> RegenerateResult:
        """Rebuild thumbnails, repointing each record through the catalog."""
        result = await self.previews.regenerate_all_thumbnails(
            items,
            self.catalog.update_artifact_path,
            on_progress,
            cancel_event=cancel_event,
        )
        self.stats.thumbnails_regenerated += result.success
        self.stats.regeneration_failures += result.failed
        return result

    async def diagnose(self, profile_id: str | None = None) -> DiagnosticResult:
        """Report orphaned artifacts for a profile (defaults to the configured one)."""
        return await self.diagnostics.diagnose(profile_id or self.config.profile_id)

    async def cleanup(self, profile_id: str | None = None) -> CleanupResult:
        """Delete orphaned artifacts for a profile (defaults to the configured one)."""
        result = await self.diagnostics.cleanup(profile_id or self.config.profile_id)
        self.stats.orphans_deleted += result.deleted_count
        self.stats.errors += len(result.errors)
        return result

    async def find_duplicates(
        self,
        files: Iterable[DiscoveredFile],
        on_progress: Callable[..., Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> list[DuplicateGroup]:
        """Group files with identical content."""
        return await find_duplicates(
            files,
            self.hasher,
            on_progress,
            cancel_event=cancel_event,
            logger=self.logger,
        )

    async def run_watch(self) -> None:
        """Scan every watched folder, then rescan on change until stopped."""
        self._running = True
        self.logger.info("Starting media-ingest watcher...")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown)

        for folder in self.config.watch_directories:
            if folder.is_dir():
                await self.scan_folder(folder)

        self.watcher.start()

        try:
            while self._running:
                await asyncio.sleep(0.5)
        except asyncio.CancelledError:
            self.logger.info("Watcher cancelled")
            raise
        finally:
            self.watcher.stop()
            self.logger.info(
                "Watcher stopped. Stats: scans=%d, registered=%d, unchanged=%d, skipped=%d, errors=%d",
                self.stats.scans,
                self.stats.files_registered,
                self.stats.files_unchanged,
                self.stats.files_skipped,
                self.stats.errors,
            )

    def _handle_shutdown(self) -> None:
        """Handle shutdown signal."""
        self.logger.info("Shutdown signal received")
        self._running = False

    def stop(self) -> None:
        """Stop the watcher loop."""
        self._running = False
        self.watcher.stop()
