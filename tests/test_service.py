"""Tests for the ingestion service façade."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
from PIL import Image

from media_ingest.config import IngestConfig
from media_ingest.models import RegenerateItem
from media_ingest.service import LOGGER_NAME, IngestService, setup_logging


@pytest.fixture
def config(tmp_path: Path) -> IngestConfig:
    """Create a test configuration."""
    cfg = IngestConfig()
    cfg.log_file = tmp_path / "logs" / "test.log"
    cfg.artifact_root = tmp_path / "artifacts"
    cfg.previews_on_scan = False
    return cfg


@pytest.fixture
def service(config: IngestConfig) -> IngestService:
    """Create a service instance."""
    return IngestService(config)


@pytest.fixture
def library(tmp_path: Path) -> Path:
    """Create a folder with two images."""
    root = tmp_path / "library"
    root.mkdir()
    for name, color in (("red.png", "red"), ("blue.png", "blue")):
        Image.new("RGB", (64, 64), color).save(root / name)
    return root


class TestLogging:
    """Tests for logger setup."""

    def test_invalid_log_level_raises(self, config: IngestConfig) -> None:
        """Test that an invalid log_level raises ValueError."""
        config.log_level = "INVALID"

        with pytest.raises(ValueError, match="Invalid log_level"):
            IngestService(config)

    def test_handlers_not_duplicated(self, config: IngestConfig) -> None:
        """Test that repeated setup replaces handlers."""
        setup_logging(config)
        logger = setup_logging(config)

        assert logger is logging.getLogger(LOGGER_NAME)
        assert len(logger.handlers) == 2
        assert config.log_file.parent.is_dir()


class TestIngestService:
    """Tests for IngestService operations."""

    @pytest.mark.asyncio
    async def test_scan_updates_stats(self, service: IngestService, library: Path) -> None:
        """Test that scan counts accumulate across runs."""
        await service.scan_folder(library)
        await service.scan_folder(library)

        assert service.stats.scans == 2
        assert service.stats.files_registered == 2
        assert service.stats.files_unchanged == 2

    @pytest.mark.asyncio
    async def test_scan_error_counted(self, service: IngestService, tmp_path: Path) -> None:
        """Test that a failed scan is counted and re-raised."""
        with pytest.raises(Exception, match="does not exist"):
            await service.scan_folder(tmp_path / "missing")

        assert service.stats.errors == 1

    @pytest.mark.asyncio
    async def test_regenerate_repoints_catalog(self, service: IngestService, library: Path) -> None:
        """Test that regenerated thumbnails are persisted through the catalog."""
        await service.scan_folder(library)
        record = service.catalog.records[library / "red.png"]  # type: ignore[attr-defined]

        result = await service.regenerate_thumbnails([RegenerateItem(file_id=record.id, path=record.path)])

        assert result.success == 1
        assert record.thumbnail_path is not None
        assert record.thumbnail_path.exists()
        assert service.stats.thumbnails_regenerated == 1

    @pytest.mark.asyncio
    async def test_previews_then_cleanup(
        self, config: IngestConfig, service: IngestService, library: Path
    ) -> None:
        """Test a scan with previews leaves no orphans, and stray files are cleaned."""
        config.previews_on_scan = True
        await service.scan_folder(library)

        diagnostic = await service.diagnose()
        assert diagnostic.total_thumbnails == 2
        assert diagnostic.orphaned_count == 0

        stray = service.store.profile_root() / "image" / "stray.webp"
        stray.write_bytes(b"leftover")

        result = await service.cleanup()

        assert result.deleted_count == 1
        assert not stray.exists()
        assert service.stats.orphans_deleted == 1

    @pytest.mark.asyncio
    async def test_find_duplicates(self, service: IngestService, tmp_path: Path) -> None:
        """Test duplicate search through the service."""
        root = tmp_path / "dups"
        root.mkdir()
        (root / "a.jpg").write_bytes(b"same bytes")
        (root / "b.jpg").write_bytes(b"same bytes")
        await service.scan_folder(root)

        groups = await service.find_duplicates(service.catalog.discovered_files(root))  # type: ignore[attr-defined]

        assert len(groups) == 1
        assert groups[0].count == 2
