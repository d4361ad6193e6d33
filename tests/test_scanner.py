"""Tests for the directory scanner."""

from __future__ import annotations

import asyncio
import errno
import itertools
import logging
import threading
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from media_ingest import media_types
from media_ingest.catalog import InMemoryCatalog
from media_ingest.config import IngestConfig
from media_ingest.errors import ArtifactStoreError, ScanRootError
from media_ingest.hasher import ContentHasher
from media_ingest.models import DiscoveredFile, HashMode, MediaType, PreviewArtifact, ScanPhase, ScanProgress
from media_ingest.scanner import DirectoryScanner, _list_dir


@pytest.fixture
def config(tmp_path: Path) -> IngestConfig:
    """Create test configuration without preview generation."""
    cfg = IngestConfig()
    cfg.previews_on_scan = False
    cfg.partial_hash_window = 16
    cfg.artifact_root = tmp_path / "artifacts"
    return cfg


@pytest.fixture
def logger() -> logging.Logger:
    """Create test logger."""
    return logging.getLogger("test-scanner")


@pytest.fixture
def catalog() -> InMemoryCatalog:
    """Create in-memory catalog."""
    return InMemoryCatalog()


@pytest.fixture
def scanner(config: IngestConfig, catalog: InMemoryCatalog, logger: logging.Logger) -> DirectoryScanner:
    """Create scanner with a real hasher."""
    return DirectoryScanner(config, catalog, logger, hasher=ContentHasher(config, logger))


@pytest.fixture
def library(tmp_path: Path) -> Path:
    """Create a small media library."""
    root = tmp_path / "library"
    (root / "sub").mkdir(parents=True)
    (root / "a.jpg").write_bytes(b"jpeg-a")
    (root / "b.mp4").write_bytes(b"v" * 100)
    (root / "notes.txt").write_text("not media")
    (root / "sub" / "c.png").write_bytes(b"png-c")
    return root


class _Recorder:
    """Collects progress events."""

    def __init__(self) -> None:
        self.events: list[ScanProgress] = []

    def __call__(self, event: ScanProgress) -> None:
        self.events.append(event)

    @property
    def phases(self) -> list[ScanPhase]:
        return [e.phase for e in self.events]


class TestScanBasics:
    """Tests for scan registration and progress."""

    @pytest.mark.asyncio
    async def test_empty_tree(self, scanner: DirectoryScanner, tmp_path: Path) -> None:
        """Test an empty folder completes with zero counts."""
        root = tmp_path / "empty"
        root.mkdir()
        recorder = _Recorder()

        summary = await scanner.scan(root, recorder)

        assert recorder.phases == [ScanPhase.COUNTING, ScanPhase.SCANNING, ScanPhase.COMPLETE]
        assert recorder.events[-1].current == 0
        assert recorder.events[-1].total == 0
        assert summary.registered == 0

    @pytest.mark.asyncio
    async def test_missing_root(self, scanner: DirectoryScanner, tmp_path: Path) -> None:
        """Test a missing root emits an error event and raises."""
        recorder = _Recorder()

        with pytest.raises(ScanRootError):
            await scanner.scan(tmp_path / "nope", recorder)

        assert recorder.phases == [ScanPhase.ERROR]

    @pytest.mark.asyncio
    async def test_file_root(self, scanner: DirectoryScanner, library: Path) -> None:
        """Test a file passed as the root is rejected."""
        with pytest.raises(ScanRootError, match="not a directory"):
            await scanner.scan(library / "a.jpg")

    @pytest.mark.asyncio
    async def test_registers_media_only(
        self, scanner: DirectoryScanner, catalog: InMemoryCatalog, library: Path
    ) -> None:
        """Test that media files in every subdirectory are registered."""
        summary = await scanner.scan(library)

        assert summary.registered == 3
        assert set(catalog.records) == {library / "a.jpg", library / "b.mp4", library / "sub" / "c.png"}
        assert all(r.content_hash for r in catalog.records.values())

    @pytest.mark.asyncio
    async def test_progress_monotonic(self, scanner: DirectoryScanner, library: Path) -> None:
        """Test that processed counts rise by one and end at the total."""
        recorder = _Recorder()

        await scanner.scan(library, recorder)

        scanning = [e.current for e in recorder.events if e.phase is ScanPhase.SCANNING]
        assert scanning == [0, 1, 2, 3]
        final = recorder.events[-1]
        assert final.phase is ScanPhase.COMPLETE
        assert final.current == final.total == 3

    @pytest.mark.asyncio
    async def test_raising_sink_does_not_abort(self, scanner: DirectoryScanner, library: Path) -> None:
        """Test that a broken progress sink is ignored."""

        def sink(_event: ScanProgress) -> None:
            raise RuntimeError("window closed")

        summary = await scanner.scan(library, sink)

        assert summary.registered == 3

    @pytest.mark.asyncio
    async def test_suffixless_files_sniffed(
        self, scanner: DirectoryScanner, catalog: InMemoryCatalog, tmp_path: Path
    ) -> None:
        """Test that extension-less files are registered only when their content is media."""
        root = tmp_path / "raw"
        root.mkdir()
        (root / "IMG0001").write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 16)
        (root / "README").write_text("plain text file")

        summary = await scanner.scan(root)

        assert summary.registered == 1
        assert summary.skipped == 1
        assert list(catalog.records) == [root / "IMG0001"]

    @pytest.mark.asyncio
    async def test_invalid_name_skipped(
        self, scanner: DirectoryScanner, catalog: InMemoryCatalog, library: Path
    ) -> None:
        """Test that a name with illegal characters is skipped, not fatal."""
        (library / "bad:name.jpg").write_bytes(b"x")

        summary = await scanner.scan(library)

        assert summary.skipped == 1
        assert library / "bad:name.jpg" not in catalog.records

    @pytest.mark.asyncio
    async def test_entry_crash_is_isolated(
        self, scanner: DirectoryScanner, catalog: InMemoryCatalog, library: Path
    ) -> None:
        """Test that an unexpected error on one file skips only that file."""
        real_upsert = catalog.upsert_file

        async def flaky_upsert(file: DiscoveredFile) -> str:
            if file.path.name == "b.mp4":
                raise RuntimeError("catalog hiccup")
            return await real_upsert(file)

        with patch.object(catalog, "upsert_file", flaky_upsert):
            summary = await scanner.scan(library)

        assert summary.registered == 2
        assert summary.skipped == 1

    @pytest.mark.asyncio
    async def test_unreadable_root_is_fatal(
        self, scanner: DirectoryScanner, catalog: InMemoryCatalog, library: Path
    ) -> None:
        """Test that a root which cannot be listed emits an error and keeps its records."""
        await scanner.scan(library)
        recorder = _Recorder()

        def deny(directory: Path) -> tuple[list[Path], list[Path]]:
            raise PermissionError(errno.EACCES, "Permission denied", str(directory))

        with patch("media_ingest.scanner._list_dir", deny):
            with pytest.raises(ScanRootError, match="cannot list directory"):
                await scanner.scan(library, recorder)

        assert recorder.phases == [ScanPhase.ERROR]
        assert len(catalog.records) == 3

    @pytest.mark.asyncio
    async def test_classification_runs_off_event_loop(self, scanner: DirectoryScanner, tmp_path: Path) -> None:
        """Test that content sniffing happens in a worker thread."""
        root = tmp_path / "raw"
        root.mkdir()
        (root / "IMG0001").write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 16)
        threads: list[threading.Thread] = []
        real_classify = media_types.classify

        def classify(path: Path) -> MediaType | None:
            threads.append(threading.current_thread())
            return real_classify(path)

        with patch("media_ingest.media_types.classify", classify):
            summary = await scanner.scan(root)

        assert summary.registered == 1
        assert threads
        assert all(t is not threading.main_thread() for t in threads)


class TestIncrementalScan:
    """Tests for rescans of an already-cataloged folder."""

    @pytest.mark.asyncio
    async def test_unchanged_files_skipped(self, scanner: DirectoryScanner, library: Path) -> None:
        """Test that a rescan does not re-hash unchanged files."""
        await scanner.scan(library)

        with patch.object(scanner.hasher, "hash_file", AsyncMock(return_value="x")) as hash_file:
            summary = await scanner.scan(library)

        assert summary.unchanged == 3
        assert summary.registered == 0
        hash_file.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_modified_file_reregistered(
        self, scanner: DirectoryScanner, catalog: InMemoryCatalog, library: Path
    ) -> None:
        """Test that a size change triggers re-registration."""
        await scanner.scan(library)
        old_hash = catalog.records[library / "a.jpg"].content_hash

        (library / "a.jpg").write_bytes(b"a completely different jpeg")
        summary = await scanner.scan(library)

        assert summary.registered == 1
        assert summary.unchanged == 2
        assert catalog.records[library / "a.jpg"].content_hash != old_hash

    @pytest.mark.asyncio
    async def test_deleted_files_removed(
        self, scanner: DirectoryScanner, catalog: InMemoryCatalog, library: Path
    ) -> None:
        """Test that records of vanished files are pruned."""
        await scanner.scan(library)
        (library / "sub" / "c.png").unlink()

        summary = await scanner.scan(library)

        assert summary.removed == 1
        assert library / "sub" / "c.png" not in catalog.records

    @pytest.mark.asyncio
    async def test_unreadable_subdirectory_keeps_records(
        self, scanner: DirectoryScanner, catalog: InMemoryCatalog, library: Path
    ) -> None:
        """Test that files in a directory that could not be listed are not pruned."""
        await scanner.scan(library)

        def list_dir(directory: Path) -> tuple[list[Path], list[Path]]:
            if directory.name == "sub":
                raise PermissionError(errno.EACCES, "Permission denied", str(directory))
            return _list_dir(directory)

        with patch("media_ingest.scanner._list_dir", list_dir):
            summary = await scanner.scan(library)

        assert summary.removed == 0
        assert library / "sub" / "c.png" in catalog.records

    @pytest.mark.asyncio
    async def test_failed_entry_keeps_record(
        self, scanner: DirectoryScanner, catalog: InMemoryCatalog, library: Path
    ) -> None:
        """Test that a file which fails on rescan keeps its existing record."""
        await scanner.scan(library)
        (library / "b.mp4").write_bytes(b"w" * 200)
        real_upsert = catalog.upsert_file

        async def flaky_upsert(file: DiscoveredFile) -> str:
            if file.path.name == "b.mp4":
                raise RuntimeError("catalog hiccup")
            return await real_upsert(file)

        with patch.object(catalog, "upsert_file", flaky_upsert):
            summary = await scanner.scan(library)

        assert summary.skipped == 1
        assert summary.removed == 0
        assert catalog.records[library / "b.mp4"].size == 100

    @pytest.mark.asyncio
    async def test_partial_hash_for_video(
        self, scanner: DirectoryScanner, catalog: InMemoryCatalog, library: Path
    ) -> None:
        """Test that videos get a partial fingerprint and images a full one."""
        await scanner.scan(library)

        assert catalog.records[library / "b.mp4"].hash_mode == HashMode.PARTIAL.value
        assert catalog.records[library / "a.jpg"].hash_mode == HashMode.FULL.value


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_after_two_entries(
        self, scanner: DirectoryScanner, catalog: InMemoryCatalog, library: Path
    ) -> None:
        """Test that exactly the entries processed before cancellation are registered."""
        cancel = asyncio.Event()
        recorder = _Recorder()

        def sink(event: ScanProgress) -> None:
            recorder(event)
            if event.phase is ScanPhase.SCANNING and event.current == 2:
                cancel.set()

        summary = await scanner.scan(library, sink, cancel_event=cancel)

        assert summary.cancelled is True
        assert len(catalog.records) == 2
        assert ScanPhase.COMPLETE not in recorder.phases
        assert ScanPhase.ERROR not in recorder.phases

    @pytest.mark.asyncio
    async def test_cancel_keeps_existing_records(
        self, scanner: DirectoryScanner, catalog: InMemoryCatalog, library: Path
    ) -> None:
        """Test that a cancelled scan never prunes records it did not reach."""
        await scanner.scan(library)
        cancel = asyncio.Event()
        cancel.set()

        summary = await scanner.scan(library, cancel_event=cancel)

        assert summary.cancelled is True
        assert len(catalog.records) == 3

    @pytest.mark.asyncio
    async def test_cancel_during_counting(
        self, scanner: DirectoryScanner, catalog: InMemoryCatalog, library: Path
    ) -> None:
        """Test that cancellation is honoured before the count pass finishes."""
        cancel = asyncio.Event()
        recorder = _Recorder()
        counted: list[Path] = []
        real_walk = scanner._walk

        async def walk_then_cancel(root: Path):
            async for path in real_walk(root):
                counted.append(path)
                yield path
                cancel.set()

        with patch.object(scanner, "_walk", walk_then_cancel):
            summary = await scanner.scan(library, recorder, cancel_event=cancel)

        assert summary.cancelled is True
        assert recorder.phases == [ScanPhase.COUNTING]
        assert len(counted) < 3
        assert catalog.records == {}


class TestPreviewWiring:
    """Tests for preview generation during a scan."""

    @pytest.fixture
    def previews(self, tmp_path: Path) -> MagicMock:
        """Create a mock preview generator."""
        serial = itertools.count(1)
        generator = MagicMock()
        generator.build_artifacts = AsyncMock(
            side_effect=lambda path, _type: PreviewArtifact(thumbnail_path=tmp_path / f"{path.stem}-{next(serial)}.webp")
        )
        generator.discard_artifact = AsyncMock()
        return generator

    @pytest.mark.asyncio
    async def test_old_artifact_discarded_after_update(
        self,
        config: IngestConfig,
        catalog: InMemoryCatalog,
        logger: logging.Logger,
        previews: MagicMock,
        library: Path,
    ) -> None:
        """Test the replaced thumbnail is deleted only once the record points elsewhere."""
        config.previews_on_scan = True
        scanner = DirectoryScanner(config, catalog, logger, previews=previews)
        target = library / "a.jpg"

        await scanner.scan(library)
        first_thumb = catalog.records[target].thumbnail_path
        assert first_thumb is not None
        previews.discard_artifact.assert_not_awaited()

        pointed_at_new: list[bool] = []

        async def discard(old: PreviewArtifact, keep: PreviewArtifact) -> None:
            pointed_at_new.append(catalog.records[target].thumbnail_path == keep.thumbnail_path)

        previews.discard_artifact.side_effect = discard
        target.write_bytes(b"edited jpeg content")
        await scanner.scan(library)

        assert previews.discard_artifact.await_count == 1
        old = previews.discard_artifact.await_args.args[0]
        assert old.thumbnail_path == first_thumb
        assert pointed_at_new == [True]

    @pytest.mark.asyncio
    async def test_artifact_store_error_aborts_scan(
        self,
        config: IngestConfig,
        catalog: InMemoryCatalog,
        logger: logging.Logger,
        previews: MagicMock,
        library: Path,
    ) -> None:
        """Test that an unusable artifact directory stops the scan with an error event."""
        config.previews_on_scan = True
        previews.build_artifacts.side_effect = ArtifactStoreError(config.artifact_root, "not writable")
        scanner = DirectoryScanner(config, catalog, logger, previews=previews)
        recorder = _Recorder()

        with pytest.raises(ArtifactStoreError):
            await scanner.scan(library, recorder)

        assert recorder.phases[-1] is ScanPhase.ERROR

    @pytest.mark.asyncio
    async def test_failed_thumbnail_keeps_previous(
        self,
        config: IngestConfig,
        catalog: InMemoryCatalog,
        logger: logging.Logger,
        previews: MagicMock,
        library: Path,
        tmp_path: Path,
    ) -> None:
        """Test that a changed file whose new thumbnail fails keeps the old one."""
        config.previews_on_scan = True
        scanner = DirectoryScanner(config, catalog, logger, previews=previews)
        target = library / "b.mp4"

        await scanner.scan(library)
        first_thumb = catalog.records[target].thumbnail_path

        frames = str(tmp_path / "frames" / "0.webp")
        previews.build_artifacts.side_effect = lambda _path, _type: PreviewArtifact(preview_frames=frames)
        target.write_bytes(b"w" * 200)
        await scanner.scan(library)

        record = catalog.records[target]
        assert record.thumbnail_path == first_thumb
        assert record.preview_frames == frames
        old = previews.discard_artifact.await_args.args[0]
        keep = previews.discard_artifact.await_args.kwargs["keep"]
        assert old.thumbnail_path == first_thumb
        assert keep.thumbnail_path == first_thumb
