"""Folder watcher that rescans a library folder shortly after its media changes."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from . import media_types

if TYPE_CHECKING:
    from watchdog.events import FileSystemEvent

    from .config import IngestConfig

TEMP_SUFFIXES: frozenset[str] = frozenset({".tmp", ".part", ".crdownload"})

RescanCallback = Callable[[Path], Awaitable[object]]


def is_relevant_change(path: Path) -> bool:
    """True for paths that could be media, ignoring in-progress downloads."""
    if path.suffix.lower() in TEMP_SUFFIXES:
        return False
    return media_types.is_candidate(path)


class MediaEventHandler(FileSystemEventHandler):
    """Forwards media file events for one watched folder."""

    def __init__(
        self,
        folder: Path,
        callback: Callable[[Path, Path], None],
        logger: logging.Logger,
    ) -> None:
        """Initialize the event handler.

        Args:
            folder: Watched root folder.
            callback: Called with ``(folder, changed_path)`` for relevant events.
            logger: Logger instance.

        """
        super().__init__()
        self.folder = folder
        self.callback = callback
        self.logger = logger

    def on_any_event(self, event: FileSystemEvent) -> None:
        """Handle create, modify, move and delete events alike.

        Args:
            event: File system event.

        """
        if event.is_directory or event.event_type in ("opened", "closed", "closed_no_write"):
            return
        raw = getattr(event, "dest_path", "") or event.src_path
        path = Path(raw.decode() if isinstance(raw, bytes) else raw)
        if is_relevant_change(path):
            self.logger.debug("Change in %s: %s (%s)", self.folder, path.name, event.event_type)
            self.callback(self.folder, path)


@dataclass
class _FolderState:
    debounce: asyncio.TimerHandle | None = None
    running: bool = False
    queued: bool = False


class FolderWatcher:
    """Watches library folders and triggers a debounced rescan per folder.

    At most one rescan runs per folder; changes arriving during a rescan
    queue exactly one follow-up.
    """

    def __init__(
        self,
        config: IngestConfig,
        rescan: RescanCallback,
        logger: logging.Logger,
    ) -> None:
        """Initialize the folder watcher.

        Args:
            config: Ingestion configuration.
            rescan: Coroutine function run with the folder to rescan.
            logger: Logger instance.

        """
        self.config = config
        self.rescan = rescan
        self.logger = logger
        self._observer: Observer | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._states: dict[Path, _FolderState] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def start(self) -> None:
        """Start watching configured directories. Must be called from the event loop."""
        if self._observer is not None:
            return

        self._loop = asyncio.get_running_loop()
        self._observer = Observer()

        for directory in self.config.watch_directories:
            if directory.is_dir():
                handler = MediaEventHandler(directory, self._on_change_threadsafe, self.logger)
                self._observer.schedule(handler, str(directory), recursive=True)
                self._states[directory] = _FolderState()
                self.logger.info("Watching directory: %s", directory)
            else:
                self.logger.warning("Skip watch (path missing): %s", directory)

        self._observer.start()
        self.logger.info("Folder watcher started")

    def stop(self) -> None:
        """Stop watching and cancel pending rescans."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self._observer = None
            self.logger.info("Folder watcher stopped")

        for state in self._states.values():
            if state.debounce is not None:
                state.debounce.cancel()
                state.debounce = None
        for task in self._tasks:
            task.cancel()

    @property
    def is_running(self) -> bool:
        """Check if watcher is running."""
        return self._observer is not None

    def _on_change_threadsafe(self, folder: Path, path: Path) -> None:
        # Called on the watchdog observer thread
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self.schedule_rescan, folder, f"change: {path.name}")

    def schedule_rescan(self, folder: Path, reason: str) -> None:
        """(Re)start the debounce timer for ``folder``. Runs on the event loop."""
        state = self._states.setdefault(folder, _FolderState())
        if state.debounce is not None:
            state.debounce.cancel()

        loop = self._loop or asyncio.get_running_loop()
        state.debounce = loop.call_later(self.config.watch_debounce, self._launch, folder, reason)

    def _launch(self, folder: Path, reason: str) -> None:
        self._states[folder].debounce = None
        task = asyncio.ensure_future(self.run_rescan(folder, reason))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def run_rescan(self, folder: Path, reason: str) -> None:
        """Rescan ``folder`` unless a rescan is already running, in which case queue one."""
        state = self._states.setdefault(folder, _FolderState())
        if state.running:
            state.queued = True
            return

        state.running = True
        try:
            self.logger.info("Detected file change, rescanning: %s (reason=%s)", folder, reason)
            await self.rescan(folder)
        except asyncio.CancelledError:
            raise
        except Exception:
            self.logger.warning("Live rescan failed: %s", folder, exc_info=True)
        finally:
            state.running = False
            if state.queued:
                state.queued = False
                self.schedule_rescan(folder, "queued")
