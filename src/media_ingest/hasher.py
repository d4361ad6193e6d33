"""SHA-256 content fingerprints, streamed so large files never sit in memory."""

from __future__ import annotations

import asyncio
import errno
import hashlib
import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .path_validator import get_error_code
from .progress import ProgressReporter

if TYPE_CHECKING:
    from .config import IngestConfig
    from .models import HashResult

CHUNK_SIZE = 1024 * 1024

_QUIET_ERRNOS = frozenset({errno.EBUSY, errno.ENOENT, errno.EPERM, errno.EACCES})


def _full_digest(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            digest.update(chunk)
    return digest.hexdigest()


def _partial_digest(path: Path, size: int, window: int) -> str:
    # Size is mixed in so files sharing head and tail but differing in length stay distinct
    digest = hashlib.sha256()
    with path.open("rb") as f:
        digest.update(f.read(window))
        f.seek(size - window)
        digest.update(f.read(window))
    digest.update(str(size).encode("ascii"))
    return digest.hexdigest()


def compute_digest(path: Path, *, partial: bool = False, window: int = CHUNK_SIZE) -> str:
    """Compute a fingerprint synchronously. Raises OSError on I/O failure.

    Partial mode hashes only the first and last ``window`` bytes; files too
    small for two windows get the full digest.
    """
    if partial:
        size = path.stat().st_size
        if size > window * 2:
            return _partial_digest(path, size, window)
    return _full_digest(path)


class ContentHasher:
    """Computes file fingerprints off the event loop."""

    def __init__(self, config: IngestConfig, logger: logging.Logger) -> None:
        """Initialize the hasher.

        Args:
            config: Ingestion configuration.
            logger: Logger instance.

        """
        self.config = config
        self.logger = logger

    async def hash_file(self, path: Path, *, partial: bool = False) -> str | None:
        """Hash one file.

        Args:
            path: File to hash.
            partial: Hash only the head and tail windows. The result is not
                comparable with a full fingerprint of the same content.

        Returns:
            Hex digest, or None when the file could not be read.

        """
        try:
            return await asyncio.to_thread(
                compute_digest, path, partial=partial, window=self.config.partial_hash_window
            )
        except OSError as e:
            code = get_error_code(e) or "unknown"
            if e.errno in _QUIET_ERRNOS:
                self.logger.warning("Skipping hash of %s (%s)", path, code)
            else:
                self.logger.error("Failed to hash %s (%s): %s", path, code, e)
            return None

    async def hash_files(
        self,
        paths: Iterable[Path],
        *,
        partial: bool = False,
        on_progress: Callable[..., Any] | None = None,
        concurrency: int | None = None,
    ) -> HashResult:
        """Hash a batch of files with bounded concurrency.

        Args:
            paths: Files to hash.
            partial: Use partial hashing for every file.
            on_progress: Called with ``(current, total, path)`` after each file.
            concurrency: Maximum files hashed at once. Defaults to config.

        Returns:
            Mapping of path to fingerprint (None for unreadable files), in input order.

        """
        ordered = list(dict.fromkeys(paths))
        results: HashResult = dict.fromkeys(ordered)
        total = len(ordered)
        reporter = ProgressReporter(on_progress, self.logger, timeout=self.config.progress_timeout)
        semaphore = asyncio.Semaphore(max(1, concurrency or self.config.hash_concurrency))
        done = 0

        async def _one(path: Path) -> None:
            nonlocal done
            async with semaphore:
                results[path] = await self.hash_file(path, partial=partial)
            done += 1
            await reporter.emit(done, total, path)

        tasks = [asyncio.create_task(_one(p)) for p in ordered]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            # Stop the rest of the batch before the error reaches the caller
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        skipped = sum(1 for v in results.values() if v is None)
        self.logger.info("Hashed %d files (%d skipped)", total - skipped, skipped)
        return results
