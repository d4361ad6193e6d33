"""Path checks applied to every entry the scanner visits.

Limits follow the most restrictive common filesystem (Windows) so a catalog
built on one platform stays usable on another.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import os
import re
from pathlib import Path

from .models import PathErrorKind, PathValidationResult

MAX_PATH_LENGTH = 260

# Characters illegal in a Windows file name, plus control characters
_INVALID_CHARS = re.compile(r'[<>:"|?*\x00-\x1f]')
_SEPARATORS = re.compile(r"[\\/]")

SKIPPABLE_ERRNOS: frozenset[int] = frozenset({
    errno.EPERM,
    errno.EACCES,
    errno.ENOENT,
    errno.ENAMETOOLONG,
    errno.EBUSY,
})

logger = logging.getLogger(__name__)


def validate_length(path: str | Path) -> bool:
    """Return True when the path fits within MAX_PATH_LENGTH characters."""
    return len(str(path)) <= MAX_PATH_LENGTH


def validate_chars(path: str | Path) -> bool:
    """Return True when no path component contains an illegal character.

    The first component is not checked so a drive prefix such as ``C:`` passes.
    """
    parts = _SEPARATORS.split(str(path))
    return not any(part and _INVALID_CHARS.search(part) for part in parts[1:])


def validate_access_sync(path: str | Path) -> bool:
    """Return True when the path can be read. Never raises."""
    try:
        return os.access(path, os.R_OK)
    except (OSError, ValueError):
        return False


async def validate_access(path: str | Path) -> bool:
    """Async twin of :func:`validate_access_sync`, run off the event loop."""
    return await asyncio.to_thread(validate_access_sync, path)


def path_is_gone(path: str | Path) -> bool:
    """Return True only when the path definitely no longer exists.

    Permission and busy errors count as present, so a transient fault never
    looks like a deletion.
    """
    try:
        os.lstat(path)
    except (FileNotFoundError, NotADirectoryError):
        return True
    except (OSError, ValueError):
        return False
    return False


def _check_static(path: str | Path) -> PathValidationResult | None:
    if not validate_length(path):
        return PathValidationResult(
            valid=False,
            error=PathErrorKind.TOO_LONG,
            message=f"Path exceeds {MAX_PATH_LENGTH} characters",
        )
    if not validate_chars(path):
        return PathValidationResult(
            valid=False,
            error=PathErrorKind.INVALID_CHARS,
            message="Path contains invalid characters",
        )
    return None


def _access_failure(path: str | Path) -> PathValidationResult:
    if not os.path.lexists(path):
        return PathValidationResult(
            valid=False,
            error=PathErrorKind.NOT_FOUND,
            message="Path does not exist",
        )
    return PathValidationResult(
        valid=False,
        error=PathErrorKind.INACCESSIBLE,
        message="Path is not accessible",
    )


def validate_path_sync(path: str | Path) -> PathValidationResult:
    """Validate length, characters and read access, in that order.

    Used inside the scan loop, where a per-call suspension would cost more
    than the stat it wraps.

    Args:
        path: Path to validate.

    Returns:
        The first failing check, or ``valid=True``.

    """
    try:
        if failure := _check_static(path):
            return failure
        if not validate_access_sync(path):
            return _access_failure(path)
        return PathValidationResult(valid=True)
    except Exception:
        logger.warning("Path validation failed unexpectedly: %s", path, exc_info=True)
        return PathValidationResult(
            valid=False,
            error=PathErrorKind.INACCESSIBLE,
            message="Validation failed unexpectedly",
        )


async def validate_path(path: str | Path) -> PathValidationResult:
    """Async twin of :func:`validate_path_sync`."""
    try:
        if failure := _check_static(path):
            return failure
        if not await validate_access(path):
            return await asyncio.to_thread(_access_failure, path)
        return PathValidationResult(valid=True)
    except Exception:
        logger.warning("Path validation failed unexpectedly: %s", path, exc_info=True)
        return PathValidationResult(
            valid=False,
            error=PathErrorKind.INACCESSIBLE,
            message="Validation failed unexpectedly",
        )


def is_skippable_error(err: BaseException) -> bool:
    """Return True for filesystem errors that should skip one item, not abort a batch."""
    return isinstance(err, OSError) and err.errno in SKIPPABLE_ERRNOS


def get_error_code(err: BaseException) -> str | None:
    """Return the symbolic errno name (e.g. ``"ENOENT"``) of a filesystem error."""
    code = getattr(err, "errno", None)
    if not isinstance(code, int):
        return None
    return errno.errorcode.get(code)
