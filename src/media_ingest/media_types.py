"""Classify files as video, image, archive or audio."""

from __future__ import annotations

from pathlib import Path

from .models import MediaType

VIDEO_EXTENSIONS: frozenset[str] = frozenset({".mp4", ".mkv", ".avi", ".mov", ".webm", ".wmv", ".m4v"})
IMAGE_EXTENSIONS: frozenset[str] = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".svg"})
ARCHIVE_EXTENSIONS: frozenset[str] = frozenset({".zip", ".cbz", ".rar", ".cbr", ".7z"})
AUDIO_EXTENSIONS: frozenset[str] = frozenset({".mp3", ".wav", ".flac", ".m4a", ".ogg", ".aac", ".wma"})

_BY_EXTENSION: dict[str, MediaType] = {
    **{ext: MediaType.VIDEO for ext in VIDEO_EXTENSIONS},
    **{ext: MediaType.IMAGE for ext in IMAGE_EXTENSIONS},
    **{ext: MediaType.ARCHIVE for ext in ARCHIVE_EXTENSIONS},
    **{ext: MediaType.AUDIO for ext in AUDIO_EXTENSIONS},
}

# Bytes needed to recognise every signature below
SIGNATURE_BYTES = 16


def classify_extension(path: Path) -> MediaType | None:
    """Classify a path by its (case-insensitive) suffix."""
    return _BY_EXTENSION.get(path.suffix.lower())


def classify_signature(head: bytes) -> MediaType | None:
    """Classify leading file bytes by magic number."""
    if head.startswith(b"\xff\xd8\xff") or head.startswith(b"\x89PNG\r\n\x1a\n"):
        return MediaType.IMAGE
    if head.startswith((b"GIF87a", b"GIF89a", b"BM")):
        return MediaType.IMAGE
    if head[:4] == b"RIFF":
        if head[8:12] == b"WEBP":
            return MediaType.IMAGE
        if head[8:12] == b"AVI ":
            return MediaType.VIDEO
        if head[8:12] == b"WAVE":
            return MediaType.AUDIO
        return None
    if head[4:8] == b"ftyp":
        return MediaType.AUDIO if head[8:11] == b"M4A" else MediaType.VIDEO
    if head.startswith(b"\x1a\x45\xdf\xa3"):
        return MediaType.VIDEO
    if head.startswith((b"PK\x03\x04", b"Rar!\x1a\x07", b"7z\xbc\xaf\x27\x1c")):
        return MediaType.ARCHIVE
    if head.startswith((b"ID3", b"fLaC", b"OggS")) or head[:2] in (b"\xff\xfb", b"\xff\xf3"):
        return MediaType.AUDIO
    return None


def is_candidate(path: Path) -> bool:
    """Return True when a file might be media: a known suffix, or no suffix at all."""
    return not path.suffix or path.suffix.lower() in _BY_EXTENSION


def classify(path: Path) -> MediaType | None:
    """Classify a file by extension, sniffing the signature only for suffix-less files.

    Reads at most SIGNATURE_BYTES. Raises OSError when the file cannot be read.
    """
    if path.suffix:
        return classify_extension(path)
    with path.open("rb") as f:
        return classify_signature(f.read(SIGNATURE_BYTES))
