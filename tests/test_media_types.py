"""Tests for media classification."""

from __future__ import annotations

from pathlib import Path

import pytest

from media_ingest.media_types import classify, classify_extension, classify_signature, is_candidate
from media_ingest.models import MediaType


class TestClassifyExtension:
    """Tests for extension-based classification."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("clip.mp4", MediaType.VIDEO),
            ("clip.MKV", MediaType.VIDEO),
            ("photo.jpeg", MediaType.IMAGE),
            ("anim.gif", MediaType.IMAGE),
            ("comic.cbz", MediaType.ARCHIVE),
            ("song.flac", MediaType.AUDIO),
            ("notes.txt", None),
        ],
    )
    def test_extensions(self, name: str, expected: MediaType | None) -> None:
        """Test known and unknown suffixes."""
        assert classify_extension(Path(name)) is expected


class TestClassifySignature:
    """Tests for magic-number sniffing."""

    @pytest.mark.parametrize(
        "head,expected",
        [
            (b"\xff\xd8\xff\xe0" + b"\x00" * 12, MediaType.IMAGE),
            (b"\x89PNG\r\n\x1a\n" + b"\x00" * 8, MediaType.IMAGE),
            (b"RIFF\x00\x00\x00\x00WEBPVP8 ", MediaType.IMAGE),
            (b"RIFF\x00\x00\x00\x00AVI LIST", MediaType.VIDEO),
            (b"RIFF\x00\x00\x00\x00WAVEfmt ", MediaType.AUDIO),
            (b"\x00\x00\x00\x18ftypisom", MediaType.VIDEO),
            (b"\x00\x00\x00\x18ftypM4A ", MediaType.AUDIO),
            (b"\x1a\x45\xdf\xa3" + b"\x00" * 12, MediaType.VIDEO),
            (b"PK\x03\x04" + b"\x00" * 12, MediaType.ARCHIVE),
            (b"ID3\x04" + b"\x00" * 12, MediaType.AUDIO),
            (b"plain text here.", None),
        ],
    )
    def test_signatures(self, head: bytes, expected: MediaType | None) -> None:
        """Test recognised and unrecognised headers."""
        assert classify_signature(head) is expected


class TestClassify:
    """Tests for file classification."""

    def test_suffix_wins(self, tmp_path: Path) -> None:
        """Test that files with a suffix are not sniffed."""
        path = tmp_path / "fake.mp4"
        path.write_bytes(b"\x89PNG\r\n\x1a\n")

        assert classify(path) is MediaType.VIDEO

    def test_suffixless_is_sniffed(self, tmp_path: Path) -> None:
        """Test that extension-less files are classified by content."""
        path = tmp_path / "IMG0001"
        path.write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 32)

        assert classify(path) is MediaType.IMAGE

    def test_suffixless_missing_raises(self, tmp_path: Path) -> None:
        """Test that an unreadable extension-less file raises OSError."""
        with pytest.raises(OSError):
            classify(tmp_path / "gone")

    def test_is_candidate(self) -> None:
        """Test which names the walker considers."""
        assert is_candidate(Path("a.JPG")) is True
        assert is_candidate(Path("README")) is True
        assert is_candidate(Path("notes.txt")) is False
