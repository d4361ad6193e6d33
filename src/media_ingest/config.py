"""Configuration management for the media ingestion pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

_TRUE_VALUES = frozenset({"true", "yes", "on", "1"})


def parse_bool(value: Any, default: bool) -> bool:
    """Parse a YAML/env style boolean, falling back to ``default`` for None."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    return str(value).strip().lower() in _TRUE_VALUES


def _expand(value: str) -> Path:
    return Path(os.path.expanduser(value))


@dataclass
class IngestConfig:
    """Configuration for scanning, hashing and preview generation."""

    # Folders watched for changes by the `watch` command
    watch_directories: list[Path] = field(default_factory=list)

    # Profile whose artifact directory previews are written into
    profile_id: str = "_global"

    # Base directory for generated thumbnails and preview frames
    artifact_root: Path = field(
        default_factory=lambda: Path.home() / ".local/share/media-ingest/thumbnails"
    )

    # Hashing
    hash_on_scan: bool = True
    partial_hash_for_video: bool = True
    hash_concurrency: int = 4
    partial_hash_window: int = 1024 * 1024  # 1 MiB head + 1 MiB tail

    # Previews
    previews_on_scan: bool = True
    thumbnail_resolution: int = 320
    preview_frame_count: int = 6
    preview_frame_width: int = 320
    regenerate_concurrency: int = 2

    # External tools
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    tool_timeout: float = 30.0

    # Seconds an async progress sink may take before the event is dropped
    progress_timeout: float = 1.0

    # Seconds of quiet before a watched folder is rescanned
    watch_debounce: float = 1.5

    # Logging
    log_file: Path = field(
        default_factory=lambda: Path.home() / ".local/state/media-ingest/media-ingest.log"
    )
    log_level: str = "INFO"

    @classmethod
    def get_config_path(cls) -> Path:
        """Get the default configuration file path."""
        return Path.home() / ".config/media-ingest/config.yaml"

    @classmethod
    def load(cls, config_path: Path | None = None) -> IngestConfig:
        """Load configuration from YAML file.

        Args:
            config_path: Path to config file. Uses default if None.

        Returns:
            Loaded configuration.

        """
        if config_path is None:
            config_path = cls.get_config_path()

        if not config_path.exists():
            return cls()

        try:
            with config_path.open(encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}") from e

        config = cls._from_dict(data)
        config.validate()
        return config

    def validate(self) -> None:
        """Reject settings the pipeline cannot run with.

        Raises:
            ValueError: A size, count or timeout is not positive.

        """
        for name in (
            "partial_hash_window",
            "thumbnail_resolution",
            "preview_frame_width",
            "tool_timeout",
            "progress_timeout",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.watch_debounce < 0:
            raise ValueError("watch_debounce must not be negative")

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> IngestConfig:
        """Create config from dictionary."""
        config = cls()

        if "watch_directories" in data:
            config.watch_directories = [_expand(p) for p in data["watch_directories"] or []]
        if "profile_id" in data:
            config.profile_id = str(data["profile_id"])

        if "artifacts" in data:
            artifacts = data["artifacts"] or {}
            if "root" in artifacts:
                config.artifact_root = _expand(artifacts["root"])

        if "hashing" in data:
            hashing = data["hashing"] or {}
            config.hash_on_scan = parse_bool(hashing.get("on_scan"), config.hash_on_scan)
            config.partial_hash_for_video = parse_bool(
                hashing.get("partial_for_video"), config.partial_hash_for_video
            )
            if "concurrency" in hashing:
                config.hash_concurrency = max(1, int(hashing["concurrency"]))
            if "partial_window" in hashing:
                config.partial_hash_window = int(hashing["partial_window"])

        if "previews" in data:
            previews = data["previews"] or {}
            config.previews_on_scan = parse_bool(previews.get("on_scan"), config.previews_on_scan)
            if "thumbnail_resolution" in previews:
                config.thumbnail_resolution = int(previews["thumbnail_resolution"])
            if "frame_count" in previews:
                config.preview_frame_count = max(1, int(previews["frame_count"]))
            if "frame_width" in previews:
                config.preview_frame_width = int(previews["frame_width"])
            if "regenerate_concurrency" in previews:
                config.regenerate_concurrency = max(1, int(previews["regenerate_concurrency"]))

        if "tools" in data:
            tools = data["tools"] or {}
            if "ffmpeg" in tools:
                config.ffmpeg_path = str(tools["ffmpeg"])
            if "ffprobe" in tools:
                config.ffprobe_path = str(tools["ffprobe"])
            if "timeout" in tools:
                config.tool_timeout = float(tools["timeout"])

        if "progress" in data:
            progress = data["progress"] or {}
            if "timeout" in progress:
                config.progress_timeout = float(progress["timeout"])

        if "watch" in data:
            watch = data["watch"] or {}
            if "debounce_seconds" in watch:
                config.watch_debounce = float(watch["debounce_seconds"])

        if "logging" in data:
            logging_cfg = data["logging"] or {}
            if "file" in logging_cfg:
                config.log_file = _expand(logging_cfg["file"])
            if "level" in logging_cfg:
                config.log_level = str(logging_cfg["level"]).upper()

        return config

    def save(self, config_path: Path | None = None) -> None:
        """Save configuration to YAML file.

        Args:
            config_path: Path to save config. Uses default if None.

        """
        if config_path is None:
            config_path = self.get_config_path()

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "watch_directories": [str(p) for p in self.watch_directories],
            "profile_id": self.profile_id,
            "artifacts": {"root": str(self.artifact_root)},
            "hashing": {
                "on_scan": self.hash_on_scan,
                "partial_for_video": self.partial_hash_for_video,
                "concurrency": self.hash_concurrency,
                "partial_window": self.partial_hash_window,
            },
            "previews": {
                "on_scan": self.previews_on_scan,
                "thumbnail_resolution": self.thumbnail_resolution,
                "frame_count": self.preview_frame_count,
                "frame_width": self.preview_frame_width,
                "regenerate_concurrency": self.regenerate_concurrency,
            },
            "tools": {
                "ffmpeg": self.ffmpeg_path,
                "ffprobe": self.ffprobe_path,
                "timeout": self.tool_timeout,
            },
            "progress": {"timeout": self.progress_timeout},
            "watch": {"debounce_seconds": self.watch_debounce},
            "logging": {
                "file": str(self.log_file),
                "level": self.log_level,
            },
        }

        with config_path.open("w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
