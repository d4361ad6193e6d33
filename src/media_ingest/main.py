"""Main entry point for the media-ingest command line."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

from .catalog import InMemoryCatalog
from .config import IngestConfig
from .duplicates import DuplicateGroup, duplicate_stats
from .media_types import classify
from .models import MediaType, ScanPhase, ScanProgress
from .path_validator import validate_path_sync
from .service import IngestService


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments.

    """
    parser = argparse.ArgumentParser(
        prog="media-ingest",
        description="Scan media folders, fingerprint files and build preview thumbnails",
    )

    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=None,
        help="Path to configuration file",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    scan_parser = subparsers.add_parser("scan", help="Scan a folder and list discovered media")
    scan_parser.add_argument("directory", type=Path, help="Folder to scan")
    scan_parser.add_argument(
        "--no-previews",
        action="store_true",
        help="Skip thumbnail and preview frame generation",
    )

    hash_parser = subparsers.add_parser("hash", help="Fingerprint files")
    hash_parser.add_argument("files", type=Path, nargs="+", help="Files to hash")
    hash_parser.add_argument(
        "--partial",
        action="store_true",
        help="Hash only the first and last 1 MiB (faster, not comparable to full hashes)",
    )

    probe_parser = subparsers.add_parser("probe", help="Show what the pipeline sees for a file")
    probe_parser.add_argument("file", type=Path)

    thumb_parser = subparsers.add_parser("thumbnail", help="Generate a thumbnail for one file")
    thumb_parser.add_argument("file", type=Path)
    thumb_parser.add_argument("--resolution", "-r", type=int, default=None, help="Maximum width in pixels")

    dup_parser = subparsers.add_parser("duplicates", help="Scan a folder and report duplicate files")
    dup_parser.add_argument("directory", type=Path)

    subparsers.add_parser("watch", help="Watch configured folders and rescan on change")

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_parser.add_argument(
        "--init",
        action="store_true",
        help="Create default configuration file",
    )
    config_parser.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration",
    )

    return parser.parse_args(argv)


def _human_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


async def _scan_with_progress(service: IngestService, directory: Path) -> None:
    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        transient=True,
    ) as progress:
        task = progress.add_task("Counting", total=None)

        def on_progress(event: ScanProgress) -> None:
            if event.phase is ScanPhase.SCANNING:
                progress.update(task, description="Scanning", completed=event.current, total=event.total)

        await service.scan_folder(directory, on_progress)


def cmd_scan(service: IngestService, args: argparse.Namespace) -> int:
    """Execute scan command.

    Args:
        service: Ingestion service.
        args: Parsed arguments.

    Returns:
        Exit code.

    """
    console = Console()
    if args.no_previews:
        service.config.previews_on_scan = False

    asyncio.run(_scan_with_progress(service, args.directory))

    records = list(service.catalog.records.values()) if isinstance(service.catalog, InMemoryCatalog) else []
    if not records:
        console.print("[yellow]No media files found[/yellow]")
        return 0

    table = Table(title=f"Found {len(records)} media files")
    table.add_column("File", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Size", justify="right")
    table.add_column("Hash", style="dim")
    table.add_column("Thumbnail", style="dim")

    for record in sorted(records, key=lambda r: str(r.path)):
        fingerprint = record.content_hash[:12] if record.content_hash else "-"
        if record.hash_mode == "partial":
            fingerprint += " (partial)"
        table.add_row(
            str(record.path.relative_to(args.directory) if record.path.is_relative_to(args.directory) else record.path),
            record.media_type.value,
            _human_size(record.size),
            fingerprint,
            record.thumbnail_path.name if record.thumbnail_path else "-",
        )

    console.print(table)
    return 0


def cmd_hash(service: IngestService, args: argparse.Namespace) -> int:
    """Execute hash command."""
    console = Console()
    results = asyncio.run(service.hash_files(args.files, partial=args.partial))

    table = Table(title="Partial fingerprints" if args.partial else "Fingerprints")
    table.add_column("File", style="cyan")
    table.add_column("SHA-256", style="green", overflow="fold")

    failed = 0
    for path, fingerprint in results.items():
        if fingerprint is None:
            failed += 1
            table.add_row(str(path), "[red]unreadable[/red]")
        else:
            table.add_row(str(path), fingerprint)

    console.print(table)
    return 1 if failed else 0


def cmd_probe(service: IngestService, args: argparse.Namespace) -> int:
    """Execute probe command."""
    console = Console()
    path: Path = args.file

    validation = validate_path_sync(path)
    table = Table(title=str(path))
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Valid path", "yes" if validation.valid else f"no ({validation.message})")

    if not validation.valid:
        console.print(table)
        return 1

    try:
        media_type = classify(path)
    except OSError as e:
        console.print(f"[red]Cannot read {path}: {e}[/red]")
        return 1
    table.add_row("Media type", media_type.value if media_type else "not media")

    async def _probe() -> tuple[str, bool]:
        duration = await service.previews.get_video_duration(path) if media_type is MediaType.VIDEO else ""
        animated = await service.previews.check_is_animated(path)
        return duration, animated

    duration, animated = asyncio.run(_probe())
    table.add_row("Duration", duration or "-")
    table.add_row("Animated", "yes" if animated else "no")
    console.print(table)
    return 0


def cmd_thumbnail(service: IngestService, args: argparse.Namespace) -> int:
    """Execute thumbnail command."""
    console = Console()
    try:
        media_type = classify(args.file)
    except OSError as e:
        console.print(f"[red]Cannot read {args.file}: {e}[/red]")
        return 1

    result = asyncio.run(service.previews.generate_thumbnail(args.file, args.resolution, media_type=media_type))
    if result is None:
        console.print("[red]Thumbnail generation failed[/red]")
        return 1
    console.print(f"[green]Thumbnail: {result}[/green]")
    return 0


def cmd_duplicates(service: IngestService, args: argparse.Namespace) -> int:
    """Execute duplicates command."""
    console = Console()
    service.config.previews_on_scan = False
    service.config.partial_hash_for_video = False

    async def _run() -> list[DuplicateGroup]:
        await service.scan_folder(args.directory)
        files = service.catalog.discovered_files() if isinstance(service.catalog, InMemoryCatalog) else []
        return await service.find_duplicates(files)

    groups = asyncio.run(_run())
    if not groups:
        console.print("[green]No duplicate files found[/green]")
        return 0

    stats = duplicate_stats(groups)
    table = Table(title=f"{stats.total_groups} duplicate groups, {_human_size(stats.wasted_space)} wasted")
    table.add_column("Hash", style="dim")
    table.add_column("Size", justify="right")
    table.add_column("Files", style="cyan")

    for group in groups:
        table.add_row(group.hash[:12], _human_size(group.size), "\n".join(str(f.path) for f in group.files))

    console.print(table)
    return 0


def cmd_watch(service: IngestService, args: argparse.Namespace) -> int:
    """Execute watch command."""
    if not service.config.watch_directories:
        Console().print("[yellow]No watch_directories configured[/yellow]")
        return 1
    asyncio.run(service.run_watch())
    return 0


def cmd_config(config: IngestConfig, args: argparse.Namespace) -> int:
    """Execute config command.

    Args:
        config: Ingestion configuration.
        args: Parsed arguments.

    Returns:
        Exit code.

    """
    console = Console()

    if args.init:
        config_path = args.config or IngestConfig.get_config_path()
        if config_path.exists():
            console.print(f"[yellow]Config already exists: {config_path}[/yellow]")
            return 1
        config.save(config_path)
        console.print(f"[green]Created config: {config_path}[/green]")
        return 0

    if args.show:
        table = Table(title="Current Configuration")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Watch directories", "\n".join(str(d) for d in config.watch_directories) or "-")
        table.add_row("Profile", config.profile_id)
        table.add_row("Artifact root", str(config.artifact_root))
        table.add_row("Hash on scan", str(config.hash_on_scan))
        table.add_row("Partial hash for video", str(config.partial_hash_for_video))
        table.add_row("Previews on scan", str(config.previews_on_scan))
        table.add_row("Thumbnail width", f"{config.thumbnail_resolution}px")
        table.add_row("Preview frames", str(config.preview_frame_count))
        table.add_row("ffmpeg / ffprobe", f"{config.ffmpeg_path} / {config.ffprobe_path}")
        table.add_row("Log file", str(config.log_file))
        table.add_row("Log level", config.log_level)

        console.print(table)
        return 0

    console.print("[yellow]Use --init or --show[/yellow]")
    return 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Returns:
        Exit code.

    """
    args = parse_args(argv)
    config = IngestConfig.load(args.config)

    if args.command is None:
        Console().print("[yellow]No command given; see --help[/yellow]")
        return 1
    if args.command == "config":
        return cmd_config(config, args)

    service = IngestService(config)
    commands = {
        "scan": cmd_scan,
        "hash": cmd_hash,
        "probe": cmd_probe,
        "thumbnail": cmd_thumbnail,
        "duplicates": cmd_duplicates,
        "watch": cmd_watch,
    }
    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}")
        return 1
    return handler(service, args)


if __name__ == "__main__":
    sys.exit(main())
