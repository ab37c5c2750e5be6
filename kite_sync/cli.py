"""
Command-line interface for kite-sync.

This module implements the CLI using Click, providing the commands to
synchronize the local mirror, enrich songs with metadata and export album
art. rich-click is used for the output colors.

Commands:
    kite-sync --sync                            Pull remote changes into the database
    kite-sync --fill <path> --text --image      Extract tags and artwork for files under a path
    kite-sync --fill <path> --playable          Cache files (or refresh their URLs) for playback
    kite-sync --art <media-id> --out <file>     Write the embedded artwork of an entry

Options:
    --config <file>                             Use another config.yaml
    --metered                                   Treat the network as metered for this run
    --verbose                                   Show DEBUG messages on the console

Usage:
    # First run: full listing of the remote
    kite-sync --sync

    # Sync, then enrich everything under /Music
    kite-sync --sync --fill /Music --text --image

    # Export artwork
    kite-sync --art 42 --out cover.jpg

Configuration:
    The CLI requires a config.yaml file in the current directory (or the
    one passed with --config) with:
    - Remote access token and endpoints
    - Storage directory (database, logs, album art)
    - Song cache directory and capacity

Exit Codes:
    0   Success
    1   Configuration or usage error
    2   Database error
    3   Remote service error
    4   Other kite-sync error
    130 Interrupted by user
"""

import sys
from pathlib import Path

import rich_click as click
from tqdm import tqdm

# Configure rich-click for better help formatting
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = ""
click.rich_click.MAX_WIDTH = 100
click.rich_click.OPTION_GROUPS = {
    "cli": [
        {
            "name": "Synchronization",
            "options": ["--sync"],
        },
        {
            "name": "Metadata",
            "options": ["--fill", "--text", "--image", "--playable"],
        },
        {
            "name": "Album Art",
            "options": ["--art", "--out"],
        },
        {
            "name": "Advanced Options",
            "options": ["--config", "--metered", "--verbose"],
        },
        {
            "name": "Info",
            "options": ["--version", "--help"],
        },
    ],
}

from kite_sync import __version__
from kite_sync.core import (
    Config,
    ConfigError,
    DatabaseError,
    KiteSyncError,
    RemoteServiceError,
    get_logger,
    load_config,
    setup_logging,
    shutdown_logging,
)
from kite_sync.library import CacheFlags
from kite_sync.sync import SyncService

logger = get_logger(__name__)


@click.command()
@click.option(
    "--sync",
    is_flag=True,
    help="Pull remote changes into the local database"
)
@click.option(
    "--fill",
    "fill_path",
    type=str,
    default=None,
    metavar="<remote-path>",
    help="Fill song metadata for every file under a remote path"
)
@click.option(
    "--text",
    is_flag=True,
    help="With --fill: extract text tags"
)
@click.option(
    "--image",
    is_flag=True,
    help="With --fill: extract and cache album art"
)
@click.option(
    "--playable",
    is_flag=True,
    help="With --fill: make files playable (cache or refresh URL)"
)
@click.option(
    "--art",
    "art_media_id",
    type=int,
    default=None,
    metavar="<media-id>",
    help="Export the embedded album art of an entry"
)
@click.option(
    "--out",
    "out_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    metavar="<file>",
    help="With --art: destination file"
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    metavar="<config.yaml>",
    help="Configuration file (default: ./config.yaml)"
)
@click.option(
    "--metered",
    is_flag=True,
    help="Treat the network as metered for this run"
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Show debug messages on the console"
)
@click.option(
    "--version",
    is_flag=True,
    help="Show version and exit."
)
@click.pass_context
def cli(
    ctx: click.Context,
    sync: bool,
    fill_path: str | None,
    text: bool,
    image: bool,
    playable: bool,
    art_media_id: int | None,
    out_file: Path | None,
    config_path: Path | None,
    metered: bool,
    verbose: bool,
    version: bool
) -> None:
    """
    kite-sync: Mirror a remote music folder and its metadata locally.

    Keeps a local database of the remote file tree up to date, extracts
    tags and artwork from audio files and caches files for playback.

    \b
    BASIC USAGE:
        kite-sync --sync                              # Pull remote changes
        kite-sync --fill /Music --text --image        # Extract tags and artwork

    \b
    PLAYBACK:
        kite-sync --fill /Music/Album --playable      # Cache files or refresh URLs

    \b
    ALBUM ART:
        kite-sync --art 42 --out cover.jpg
    """
    if version:
        click.echo(f"kite-sync {__version__}")
        ctx.exit(0)

    if not sync and fill_path is None and art_media_id is None:
        click.echo(ctx.get_help())
        ctx.exit(0)

    flag_options = text or image or playable
    if flag_options and fill_path is None:
        raise click.UsageError("--text, --image and --playable require --fill")
    if fill_path is not None and not flag_options:
        raise click.UsageError("--fill requires at least one of --text, --image, --playable")

    if art_media_id is not None and out_file is None:
        raise click.UsageError("--art requires --out")
    if out_file is not None and art_media_id is None:
        raise click.UsageError("--out can only be used with --art")

    cache_flags = CacheFlags.NONE
    if text:
        cache_flags |= CacheFlags.METADATA_TEXT
    if image:
        cache_flags |= CacheFlags.METADATA_IMAGE
    if playable:
        cache_flags |= CacheFlags.SONG_PLAYABLE

    _run({
        "sync": sync,
        "fill_path": fill_path,
        "cache_flags": cache_flags,
        "art_media_id": art_media_id,
        "out_file": out_file,
        "config_path": config_path,
        "metered": metered,
        "verbose": verbose,
    })


def _run(options: dict) -> None:
    """
    Execute the requested operations in order: sync, fill, art.

    Args:
        options: Dictionary with CLI options.

    Raises:
        SystemExit: On fatal errors (with appropriate exit code).
    """
    service: SyncService | None = None

    try:
        config = _load_configuration(options["config_path"])

        setup_logging(config.storage.directory, verbose=options["verbose"])
        logger.info(f"kite-sync {__version__} starting")

        service = SyncService.from_config(config)
        if options["metered"]:
            service.network.set_metered(True)

        if options["sync"]:
            _run_sync(service)

        if options["fill_path"] is not None:
            _run_fill(service, options["fill_path"], options["cache_flags"])

        if options["art_media_id"] is not None:
            _run_art(service, options["art_media_id"], options["out_file"])

    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(1)

    except DatabaseError as e:
        click.echo(f"Database error: {e.message}", err=True)
        logger.error(f"Database error: {e}")
        sys.exit(2)

    except RemoteServiceError as e:
        click.echo(f"Remote service error: {e.message}", err=True)
        if e.is_auth_error:
            click.echo("Check your access_token in config.yaml", err=True)
        logger.error(f"Remote service error: {e}")
        sys.exit(3)

    except KiteSyncError as e:
        click.echo(f"Error: {e.message}", err=True)
        logger.error(f"Error: {e}")
        sys.exit(4)

    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        logger.warning("Interrupted by user")
        sys.exit(130)

    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        logger.exception("Unexpected error")
        sys.exit(1)

    finally:
        if service is not None:
            service.close()
        shutdown_logging()


def _load_configuration(config_path: Path | None) -> Config:
    """
    Load and validate configuration from config.yaml.

    Raises:
        ConfigError: If configuration is invalid or missing.
    """
    return load_config(config_path)


def _run_sync(service: SyncService) -> None:
    logger.info("Synchronizing with remote storage")

    with tqdm(desc="Synchronizing", unit=" entries", leave=False) as progress:
        for _ in service.synchronize_entry_db():
            progress.update(1)
        synced = progress.n

    logger.info(f"Synchronization complete: {synced} entries updated")


def _run_fill(service: SyncService, path: str, cache_flags: CacheFlags) -> None:
    files = service.database.list_files_under(path)
    if not files:
        logger.warning(f"No files found under {path}. Run with --sync first.")
        return

    logger.info(f"Filling metadata for {len(files)} files under {path}")

    playable = 0
    for entry in tqdm(service.fill_song_metadata(files, cache_flags), total=len(files), desc="Filling", leave=False):
        if entry.song is not None and entry.song.download_url is not None:
            playable += 1

    queue = service.metadata_sync_queue
    logger.info(f"Waiting for {queue.pending_count()} queued metadata requests")
    queue.wait_until_idle()

    if CacheFlags.SONG_PLAYABLE in cache_flags:
        logger.info(f"{playable} files have a fresh download URL")
    logger.info("Metadata fill complete")


def _run_art(service: SyncService, media_id: int, out_file: Path) -> None:
    for picture in service.get_album_art(media_id):
        out_file.write_bytes(picture)
        logger.info(f"Album art written to {out_file} ({len(picture)} bytes)")
        return

    logger.warning(f"No album art available for media id {media_id}")


if __name__ == "__main__":
    cli()
