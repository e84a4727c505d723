"""CLI entry point for deeptile."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from tqdm import tqdm

from deeptile.config import (
    DEFAULT_MAX_PARALLELISM,
    DEFAULT_TILE_SIZE,
    JPEG_QUALITY,
    TILE_FORMAT,
    TILE_FORMATS,
)
from deeptile.core.cache import create_tile_cache
from deeptile.core.errors import DeepTileError, PyramidBuildError
from deeptile.core.types import Viewport
from deeptile.preprocess import PyramidStatus, build_pyramid, check_pyramid_status, read_pyramid_metadata
from deeptile.render import ViewportCompositor
from deeptile.storage import FileSystemTileStore

logger = logging.getLogger(__name__)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Generate deep-zoom tile pyramids and render viewports from them."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.argument("source", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "-o",
    "--output",
    type=click.Path(file_okay=False),
    required=True,
    help="Pyramid directory (receives z{level}/y{y}_x{x}.{ext} tiles)",
)
@click.option(
    "--tile-size",
    "-t",
    type=click.IntRange(16, 4096),
    default=DEFAULT_TILE_SIZE,
    help=f"Tile size in pixels (default: {DEFAULT_TILE_SIZE})",
)
@click.option(
    "--parallel",
    "-p",
    type=int,
    default=DEFAULT_MAX_PARALLELISM,
    help="Tiles produced concurrently; 1 = sequential, 0 = unbounded "
         f"(default: {DEFAULT_MAX_PARALLELISM})",
)
@click.option(
    "--quality",
    "-q",
    type=click.IntRange(1, 100),
    default=JPEG_QUALITY,
    help=f"JPEG quality (default: {JPEG_QUALITY})",
)
@click.option(
    "--format",
    "tile_format",
    type=click.Choice(sorted(TILE_FORMATS)),
    default=TILE_FORMAT,
    help=f"Tile format (default: {TILE_FORMAT})",
)
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Rebuild even if the pyramid is already complete",
)
def build(
    source: str,
    output: str,
    tile_size: int,
    parallel: int,
    quality: int,
    tile_format: str,
    force: bool,
) -> None:
    """Slice SOURCE into a tile pyramid.

    Examples:

        # Default 256px JPEG tiles
        python -m deeptile build map.png -o ./map_tiles

        # Lossless tiles, sequential and reproducible
        python -m deeptile build map.png -o ./map_tiles --format png -p 1
    """
    source_path = Path(source)
    output_dir = Path(output)

    click.echo(click.style("deeptile build", fg="cyan", bold=True))
    click.echo(f"Source: {source_path}")
    click.echo(f"Output directory: {output_dir}")
    click.echo(f"Tile size: {tile_size}px | Format: {tile_format} Q{quality} | Parallel: {parallel}")

    pbar: tqdm | None = None

    def on_progress(stage: str, current: int, total: int) -> None:
        nonlocal pbar
        if pbar is None:
            pbar = tqdm(total=total, desc="Generating tiles", unit="tile")
        pbar.n = current
        pbar.refresh()

    try:
        result = build_pyramid(
            source_path,
            output_dir,
            tile_size=tile_size,
            tile_format=tile_format,
            quality=quality,
            max_parallelism=parallel,
            progress_callback=on_progress,
            force=force,
        )
    except PyramidBuildError as e:
        click.echo(click.style(f"\nPartial pyramid: {e}", fg="red"), err=True)
        for address, error in e.failures:
            click.echo(f"  {address.key}: {error}", err=True)
        sys.exit(1)
    except DeepTileError as e:
        click.echo(click.style(f"\nError: {e}", fg="red"), err=True)
        sys.exit(1)
    finally:
        if pbar is not None:
            pbar.close()

    if result is None:
        click.echo(click.style("Already complete (use --force to rebuild)", fg="cyan"))
        return
    metadata = read_pyramid_metadata(result)
    if metadata is not None:
        click.echo(click.style("Completed: ", bold=True) + click.style(
            f"{metadata.tile_count} tiles in {len(metadata.levels)} levels", fg="green"
        ))


@main.command()
@click.argument("tiles", type=click.Path(exists=True, file_okay=False))
@click.argument("output", type=click.Path(dir_okay=False))
@click.option("--x", "offset_x", type=float, default=0.0, help="Horizontal offset (full-resolution px)")
@click.option("--y", "offset_y", type=float, default=0.0, help="Vertical offset (full-resolution px)")
@click.option("--zoom", type=float, default=1.0, help="Zoom factor in (0, 1]; 0.5 = level 1")
@click.option("--width", type=click.IntRange(1), default=800, help="Output width")
@click.option("--height", type=click.IntRange(1), default=600, help="Output height")
@click.option("--parallel", is_flag=True, help="Fetch tiles concurrently")
@click.option(
    "--quality",
    "-q",
    type=click.IntRange(1, 100),
    default=JPEG_QUALITY,
    help=f"JPEG quality (default: {JPEG_QUALITY})",
)
def render(
    tiles: str,
    output: str,
    offset_x: float,
    offset_y: float,
    zoom: float,
    width: int,
    height: int,
    parallel: bool,
    quality: int,
) -> None:
    """Render a viewport of the pyramid in TILES to OUTPUT (.jpg or .png)."""
    store = FileSystemTileStore.open(tiles)
    metadata = store.read_metadata() or {}
    tile_size = metadata.get("tile_size", DEFAULT_TILE_SIZE)

    try:
        viewport = Viewport(offset_x, offset_y, zoom, width, height)
        with create_tile_cache() as cache:
            compositor = ViewportCompositor(tile_size=tile_size, cache=cache)
            compositor.render_to_file(store, viewport, Path(output), quality=quality, parallel=parallel)
    except DeepTileError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)
    click.echo(f"Saved {width}x{height} viewport to {output}")


@main.command()
@click.argument("tiles", type=click.Path(exists=True, file_okay=False))
def info(tiles: str) -> None:
    """Show the status and levels of the pyramid in TILES."""
    pyramid_dir = Path(tiles)
    status = check_pyramid_status(pyramid_dir)
    color = "green" if status == PyramidStatus.COMPLETE else "yellow"
    click.echo("Status: " + click.style(status.value, fg=color))

    metadata = read_pyramid_metadata(pyramid_dir)
    if metadata is None:
        return
    width, height = metadata.dimensions
    click.echo(f"Source: {metadata.source_file or '-'} ({width} x {height})")
    click.echo(f"Tile size: {metadata.tile_size}px | Format: {metadata.tile_format}")
    for level in metadata.levels:
        click.echo(
            f"  z{level.level}: {level.width} x {level.height} px, "
            f"{level.cols} x {level.rows} tiles (1/{level.downsample})"
        )


if __name__ == "__main__":
    main()
