#!/usr/bin/env python3
"""
PDF Shrink - CLI Interface

Recompress the images of a PDF, or split a PDF into size-bounded parts.

Usage:
    pdfshrink compress input.pdf --profile balanced --output output.pdf
    pdfshrink compress scan.pdf --mode page-isolated --workers 4
    pdfshrink split book.pdf --max-size 50MB --output-dir parts/
    pdfshrink profiles
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    Progress,
    SpinnerColumn,
    TextColumn,
    BarColumn,
    TaskProgressColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from pdfshrink import (
    PROFILES,
    CompressionMode,
    DocumentCompressor,
    PDFShrinkError,
    get_profile,
    run_benchmark,
)
from pdfshrink.splitter import Partitioner, write_parts
from pdfshrink.utils import default_output_path, default_split_dir, format_size, parse_size

console = Console()

MODE_CHOICES = [mode.value for mode in CompressionMode]


def configure_logging(verbose: int):
    """Route library logging through rich; -v for INFO, -vv for DEBUG."""
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def create_progress_bar():
    """Create a rich progress bar."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeRemainingColumn(),
        console=console,
    )


def fail(message: str):
    """Print an error and exit with status 1."""
    console.print(f"[bold red]Error: {escape(message)}[/bold red]")
    sys.exit(1)


@click.group(invoke_without_command=True)
@click.pass_context
def cli(ctx):
    """PDF Shrink - Recompress and split PDFs."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.argument("input_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False),
    help="Output file path (default: input_compressed.pdf)",
)
@click.option(
    "--profile", "-p",
    default="very_light_compression",
    show_default=True,
    help="Compression profile (see `pdfshrink profiles`)",
)
@click.option(
    "--mode", "-m",
    type=click.Choice(MODE_CHOICES),
    default=CompressionMode.SEQUENTIAL.value,
    show_default=True,
    help="How pages are scheduled",
)
@click.option("--max-dpi", type=int, help="Override the profile's maximum DPI")
@click.option("--min-dpi", type=int, help="Override the profile's minimum DPI")
@click.option(
    "--workers", "-w",
    type=click.IntRange(min=1),
    help="Worker pool size (default: CPU count)",
)
@click.option(
    "--parallel-pages",
    is_flag=True,
    help="Compress pages on a process pool (page-isolated mode only)",
)
@click.option(
    "--image-timeout",
    type=float,
    help="Seconds to wait for one image before keeping it (parallel mode only)",
)
@click.option("--verbose", "-v", count=True, help="Enable verbose output (-vv for debug)")
@click.option(
    "--json-output", "-j",
    is_flag=True,
    help="Output results as JSON",
)
def compress(
    input_file: str,
    output: Optional[str],
    profile: str,
    mode: str,
    max_dpi: Optional[int],
    min_dpi: Optional[int],
    workers: Optional[int],
    parallel_pages: bool,
    image_timeout: Optional[float],
    verbose: int,
    json_output: bool,
):
    """Recompress the images of a PDF file."""
    configure_logging(verbose)
    input_path = Path(input_file)
    output_path = Path(output) if output else default_output_path(input_path)

    try:
        selected = get_profile(profile)
        if max_dpi is not None or min_dpi is not None:
            selected = selected.with_dpi(
                max_dpi if max_dpi is not None else selected.max_dpi,
                min_dpi if min_dpi is not None else selected.min_dpi,
            )
    except PDFShrinkError as e:
        fail(str(e))

    if not json_output:
        console.print(Panel(
            f"[bold blue]PDF Shrink[/bold blue]\n"
            f"Input: {input_path.name}\n"
            f"Profile: {selected.name} ({selected.estimated_rate})\n"
            f"Mode: {mode}",
            title="Compression Job",
        ))

    with create_progress_bar() as progress:
        task = None
        if not json_output:
            task = progress.add_task("Initializing...", total=100)

        def progress_callback(stage: str, percentage: int):
            if task is not None:
                progress.update(task, description=stage, completed=percentage)

        compressor = DocumentCompressor(
            selected,
            mode,
            max_workers=workers,
            image_timeout=image_timeout,
            parallel_pages=parallel_pages,
            progress_callback=progress_callback,
        )

        try:
            data, outcome = compressor.compress(input_path.read_bytes(), source=input_path.name)
            output_path.write_bytes(data)
        except (PDFShrinkError, OSError) as e:
            progress.stop()
            fail(str(e))

        if task is not None:
            progress.update(task, completed=100, description="Complete")

    if json_output:
        result = outcome.to_dict()
        result["output_path"] = str(output_path)
        click.echo(json.dumps(result, indent=2))
        return

    table = Table(title="Compression Results")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Original Size", format_size(outcome.original_size))
    table.add_row("Compressed Size", format_size(outcome.compressed_size))
    table.add_row("Reduction", f"{outcome.compression_ratio * 100:.1f}%")
    table.add_row("Pages Processed", str(outcome.pages_processed))
    table.add_row("Images Processed", str(outcome.images_processed))
    table.add_row("Images Optimized", str(outcome.images_optimized))
    table.add_row("Time", f"{outcome.elapsed_seconds:.2f}s")
    if outcome.degraded:
        table.add_row("Pages Uncompressed", str(outcome.pages_failed), style="yellow")
        table.add_row("Pages Dropped", str(outcome.pages_dropped), style="red")

    console.print(table)

    if outcome.bypassed:
        console.print("[yellow]File too small to compress, copied as is[/yellow]")
    elif outcome.regressed:
        console.print("[yellow]Compression did not reduce the size, original kept[/yellow]")

    console.print(f"\n[bold green]Saved to: {output_path}[/bold green]")


@cli.command()
@click.argument("input_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--max-size", "-s",
    required=True,
    help="Maximum size per part (e.g., 50MB, 800KB)",
)
@click.option(
    "--output-dir", "-d",
    type=click.Path(file_okay=False),
    help="Output directory (default: <input>_split next to the input)",
)
@click.option("--verbose", "-v", count=True, help="Enable verbose output (-vv for debug)")
@click.option(
    "--json-output", "-j",
    is_flag=True,
    help="Output results as JSON",
)
def split(
    input_file: str,
    max_size: str,
    output_dir: Optional[str],
    verbose: int,
    json_output: bool,
):
    """Split a PDF into parts that each stay under a maximum size."""
    configure_logging(verbose)
    input_path = Path(input_file)
    output_directory = Path(output_dir) if output_dir else default_split_dir(input_path)

    try:
        max_bytes = parse_size(max_size)
        partitioner = Partitioner(max_bytes)
        with console.status(f"Splitting {input_path.name}...", spinner="dots"):
            result = partitioner.partition(input_path.read_bytes(), source=input_path.name)
            paths = write_parts(result, output_directory, input_path.stem)
    except (PDFShrinkError, ValueError, OSError) as e:
        fail(str(e))

    if json_output:
        payload = result.to_dict()
        payload["files"] = [str(p) for p in paths]
        click.echo(json.dumps(payload, indent=2))
        return

    table = Table(title=f"Split Results: {input_path.name}")
    table.add_column("File", style="cyan")
    table.add_column("Pages", style="green")
    table.add_column("Size", style="green")

    for part, path in zip(result.parts, paths):
        pages = f"{part.pages[0] + 1}-{part.pages[-1] + 1}"
        size = format_size(part.size)
        if part.oversized:
            size = f"[red]{size} (over limit)[/red]"
        table.add_row(path.name, pages, size)

    console.print(table)

    if result.oversized_parts:
        console.print(
            f"[yellow]{len(result.oversized_parts)} page(s) exceed "
            f"{format_size(max_bytes)} on their own and were written as single-page files[/yellow]"
        )
    console.print(f"\n[bold green]Saved {len(paths)} files to: {output_directory}[/bold green]")


@cli.command("profiles")
@click.option(
    "--json-output", "-j",
    is_flag=True,
    help="Output as JSON",
)
def profiles_cmd(json_output: bool):
    """List the available compression profiles."""
    if json_output:
        click.echo(json.dumps([p.to_dict() for p in PROFILES.values()], indent=2))
        return

    table = Table(title="Compression Profiles")
    table.add_column("Name", style="cyan")
    table.add_column("Est. Reduction", style="green")
    table.add_column("Quality", justify="right")
    table.add_column("DPI", justify="right")
    table.add_column("Description")

    for profile in PROFILES.values():
        table.add_row(
            profile.name,
            profile.estimated_rate,
            f"{profile.image_quality:.2f}/{profile.large_image_quality:.2f}",
            f"{profile.min_dpi}-{profile.max_dpi}",
            profile.description,
        )

    console.print(table)


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option(
    "--output-dir", "-d",
    required=True,
    type=click.Path(file_okay=False),
    help="Directory for compressed files",
)
@click.option(
    "--profile", "-p",
    default="very_light_compression",
    show_default=True,
    help="Compression profile",
)
@click.option(
    "--mode", "-m",
    type=click.Choice(MODE_CHOICES),
    default=CompressionMode.SEQUENTIAL.value,
    show_default=True,
    help="How pages are scheduled",
)
@click.option("--verbose", "-v", count=True, help="Enable verbose output (-vv for debug)")
@click.option(
    "--json-output", "-j",
    is_flag=True,
    help="Output results as JSON",
)
def benchmark(
    directory: str,
    output_dir: str,
    profile: str,
    mode: str,
    verbose: int,
    json_output: bool,
):
    """Compress every PDF in a directory and summarize the results."""
    configure_logging(verbose)

    try:
        selected = get_profile(profile)
    except PDFShrinkError as e:
        fail(str(e))

    with console.status(f"Compressing PDFs in {directory}...", spinner="dots"):
        results = run_benchmark(directory, output_dir, selected, mode)

    if json_output:
        click.echo(json.dumps({
            "total": len(results),
            "results": {name: outcome.to_dict() for name, outcome in results.items()},
        }, indent=2))
        return

    if not results:
        console.print("[yellow]No PDF files were compressed[/yellow]")
        return

    table = Table(title=f"Benchmark: {selected.name}")
    table.add_column("File", style="cyan")
    table.add_column("Original", justify="right")
    table.add_column("Compressed", justify="right")
    table.add_column("Reduction", style="green", justify="right")
    table.add_column("Time", justify="right")

    for name, outcome in results.items():
        table.add_row(
            name,
            format_size(outcome.original_size),
            format_size(outcome.compressed_size),
            f"{outcome.compression_ratio * 100:.1f}%",
            f"{outcome.elapsed_seconds:.2f}s",
        )

    total_original = sum(r.original_size for r in results.values())
    total_compressed = sum(r.compressed_size for r in results.values())
    table.add_row(
        "[bold]Total[/bold]",
        format_size(total_original),
        format_size(total_compressed),
        f"{(1 - total_compressed / total_original) * 100:.1f}%" if total_original else "0.0%",
        f"{sum(r.elapsed_seconds for r in results.values()):.2f}s",
    )

    console.print(table)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
