"""CLI interface using Typer and Rich."""

import mimetypes
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from cloud_bulk_io.blobstore.base import BlobStoreError
from cloud_bulk_io.blobstore.domain import ListContainerOptions
from cloud_bulk_io.blobstore.filesystem import filesystem_blob_store
from cloud_bulk_io.blobstore.local import LocalBlobStore
from cloud_bulk_io.config import (
    MIB,
    BlobStoreSettings,
    load_app_config,
    load_blobstore_settings,
)
from cloud_bulk_io.http.payloads import ContentMetadata, StreamPayload
from cloud_bulk_io.multipart.slicing import MultipartUploadSlicingAlgorithm
from cloud_bulk_io.multipart.uploader import MultipartUploader
from cloud_bulk_io.utils.logging import configure_logging, get_logger

app = typer.Typer(help="Bulk delete and multipart upload for blob stores")
console = Console()

GIB = 1024 * MIB


def format_size(size_bytes: float) -> str:
    """Format size in bytes to human-readable format."""
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_bytes < 1024.0:
            return f"{size_bytes:.2f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.2f} PB"


def load_settings() -> BlobStoreSettings:
    """Load blobstore settings, exiting on invalid values.

    Raises:
        typer.Exit: If configuration is invalid.
    """
    try:
        return load_blobstore_settings()
    except ValidationError as e:
        console.print(f"[red]Configuration error:[/red]\n{e}")
        raise typer.Exit(1)


def setup_logging(log_file: Optional[str], verbose: bool) -> None:
    """Configure logging, falling back to LOG_FILE and VERBOSE from the environment."""
    app_config = load_app_config()
    configure_logging(log_file or app_config.log_file, verbose or app_config.verbose)


def open_store(base_dir: str, settings: BlobStoreSettings) -> LocalBlobStore:
    return filesystem_blob_store(base_dir, page_size=settings.list_page_size)


def confirm_deletion() -> bool:
    """Prompt user for deletion confirmation.

    Returns:
        True if user confirms, False otherwise.
    """
    console.print("[bold red]This action cannot be undone![/bold red]")
    response = console.input("[yellow]Proceed with deletion? (yes/no):[/yellow] ")
    return response.lower() in ("yes", "y")


@app.command()
def plan(
    length: int,
    min_part_size: int = typer.Option(5 * MIB, "--min-part-size"),
    max_part_size: int = typer.Option(5 * GIB, "--max-part-size"),
    max_parts: int = typer.Option(10000, "--max-parts"),
    verbose: bool = typer.Option(False, "--verbose"),
) -> None:
    """Show how an object of LENGTH bytes would be split for multipart upload.

    Example:
        cloud-bulk-io plan 10737418240 --max-parts 1000
    """
    setup_logging(None, verbose)
    logger = get_logger(__name__)
    settings = load_settings()

    try:
        algorithm = MultipartUploadSlicingAlgorithm(
            min_part_size,
            max_part_size,
            max_parts,
            default_part_size=settings.mpu_part_size,
            magnitude_base=settings.mpu_magnitude_base,
        )
        algorithm.calculate_chunk_size(length)
    except ValueError as e:
        console.print(f"[red]Validation error: {str(e)}[/red]")
        logger.error("validation_error", error=str(e))
        raise typer.Exit(1)

    table = Table(title=f"Multipart plan for {format_size(length)}")
    table.add_column("Field", style="cyan")
    table.add_column("Bytes", justify="right", style="magenta")
    table.add_column("Size", justify="right", style="green")
    table.add_row("Chunk size", str(algorithm.chunk_size), format_size(algorithm.chunk_size))
    table.add_row("Full parts", str(algorithm.parts), "")
    table.add_row("Remaining", str(algorithm.remaining), format_size(algorithm.remaining))
    table.add_row("Total parts", str(len(algorithm.part_offsets())), "")
    console.print(table)

    if algorithm.remaining > max_part_size:
        console.print(
            "[yellow]Warning: the last part exceeds the maximum part size.[/yellow]"
        )
    logger.info(
        "plan_completed",
        length=length,
        chunk_size=algorithm.chunk_size,
        parts=algorithm.parts,
        remaining=algorithm.remaining,
    )


@app.command()
def clear(
    base_dir: str,
    container: str,
    directory: Optional[str] = typer.Option(None, "--dir"),
    recursive: bool = typer.Option(True, "--recursive/--no-recursive"),
    no_confirm: bool = typer.Option(False, "--no-confirm"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    log_file: Optional[str] = typer.Option(None, "--log-file"),
    verbose: bool = typer.Option(False, "--verbose"),
) -> None:
    """Delete every blob in a container, or in one directory of it.

    Args:
        base_dir: Root directory of the filesystem blob store
        container: Container to clear
        directory: Only clear this directory
        recursive: Descend into subdirectories
        no_confirm: Skip confirmation prompt (dangerous)
        dry_run: Report what would be deleted without deleting
        log_file: Path to log file
        verbose: Enable verbose logging

    Example:
        cloud-bulk-io clear /data/blobs photos --dir 2023 --dry-run
    """
    setup_logging(log_file, verbose)
    logger = get_logger(__name__)
    settings = load_settings()

    try:
        store = open_store(base_dir, settings)
        options = ListContainerOptions(dir=directory, recursive=recursive)

        if not store.container_exists(container):
            console.print(f"[yellow]Container '{container}' does not exist.[/yellow]")
            logger.info("container_not_found", container=container)
            return

        total = store.count_blobs(container, options)
        scope = f"{container}/{directory}" if directory else container
        console.print(f"[cyan]Scope:[/cyan] {scope}")
        console.print(f"[cyan]Recursive:[/cyan] {recursive}")
        console.print(f"[cyan]Blobs to delete:[/cyan] {total}\n")

        if total == 0:
            console.print("[yellow]No blobs found.[/yellow]")
            logger.info("no_blobs_found", container=container, dir=directory)
            return

        if dry_run:
            console.print(f"[yellow]DRY RUN MODE - {total} blobs would be deleted[/yellow]")
            logger.info("dry_run_completed", container=container, total=total)
            return

        if not no_confirm and not confirm_deletion():
            logger.info("deletion_cancelled_by_user")
            console.print("[yellow]Deletion cancelled.[/yellow]")
            return

        logger.info("clearing_container", container=container, dir=directory, total=total)
        store.clear_container(container, options, settings)
        left = store.count_blobs(container, options)

        console.print(f"\n[green]Successfully deleted: {total - left}[/green]")
        logger.info("clear_completed", container=container, deleted=total - left, left=left)

    except BlobStoreError as e:
        console.print(f"[red]Blob store error: {str(e)}[/red]")
        logger.error("blob_store_error", error=str(e))
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Validation error: {str(e)}[/red]")
        logger.error("validation_error", error=str(e))
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected error: {str(e)}[/red]")
        logger.exception("unexpected_error")
        raise typer.Exit(1)


@app.command()
def upload(
    base_dir: str,
    container: str,
    file: Path,
    name: Optional[str] = typer.Option(None, "--name"),
    parallel: bool = typer.Option(False, "--parallel"),
    log_file: Optional[str] = typer.Option(None, "--log-file"),
    verbose: bool = typer.Option(False, "--verbose"),
) -> None:
    """Upload a file as a multipart blob, creating the container if needed.

    Example:
        cloud-bulk-io upload /data/blobs backups ./dump.tar --name 2024/dump.tar --parallel
    """
    setup_logging(log_file, verbose)
    logger = get_logger(__name__)
    settings = load_settings()

    if not file.is_file():
        console.print(f"[red]Error: '{file}' is not a file[/red]")
        raise typer.Exit(1)

    try:
        store = open_store(base_dir, settings)
        store.create_container(container)
        blob_name = name or file.name
        length = file.stat().st_size
        content_type, _ = mimetypes.guess_type(file.name)

        console.print(
            f"[cyan]Uploading {file} ({format_size(length)}) "
            f"to {container}/{blob_name}[/cyan]"
        )
        uploader = MultipartUploader(store, settings=settings)
        with open(file, "rb") as f:
            payload = StreamPayload(
                f, ContentMetadata(content_length=length, content_type=content_type)
            )
            etag = uploader.put_multipart_blob(container, blob_name, payload, parallel=parallel)

        stored = store.blob_metadata(container, blob_name)
        console.print(f"[green]Uploaded {format_size(stored.size or 0)}, etag {etag}[/green]")
        logger.info("upload_completed", container=container, name=blob_name, etag=etag)

    except BlobStoreError as e:
        console.print(f"[red]Blob store error: {str(e)}[/red]")
        logger.error("blob_store_error", error=str(e))
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Validation error: {str(e)}[/red]")
        logger.error("validation_error", error=str(e))
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected error: {str(e)}[/red]")
        logger.exception("unexpected_error")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
