"""Command-line interface for staff and customer photo claim operations."""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from snapme_claim.backend import BackendClient
from snapme_claim.claims import ClaimSearchService
from snapme_claim.downloads import SIGNED_URL_EXPIRY, DownloadService
from snapme_claim.errors import SnapMeError
from snapme_claim.folders import PhotoFolderManager, serialize_folder_metadata
from snapme_claim.memory import (
    InMemoryFolderRepository,
    InMemoryObjectStorage,
    InMemoryPhotoRepository,
)
from snapme_claim.models import FolderStatus, PhotoFolder, SearchMode
from snapme_claim.repositories import (
    DEFAULT_BUCKET,
    RestFolderRepository,
    RestObjectStorage,
    RestPhotoRepository,
)
from snapme_claim.uploads import PhotoUploadCoordinator
from snapme_claim.utils import format_size, scan_photo_files

app = typer.Typer(
    name="snapme-claim",
    help="Manage studio photo folders and customer photo claims",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)


@dataclass
class Settings:
    """Connection settings shared by every command."""

    backend_url: str | None
    api_key: str | None
    bucket: str = DEFAULT_BUCKET
    max_concurrent: int = 4
    expires_in: int = SIGNED_URL_EXPIRY


@dataclass
class Services:
    manager: PhotoFolderManager
    uploads: PhotoUploadCoordinator
    claims: ClaimSearchService
    downloads: DownloadService


def setup_logging(verbose: bool) -> None:
    """Configure logging with Rich handler.

    Args:
        verbose: Enable verbose (DEBUG) logging
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )


def build_services(manager: PhotoFolderManager, settings: Settings) -> Services:
    return Services(
        manager=manager,
        uploads=PhotoUploadCoordinator(manager, max_concurrent_uploads=settings.max_concurrent),
        claims=ClaimSearchService(manager),
        downloads=DownloadService(
            manager,
            max_concurrent_downloads=settings.max_concurrent,
            expires_in=settings.expires_in,
        ),
    )


@asynccontextmanager
async def open_services(settings: Settings) -> AsyncIterator[Services]:
    """Connect to the configured backend and wire up the services."""
    async with BackendClient(settings.backend_url, settings.api_key) as backend:
        manager = PhotoFolderManager(
            RestFolderRepository(backend),
            RestPhotoRepository(backend),
            RestObjectStorage(backend, bucket=settings.bucket),
        )
        yield build_services(manager, settings)


def in_memory_services(settings: Settings) -> Services:
    manager = PhotoFolderManager(
        InMemoryFolderRepository(),
        InMemoryPhotoRepository(),
        InMemoryObjectStorage(bucket=settings.bucket),
    )
    return build_services(manager, settings)


def run(ctx: typer.Context, action: Callable[[Services], Awaitable[int]]) -> None:
    """Run an async command against the backend and exit with its code."""
    settings: Settings = ctx.obj
    if not settings.backend_url or not settings.api_key:
        console.print(
            "[red]Error: backend URL and API key are required. "
            "Provide via --backend-url/--api-key or SNAPME_BACKEND_URL/SNAPME_API_KEY.[/red]"
        )
        raise typer.Exit(1)

    async def main() -> int:
        async with open_services(settings) as services:
            return await action(services)

    raise typer.Exit(execute(main))


def execute(main: Callable[[], Awaitable[int]]) -> int:
    try:
        return asyncio.run(main())
    except SnapMeError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    except Exception as e:
        logger.error(f"Command failed: {e}", exc_info=True)
        return 1


def print_folder(folder: PhotoFolder) -> None:
    console.print(f"[bold]{folder.customer_name}[/bold] ({folder.customer_phone})")
    console.print(f"  ID: {folder.id}")
    console.print(f"  Status: {folder.status.value}")
    console.print(f"  Photos: {folder.photo_count} ({format_size(folder.total_size)})")
    console.print(f"  Path: {folder.folder_path}")
    if folder.package_name:
        console.print(f"  Package: {folder.package_name}")
    if folder.claimed_at:
        console.print(f"  Claimed: {folder.claimed_at.isoformat()}")


def print_folders(folders: list[PhotoFolder]) -> None:
    table = Table("ID", "Customer", "Phone", "Status", "Photos", "Size", "Created")
    for folder in folders:
        table.add_row(
            folder.id,
            folder.customer_name,
            folder.customer_phone,
            folder.status.value,
            str(folder.photo_count),
            format_size(folder.total_size),
            folder.created_at.strftime("%Y-%m-%d %H:%M") if folder.created_at else "-",
        )
    console.print(table)


@app.callback()
def main(
    ctx: typer.Context,
    backend_url: str = typer.Option(
        None,
        "--backend-url",
        envvar="SNAPME_BACKEND_URL",
        help="Backend project URL (or set SNAPME_BACKEND_URL env var)",
    ),
    api_key: str = typer.Option(
        None,
        "--api-key",
        "-k",
        envvar="SNAPME_API_KEY",
        help="Backend API key (or set SNAPME_API_KEY env var)",
    ),
    bucket: str = typer.Option(
        DEFAULT_BUCKET,
        "--bucket",
        envvar="SNAPME_BUCKET",
        help="Storage bucket holding the photos",
    ),
    max_concurrent: int = typer.Option(
        4,
        "--max-concurrent",
        "-c",
        min=1,
        max=20,
        help="Maximum number of concurrent uploads or downloads",
    ),
    expires_in: int = typer.Option(
        SIGNED_URL_EXPIRY,
        "--expires-in",
        min=60,
        help="Lifetime of download links in seconds",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Manage studio photo folders and customer photo claims."""
    setup_logging(verbose)
    ctx.obj = Settings(
        backend_url=backend_url,
        api_key=api_key,
        bucket=bucket,
        max_concurrent=max_concurrent,
        expires_in=expires_in,
    )


@app.command("create-folder")
def create_folder(
    ctx: typer.Context,
    name: str = typer.Option(..., "--name", "-n", help="Customer name"),
    phone: str = typer.Option(..., "--phone", "-p", help="Customer phone number"),
    email: str = typer.Option(None, "--email", help="Customer email"),
    package: str = typer.Option(None, "--package", help="Booked package name"),
    transaction_id: str = typer.Option(None, "--transaction-id", help="Linked sale"),
) -> None:
    """Open a new pending folder for a customer session."""

    async def action(services: Services) -> int:
        folder = await services.manager.create_folder(
            name, phone, customer_email=email, package_name=package, transaction_id=transaction_id
        )
        console.print("[green]Folder created[/green]")
        print_folder(folder)
        return 0

    run(ctx, action)


@app.command("list")
def list_folders(
    ctx: typer.Context,
    status: FolderStatus = typer.Option(None, "--status", "-s", help="Only this status"),
    limit: int = typer.Option(None, "--limit", min=1, help="Maximum folders to show"),
    offset: int = typer.Option(None, "--offset", min=0, help="Folders to skip"),
) -> None:
    """List folders, newest first."""

    async def action(services: Services) -> int:
        folders = await services.manager.list_folders(status=status, limit=limit, offset=offset)
        if not folders:
            console.print("No folders found")
            return 0
        print_folders(folders)
        return 0

    run(ctx, action)


@app.command()
def show(
    ctx: typer.Context,
    folder_id: str = typer.Argument(..., help="Folder ID"),
    as_json: bool = typer.Option(False, "--json", help="Print customer metadata as JSON"),
) -> None:
    """Show a folder and its photos."""

    async def action(services: Services) -> int:
        folder = await services.manager.get_by_id(folder_id)
        if as_json:
            console.print_json(serialize_folder_metadata(folder))
            return 0
        print_folder(folder)
        for photo in await services.uploads.list_photos(folder_id):
            console.print(
                f"  - {photo.file_name} ({format_size(photo.file_size)}, "
                f"{photo.download_count} download(s)) [dim]{photo.id}[/dim]"
            )
        return 0

    run(ctx, action)


def _set_status(ctx: typer.Context, folder_id: str, status: FolderStatus) -> None:
    async def action(services: Services) -> int:
        folder = await services.manager.update_status(folder_id, status)
        console.print(f"[green]Folder {folder.id} is now {folder.status.value}[/green]")
        return 0

    run(ctx, action)


@app.command("mark-ready")
def mark_ready(ctx: typer.Context, folder_id: str = typer.Argument(..., help="Folder ID")) -> None:
    """Mark a pending folder as ready for the customer."""
    _set_status(ctx, folder_id, FolderStatus.READY)


@app.command("mark-claimed")
def mark_claimed(ctx: typer.Context, folder_id: str = typer.Argument(..., help="Folder ID")) -> None:
    """Mark a ready folder as claimed."""
    _set_status(ctx, folder_id, FolderStatus.CLAIMED)


async def upload_files(services: Services, folder: PhotoFolder, directory: Path) -> int:
    """Upload every photo in a directory and print a summary.

    Returns:
        Exit code (0 for success, 1 if any file failed)
    """
    files = scan_photo_files(directory)
    if not files:
        logger.warning("No photos found to upload")
        return 0

    def on_progress(index: int, percent: int) -> None:
        logger.debug(f"{files[index].file_name}: {percent}%")

    result = await services.uploads.upload_multiple(folder.id, files, folder.info, on_progress)
    folder = await services.manager.get_by_id(folder.id)

    console.print("\n[bold]Upload Summary:[/bold]")
    console.print(f"  Total photos: {result.total}")
    console.print(f"  [green]Successful: {len(result.successful)}[/green]")
    console.print(f"  [red]Failed: {len(result.failed)}[/red]")
    console.print(f"  Folder now holds {folder.photo_count} photo(s), {format_size(folder.total_size)}")

    if result.failed:
        console.print("\n[bold red]Failed uploads:[/bold red]")
        for failure in result.failed:
            console.print(f"  - {failure.file.file_name}: {failure.reason}")
        return 1
    return 0


@app.command()
def upload(
    ctx: typer.Context,
    directory: Path = typer.Argument(
        ...,
        help="Directory containing the photos",
        exists=True,
        file_okay=False,
        dir_okay=True,
        readable=True,
    ),
    folder_id: str = typer.Option(
        None, "--folder", "-f", help="Folder ID (not needed with --dry-run)"
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Validate and simulate uploads in memory without touching the backend",
    ),
) -> None:
    """Upload all photos in DIRECTORY into a folder."""
    settings: Settings = ctx.obj

    if dry_run:
        services = in_memory_services(settings)

        async def simulate() -> int:
            logger.info("[DRY RUN] Uploading into a temporary in-memory folder")
            folder = await services.manager.create_folder("Dry Run", "0")
            return await upload_files(services, folder, directory)

        raise typer.Exit(execute(simulate))

    if not folder_id:
        console.print("[red]Error: a folder ID is required unless --dry-run is given.[/red]")
        raise typer.Exit(1)

    async def action(services: Services) -> int:
        folder = await services.manager.get_by_id(folder_id)
        return await upload_files(services, folder, directory)

    run(ctx, action)


@app.command()
def search(
    ctx: typer.Context,
    term: str = typer.Argument(..., help="Phone number or name to look for"),
    by: SearchMode = typer.Option(SearchMode.PHONE, "--by", help="Field to search"),
    staff: bool = typer.Option(
        False, "--staff", help="Include pending and expired folders (staff view)"
    ),
) -> None:
    """Search folders the way a customer (or, with --staff, an employee) would."""

    async def action(services: Services) -> int:
        if staff:
            folders = await services.manager.search(term, by)
        else:
            outcome = await services.claims.search(term, by)
            if outcome.failed:
                console.print(f"[red]{outcome.error}[/red]")
                return 1
            folders = outcome.folders

        if not folders:
            console.print("No folders found")
            return 0
        print_folders(folders)
        return 0

    run(ctx, action)


@app.command()
def download(
    ctx: typer.Context,
    folder_id: str = typer.Argument(..., help="Folder ID from the shared link"),
    output: Path = typer.Option(
        Path("."), "--output", "-o", file_okay=False, help="Directory for the ZIP archive"
    ),
) -> None:
    """Download a customer's photos as a ZIP archive, claiming the folder."""

    async def action(services: Services) -> int:
        folder = await services.claims.open_shared_link(folder_id)
        if folder is None:
            console.print("[red]Folder not found or not available yet.[/red]")
            return 1

        def on_progress(done: int, total: int) -> None:
            logger.debug(f"Downloaded {done}/{total}")

        result = await services.downloads.download_all(folder, on_progress)
        if not result.success:
            console.print(f"[red]{result.error_message}[/red]")
            return 1

        output.mkdir(parents=True, exist_ok=True)
        target = output / result.archive_name
        target.write_bytes(result.archive)
        console.print(f"[green]Saved {len(result.included)} photo(s) to {target}[/green]")
        if result.claimed:
            console.print("Folder marked as claimed")
        for failure in result.failed:
            console.print(f"  [red]- {failure.photo.file_name}: {failure.reason}[/red]")
        return 0

    run(ctx, action)


@app.command("delete-folder")
def delete_folder(
    ctx: typer.Context,
    folder_id: str = typer.Argument(..., help="Folder ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete a folder with all of its photos."""
    if not yes:
        typer.confirm(f"Delete folder {folder_id} and all its photos?", abort=True)

    async def action(services: Services) -> int:
        await services.manager.delete_folder(folder_id)
        console.print(f"[green]Deleted folder {folder_id}[/green]")
        return 0

    run(ctx, action)


@app.command("delete-photo")
def delete_photo(ctx: typer.Context, photo_id: str = typer.Argument(..., help="Photo ID")) -> None:
    """Delete a single photo."""

    async def action(services: Services) -> int:
        await services.uploads.delete_photo(photo_id)
        console.print(f"[green]Deleted photo {photo_id}[/green]")
        return 0

    run(ctx, action)


@app.command()
def sweep(
    ctx: typer.Context,
    retention_days: int = typer.Option(
        3, "--retention-days", min=0, help="Days a claimed folder is kept"
    ),
) -> None:
    """Expire folders claimed longer ago than the retention period (one pass)."""

    async def action(services: Services) -> int:
        expired = await services.manager.expire_claimed_folders(timedelta(days=retention_days))
        console.print(f"Expired {len(expired)} folder(s)")
        return 0

    run(ctx, action)


if __name__ == "__main__":
    app()
