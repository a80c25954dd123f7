"""Signed download links, ZIP packaging and claim-on-first-download."""

import asyncio
import io
import logging
import zipfile
from collections.abc import Callable

from snapme_claim.errors import SnapMeError
from snapme_claim.folders import PhotoFolderManager
from snapme_claim.models import (
    DownloadFailure,
    DownloadResult,
    Photo,
    PhotoFolder,
    SignedUrl,
    format_timestamp,
)

logger = logging.getLogger(__name__)

SIGNED_URL_EXPIRY = 3600  # 1 hour in seconds

DownloadProgress = Callable[[int, int], None]


def archive_name(folder: PhotoFolder) -> str:
    safe_name = folder.customer_name.replace("/", "_").replace("\\", "_")
    return f"{safe_name}_photos.zip"


def unique_entry_name(name: str, used: set[str]) -> str:
    """Return ``name`` or a numbered variant not yet in ``used``."""
    candidate = name
    stem, dot, ext = name.rpartition(".")
    if not dot:
        stem, ext = name, ""
    counter = 1
    while candidate in used:
        candidate = f"{stem} ({counter}){dot}{ext}"
        counter += 1
    used.add(candidate)
    return candidate


class DownloadService:
    """Serves photos to customers and claims folders on first full download."""

    def __init__(
        self,
        manager: PhotoFolderManager,
        max_concurrent_downloads: int = 4,
        expires_in: int = SIGNED_URL_EXPIRY,
    ) -> None:
        """Initialize download service.

        Args:
            manager: Folder manager performing the claim transition
            max_concurrent_downloads: Maximum number of concurrent fetches
            expires_in: Lifetime of generated links in seconds
        """
        self.manager = manager
        self.storage = manager.storage
        self.photos = manager.photos
        self.expires_in = expires_in
        self._semaphore = asyncio.Semaphore(max_concurrent_downloads)

    async def get_download_url(self, file_path: str, expires_in: int | None = None) -> SignedUrl:
        if expires_in is None:
            expires_in = self.expires_in
        url = await self.storage.create_signed_url(file_path, expires_in)
        return SignedUrl(path=file_path, url=url, expires_in=expires_in)

    async def get_batch_download_urls(
        self, file_paths: list[str], expires_in: int | None = None
    ) -> list[SignedUrl]:
        """Sign many paths in a single round trip."""
        if expires_in is None:
            expires_in = self.expires_in
        return await self.storage.create_signed_urls(file_paths, expires_in)

    async def increment_download_count(self, photo: Photo) -> Photo:
        current = await self.photos.get(photo.id) or photo
        return await self.photos.update(
            photo.id,
            {
                "download_count": current.download_count + 1,
                "last_downloaded_at": format_timestamp(self.manager.clock()),
            },
        )

    async def download_photo(self, photo: Photo) -> SignedUrl:
        """Link for a single gallery photo; counts as a download of that photo."""
        signed = await self.get_download_url(photo.file_path)
        await self.increment_download_count(photo)
        return signed

    async def download_all(
        self, folder: PhotoFolder, on_progress: DownloadProgress | None = None
    ) -> DownloadResult:
        """Package every photo of a folder into one ZIP archive.

        Photos that cannot be fetched are left out and reported. When at
        least one photo made it into the archive, a ``ready`` folder is
        moved to ``claimed``; folders already claimed keep their
        ``claimed_at``.

        Args:
            folder: Folder to download
            on_progress: Called with (photos fetched, photos with a download link)

        Returns:
            The archive and per-photo outcome; never raises for backend errors
        """
        try:
            current = await self.manager.get_by_id(folder.id)
            if not current.is_customer_visible:
                return self._failure(folder, "Folder is not available for download")

            photos = await self.photos.list_by_folder(folder.id)
            if not photos:
                return self._failure(folder, "Folder has no photos")

            signed = await self.get_batch_download_urls([p.file_path for p in photos])
        except SnapMeError as e:
            logger.error(f"Could not prepare download of folder {folder.id}: {e}")
            return self._failure(folder, f"Download failed: {e}")

        urls = {s.path: s.url for s in signed}
        failed: list[DownloadFailure] = []
        fetchable = []
        for photo in photos:
            if photo.file_path in urls:
                fetchable.append(photo)
            else:
                failed.append(DownloadFailure(photo, "Could not create download link"))

        done = 0

        async def fetch(photo: Photo) -> bytes | DownloadFailure:
            nonlocal done
            async with self._semaphore:
                try:
                    content = await self.storage.fetch(urls[photo.file_path])
                except Exception as e:
                    logger.error(f"Error downloading {photo.file_name}: {e}")
                    content = DownloadFailure(photo, str(e))
            done += 1
            if on_progress is not None:
                try:
                    on_progress(done, len(fetchable))
                except Exception:
                    logger.exception(f"Progress callback failed at {done}/{len(fetchable)}")
            return content

        contents = await asyncio.gather(*(fetch(photo) for photo in fetchable))

        buffer = io.BytesIO()
        included: list[Photo] = []
        used_names: set[str] = set()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_STORED) as archive:
            for index, (photo, content) in enumerate(zip(fetchable, contents)):
                if isinstance(content, DownloadFailure):
                    failed.append(content)
                    continue
                name = unique_entry_name(photo.file_name or f"photo_{index + 1}.jpg", used_names)
                archive.writestr(name, content)
                included.append(photo)

        if not included:
            return self._failure(folder, "No photos could be downloaded", failed=failed)

        for photo in included:
            try:
                await self.increment_download_count(photo)
            except SnapMeError as e:
                logger.warning(f"Could not count download of {photo.id}: {e}")

        claimed = False
        try:
            claimed = await self.manager.mark_claimed_on_download(folder.id) is not None
        except SnapMeError as e:
            logger.error(f"Could not mark folder {folder.id} as claimed: {e}")

        logger.info(
            f"Packaged {len(included)}/{len(photos)} photo(s) of folder {folder.id}"
            + (" and marked it claimed" if claimed else "")
        )
        return DownloadResult(
            folder_id=folder.id,
            success=True,
            archive_name=archive_name(folder),
            archive=buffer.getvalue(),
            included=included,
            failed=failed,
            claimed=claimed,
        )

    @staticmethod
    def _failure(
        folder: PhotoFolder, message: str, failed: list[DownloadFailure] | None = None
    ) -> DownloadResult:
        return DownloadResult(
            folder_id=folder.id,
            success=False,
            failed=failed or [],
            error_message=message,
        )
