"""Photo upload coordinator with per-file failure isolation."""

import asyncio
import logging
import secrets
import time
import uuid
from collections.abc import Callable

from snapme_claim.errors import NotFoundError, SnapMeError
from snapme_claim.events import EventType
from snapme_claim.folders import PhotoFolderManager
from snapme_claim.models import (
    BatchUploadResult,
    FileValidation,
    FolderInfo,
    Photo,
    UploadFailure,
    UploadFile,
)

logger = logging.getLogger(__name__)

ALLOWED_FILE_TYPES = frozenset({"image/jpeg", "image/png", "image/webp"})
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB

ProgressCallback = Callable[[int, int], None]


def validate_file(file: UploadFile) -> FileValidation:
    """Check the type and size of a file before upload.

    Args:
        file: File to check

    Returns:
        Validation outcome with a human readable error when invalid
    """
    if file.content_type not in ALLOWED_FILE_TYPES:
        return FileValidation(
            valid=False,
            error=f"Invalid file type: {file.content_type}. Allowed: JPEG, PNG, WEBP",
        )

    if file.size > MAX_FILE_SIZE:
        return FileValidation(
            valid=False,
            error=f"File too large: {file.size / 1024 / 1024:.2f}MB. Max: 10MB",
        )

    return FileValidation(valid=True)


def generate_storage_path(folder_id: str, folder_info: FolderInfo, file_name: str) -> str:
    """Build a unique storage key for a photo inside its folder namespace."""
    source_type = "transactions" if folder_info.transaction_id else "manual"
    source_id = folder_info.transaction_id or folder_id
    ext = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else "jpg"
    stamp = f"{int(time.time() * 1000)}-{secrets.token_hex(3)}"
    return f"photos/{source_type}/{source_id}/{folder_info.folder_name}/{stamp}.{ext}"


class PhotoUploadCoordinator:
    """Uploads photos into folders and keeps the folder aggregates current."""

    def __init__(
        self,
        manager: PhotoFolderManager,
        max_concurrent_uploads: int = 4,
        uploaded_by: str | None = None,
    ) -> None:
        """Initialize upload coordinator.

        Args:
            manager: Folder manager owning the folder records
            max_concurrent_uploads: Maximum number of concurrent uploads
            uploaded_by: Staff id recorded on each photo
        """
        self.manager = manager
        self.storage = manager.storage
        self.photos = manager.photos
        self.max_concurrent_uploads = max_concurrent_uploads
        self.uploaded_by = uploaded_by
        self._semaphore = asyncio.Semaphore(max_concurrent_uploads)
        self._aggregate_lock = asyncio.Lock()

    async def upload_multiple(
        self,
        folder_id: str,
        files: list[UploadFile],
        folder_info: FolderInfo,
        on_progress: ProgressCallback | None = None,
    ) -> BatchUploadResult:
        """Upload a batch of files; one failure never aborts the rest.

        Args:
            folder_id: Folder receiving the photos
            files: Files to upload
            folder_info: Storage namespace of the folder
            on_progress: Called with (file index, percent) as each file advances

        Returns:
            Successful photos and failed files, in input order
        """
        result = BatchUploadResult()
        reason = None
        try:
            await self.manager.get_by_id(folder_id)
        except NotFoundError:
            reason = "Folder not found"
        except Exception as e:
            reason = f"Folder lookup failed: {e}"
        if reason is not None:
            logger.error(f"Cannot upload to folder {folder_id}: {reason}")
            result.failed.extend(UploadFailure(file=file, reason=reason) for file in files)
            return result

        logger.info(f"Uploading {len(files)} file(s) to folder {folder_id}")
        tasks = [
            self._upload_with_semaphore(folder_id, index, file, folder_info, on_progress)
            for index, file in enumerate(files)
        ]
        outcomes = await asyncio.gather(*tasks)

        for outcome in outcomes:
            if isinstance(outcome, UploadFailure):
                result.failed.append(outcome)
            else:
                result.successful.append(outcome)

        logger.info(
            f"Folder {folder_id}: {len(result.successful)} uploaded, {len(result.failed)} failed"
        )
        return result

    async def _upload_with_semaphore(
        self,
        folder_id: str,
        index: int,
        file: UploadFile,
        folder_info: FolderInfo,
        on_progress: ProgressCallback | None,
    ) -> Photo | UploadFailure:
        async with self._semaphore:
            return await self._upload_one(folder_id, index, file, folder_info, on_progress)

    async def _upload_one(
        self,
        folder_id: str,
        index: int,
        file: UploadFile,
        folder_info: FolderInfo,
        on_progress: ProgressCallback | None,
    ) -> Photo | UploadFailure:
        """Upload a single file: storage write, record insert, aggregate refresh."""
        validation = validate_file(file)
        if not validation.valid:
            logger.error(f"Rejected {file.file_name}: {validation.error}")
            return UploadFailure(file=file, reason=validation.error)

        file_path = generate_storage_path(folder_id, folder_info, file.file_name)

        try:
            await self.storage.upload(file_path, file.content, file.content_type)
        except Exception as e:
            logger.error(f"Failed to store {file.file_name}: {e}")
            return UploadFailure(file=file, reason=f"Storage upload failed: {e}")

        self._report(on_progress, index, 50)

        photo = Photo(
            id=str(uuid.uuid4()),
            folder_id=folder_id,
            file_name=file.file_name,
            file_path=file_path,
            file_size=file.size,
            file_type=file.content_type,
            uploaded_by=self.uploaded_by,
            created_at=self.manager.clock(),
        )
        try:
            photo = await self.photos.insert(photo)
        except Exception as e:
            logger.error(f"Failed to record {file.file_name}: {e}")
            await self._discard_object(file_path)
            return UploadFailure(file=file, reason=f"Record insert failed: {e}")

        self._report(on_progress, index, 100)
        self.manager.events.publish(EventType.PHOTO_INSERTED, photo)

        try:
            async with self._aggregate_lock:
                await self.manager.refresh_aggregates(folder_id)
        except Exception as e:
            # The photo is stored and recorded; the next refresh will catch up
            logger.warning(f"Could not refresh aggregates of folder {folder_id}: {e}")

        logger.info(f"Uploaded {file.file_name} to folder {folder_id}")
        return photo

    async def _discard_object(self, file_path: str) -> None:
        try:
            await self.storage.remove([file_path])
        except Exception as e:
            logger.warning(f"Orphaned storage object {file_path} needs cleanup: {e}")

    @staticmethod
    def _report(on_progress: ProgressCallback | None, index: int, percent: int) -> None:
        if on_progress is None:
            return
        try:
            on_progress(index, percent)
        except Exception:
            logger.exception(f"Progress callback failed for file {index}")

    async def list_photos(self, folder_id: str) -> list[Photo]:
        """Active photos of a folder, oldest first."""
        photos = await self.photos.list_by_folder(folder_id)
        return sorted(photos, key=lambda p: p.created_at.timestamp() if p.created_at else 0.0)

    async def delete_photo(self, photo_id: str) -> None:
        """Delete a photo's stored object and record, then refresh its folder.

        Raises:
            NotFoundError: If the photo does not exist
        """
        photo = await self.photos.get(photo_id)
        if photo is None:
            raise NotFoundError(f"Photo not found: {photo_id}")

        try:
            await self.storage.remove([photo.file_path])
        except SnapMeError as e:
            logger.warning(f"Storage delete failed for {photo.file_path}, removing record anyway: {e}")

        await self.photos.delete(photo_id)
        self.manager.events.publish(EventType.PHOTO_DELETED, photo)
        async with self._aggregate_lock:
            await self.manager.refresh_aggregates(photo.folder_id)
        logger.info(f"Deleted photo {photo_id} from folder {photo.folder_id}")
