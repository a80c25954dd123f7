"""Typed record store and storage gateway interfaces with REST implementations."""

import logging
from datetime import datetime
from typing import Any, Protocol

from snapme_claim.backend import BackendClient, eq, ilike, in_, lte
from snapme_claim.errors import BackendError, NotFoundError
from snapme_claim.models import (
    FolderStatus,
    Photo,
    PhotoFolder,
    SearchMode,
    SignedUrl,
    format_timestamp,
)

logger = logging.getLogger(__name__)

FOLDERS_TABLE = "photo_folders"
PHOTOS_TABLE = "photo_files"
DEFAULT_BUCKET = "photos"

_SEARCH_COLUMNS = {
    SearchMode.PHONE: "customer_phone",
    SearchMode.NAME: "customer_name",
}


def _from_row(model: Any, table: str, row: dict[str, Any]) -> Any:
    try:
        return model.from_row(row)
    except (KeyError, TypeError, ValueError) as e:
        logger.error(f"Malformed {table} row: {e}")
        raise BackendError(f"Malformed {table} row: {e}") from e


class FolderRepository(Protocol):
    """Record store operations on photo folders."""

    async def insert(self, folder: PhotoFolder) -> PhotoFolder: ...

    async def get(self, folder_id: str) -> PhotoFolder | None: ...

    async def list_all(
        self,
        status: FolderStatus | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[PhotoFolder]: ...

    async def search(
        self,
        mode: SearchMode,
        term: str,
        statuses: frozenset[FolderStatus] | None = None,
    ) -> list[PhotoFolder]: ...

    async def list_claimed_before(self, cutoff: datetime) -> list[PhotoFolder]: ...

    async def update(self, folder_id: str, values: dict[str, Any]) -> PhotoFolder: ...

    async def delete(self, folder_id: str) -> None: ...


class PhotoRepository(Protocol):
    """Record store operations on photos."""

    async def insert(self, photo: Photo) -> Photo: ...

    async def get(self, photo_id: str) -> Photo | None: ...

    async def list_by_folder(self, folder_id: str) -> list[Photo]: ...

    async def update(self, photo_id: str, values: dict[str, Any]) -> Photo: ...

    async def delete(self, photo_id: str) -> None: ...


class ObjectStorage(Protocol):
    """Storage gateway for photo bytes."""

    async def upload(self, path: str, content: bytes, content_type: str) -> None: ...

    async def create_signed_url(self, path: str, expires_in: int) -> str: ...

    async def create_signed_urls(self, paths: list[str], expires_in: int) -> list[SignedUrl]: ...

    async def remove(self, paths: list[str]) -> None: ...

    async def fetch(self, url: str) -> bytes: ...


class RestFolderRepository:
    """Folder repository backed by the ``photo_folders`` table."""

    def __init__(self, backend: BackendClient, table: str = FOLDERS_TABLE) -> None:
        self.backend = backend
        self.table = table

    async def insert(self, folder: PhotoFolder) -> PhotoFolder:
        row = await self.backend.insert(self.table, folder.to_row())
        return _from_row(PhotoFolder, self.table, row)

    async def get(self, folder_id: str) -> PhotoFolder | None:
        rows = await self.backend.select(self.table, {"id": eq(folder_id)}, limit=1)
        return _from_row(PhotoFolder, self.table, rows[0]) if rows else None

    async def list_all(
        self,
        status: FolderStatus | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[PhotoFolder]:
        filters = {"status": eq(status.value)} if status else {}
        rows = await self.backend.select(
            self.table, filters, order="created_at.desc", limit=limit, offset=offset
        )
        return [_from_row(PhotoFolder, self.table, row) for row in rows]

    async def search(
        self,
        mode: SearchMode,
        term: str,
        statuses: frozenset[FolderStatus] | None = None,
    ) -> list[PhotoFolder]:
        filters = {_SEARCH_COLUMNS[mode]: ilike(term)}
        if statuses is not None:
            filters["status"] = in_(sorted(s.value for s in statuses))
        rows = await self.backend.select(self.table, filters, order="created_at.desc")
        return [_from_row(PhotoFolder, self.table, row) for row in rows]

    async def list_claimed_before(self, cutoff: datetime) -> list[PhotoFolder]:
        filters = {
            "status": eq(FolderStatus.CLAIMED.value),
            "claimed_at": lte(format_timestamp(cutoff)),
        }
        rows = await self.backend.select(self.table, filters, order="claimed_at.asc")
        return [_from_row(PhotoFolder, self.table, row) for row in rows]

    async def update(self, folder_id: str, values: dict[str, Any]) -> PhotoFolder:
        rows = await self.backend.update(self.table, values, {"id": eq(folder_id)})
        if not rows:
            raise NotFoundError(f"Folder not found: {folder_id}")
        return _from_row(PhotoFolder, self.table, rows[0])

    async def delete(self, folder_id: str) -> None:
        await self.backend.delete(self.table, {"id": eq(folder_id)})


class RestPhotoRepository:
    """Photo repository backed by the ``photo_files`` table."""

    def __init__(self, backend: BackendClient, table: str = PHOTOS_TABLE) -> None:
        self.backend = backend
        self.table = table

    async def insert(self, photo: Photo) -> Photo:
        row = await self.backend.insert(self.table, photo.to_row())
        return _from_row(Photo, self.table, row)

    async def get(self, photo_id: str) -> Photo | None:
        rows = await self.backend.select(self.table, {"id": eq(photo_id)}, limit=1)
        return _from_row(Photo, self.table, rows[0]) if rows else None

    async def list_by_folder(self, folder_id: str) -> list[Photo]:
        rows = await self.backend.select(
            self.table,
            {"folder_id": eq(folder_id), "is_active": eq("true")},
            order="created_at.asc",
        )
        return [_from_row(Photo, self.table, row) for row in rows]

    async def update(self, photo_id: str, values: dict[str, Any]) -> Photo:
        rows = await self.backend.update(self.table, values, {"id": eq(photo_id)})
        if not rows:
            raise NotFoundError(f"Photo not found: {photo_id}")
        return _from_row(Photo, self.table, rows[0])

    async def delete(self, photo_id: str) -> None:
        await self.backend.delete(self.table, {"id": eq(photo_id)})


class RestObjectStorage:
    """Storage gateway backed by a bucket of the hosted object storage."""

    def __init__(self, backend: BackendClient, bucket: str = DEFAULT_BUCKET) -> None:
        self.backend = backend
        self.bucket = bucket

    async def upload(self, path: str, content: bytes, content_type: str) -> None:
        await self.backend.upload_object(self.bucket, path, content, content_type)

    async def create_signed_url(self, path: str, expires_in: int) -> str:
        return await self.backend.create_signed_url(self.bucket, path, expires_in)

    async def create_signed_urls(self, paths: list[str], expires_in: int) -> list[SignedUrl]:
        if not paths:
            return []
        entries = await self.backend.create_signed_urls(self.bucket, paths, expires_in)
        urls = []
        for entry in entries:
            if entry["url"] is None:
                logger.warning(f"Could not sign {entry['path']}: {entry['error']}")
                continue
            urls.append(SignedUrl(path=entry["path"], url=entry["url"], expires_in=expires_in))
        return urls

    async def remove(self, paths: list[str]) -> None:
        if paths:
            await self.backend.remove_objects(self.bucket, paths)

    async def fetch(self, url: str) -> bytes:
        return await self.backend.fetch(url)
