"""Process-local record store and storage gateway.

Used for dry runs and tests; nothing survives the process.
"""

import logging
import secrets
import time
from datetime import datetime
from typing import Any
from urllib.parse import parse_qs, urlsplit

from snapme_claim.errors import BackendError, NotFoundError
from snapme_claim.models import (
    FolderStatus,
    Photo,
    PhotoFolder,
    SearchMode,
    SignedUrl,
)

logger = logging.getLogger(__name__)

MEMORY_URL_SCHEME = "memory"


def _apply(model: Any, values: dict[str, Any]) -> Any:
    return type(model).from_row({**model.to_row(), **values})


def _newest_first(items: list[Any]) -> list[Any]:
    # Ties on created_at keep reverse insertion order
    return sorted(
        reversed(items),
        key=lambda i: i.created_at.timestamp() if i.created_at else 0.0,
        reverse=True,
    )


class InMemoryFolderRepository:
    """Folder repository held in a dict."""

    def __init__(self) -> None:
        self.rows: dict[str, PhotoFolder] = {}

    async def insert(self, folder: PhotoFolder) -> PhotoFolder:
        if folder.id in self.rows:
            raise BackendError(f"Duplicate folder id: {folder.id}")
        self.rows[folder.id] = folder
        return folder

    async def get(self, folder_id: str) -> PhotoFolder | None:
        return self.rows.get(folder_id)

    async def list_all(
        self,
        status: FolderStatus | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[PhotoFolder]:
        folders = [f for f in self.rows.values() if status is None or f.status == status]
        folders = _newest_first(folders)[offset or 0 :]
        return folders[:limit] if limit is not None else folders

    async def search(
        self,
        mode: SearchMode,
        term: str,
        statuses: frozenset[FolderStatus] | None = None,
    ) -> list[PhotoFolder]:
        needle = term.lower()
        matches = []
        for folder in self.rows.values():
            value = folder.customer_phone if mode == SearchMode.PHONE else folder.customer_name
            if needle not in value.lower():
                continue
            if statuses is not None and folder.status not in statuses:
                continue
            matches.append(folder)
        return _newest_first(matches)

    async def list_claimed_before(self, cutoff: datetime) -> list[PhotoFolder]:
        return sorted(
            (
                f
                for f in self.rows.values()
                if f.status == FolderStatus.CLAIMED and f.claimed_at and f.claimed_at <= cutoff
            ),
            key=lambda f: f.claimed_at,
        )

    async def update(self, folder_id: str, values: dict[str, Any]) -> PhotoFolder:
        if folder_id not in self.rows:
            raise NotFoundError(f"Folder not found: {folder_id}")
        folder = _apply(self.rows[folder_id], values)
        self.rows[folder_id] = folder
        return folder

    async def delete(self, folder_id: str) -> None:
        self.rows.pop(folder_id, None)


class InMemoryPhotoRepository:
    """Photo repository held in a dict."""

    def __init__(self) -> None:
        self.rows: dict[str, Photo] = {}

    async def insert(self, photo: Photo) -> Photo:
        for existing in self.rows.values():
            if existing.folder_id == photo.folder_id and existing.file_path == photo.file_path:
                raise BackendError(f"Duplicate file path in folder: {photo.file_path}")
        self.rows[photo.id] = photo
        return photo

    async def get(self, photo_id: str) -> Photo | None:
        return self.rows.get(photo_id)

    async def list_by_folder(self, folder_id: str) -> list[Photo]:
        return [p for p in self.rows.values() if p.folder_id == folder_id and p.is_active]

    async def update(self, photo_id: str, values: dict[str, Any]) -> Photo:
        if photo_id not in self.rows:
            raise NotFoundError(f"Photo not found: {photo_id}")
        photo = _apply(self.rows[photo_id], values)
        self.rows[photo_id] = photo
        return photo

    async def delete(self, photo_id: str) -> None:
        self.rows.pop(photo_id, None)


class InMemoryObjectStorage:
    """Storage gateway keeping objects in a dict and signing ``memory://`` URLs."""

    def __init__(self, bucket: str = "photos") -> None:
        self.bucket = bucket
        self.objects: dict[str, bytes] = {}
        self._tokens: dict[str, tuple[str, float]] = {}

    async def upload(self, path: str, content: bytes, content_type: str) -> None:
        if path in self.objects:
            raise BackendError(f"Object already exists: {path}")
        self.objects[path] = content

    async def create_signed_url(self, path: str, expires_in: int) -> str:
        if path not in self.objects:
            raise NotFoundError(f"Object not found: {path}")
        token = secrets.token_urlsafe(16)
        self._tokens[token] = (path, time.time() + expires_in)
        return f"{MEMORY_URL_SCHEME}://{self.bucket}/{path}?token={token}"

    async def create_signed_urls(self, paths: list[str], expires_in: int) -> list[SignedUrl]:
        urls = []
        for path in paths:
            if path not in self.objects:
                logger.warning(f"Could not sign {path}: not found")
                continue
            url = await self.create_signed_url(path, expires_in)
            urls.append(SignedUrl(path=path, url=url, expires_in=expires_in))
        return urls

    async def remove(self, paths: list[str]) -> None:
        for path in paths:
            self.objects.pop(path, None)

    async def fetch(self, url: str) -> bytes:
        token = parse_qs(urlsplit(url).query).get("token", [""])[0]
        if token not in self._tokens:
            raise BackendError("Invalid signed URL")
        path, expires_at = self._tokens[token]
        if time.time() > expires_at:
            raise BackendError("Signed URL has expired")
        if path not in self.objects:
            raise NotFoundError(f"Object not found: {path}")
        return self.objects[path]
