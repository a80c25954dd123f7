"""Pytest configuration and shared fixtures."""

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from snapme_claim.claims import ClaimSearchService
from snapme_claim.downloads import DownloadService
from snapme_claim.events import EventBus
from snapme_claim.folders import PhotoFolderManager
from snapme_claim.memory import (
    InMemoryFolderRepository,
    InMemoryObjectStorage,
    InMemoryPhotoRepository,
)
from snapme_claim.models import FolderStatus, PhotoFolder, UploadFile
from snapme_claim.uploads import PhotoUploadCoordinator


class FakeClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self) -> None:
        self.now = datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def folder_repo() -> InMemoryFolderRepository:
    return InMemoryFolderRepository()


@pytest.fixture
def photo_repo() -> InMemoryPhotoRepository:
    return InMemoryPhotoRepository()


@pytest.fixture
def storage() -> InMemoryObjectStorage:
    return InMemoryObjectStorage()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def manager(
    folder_repo: InMemoryFolderRepository,
    photo_repo: InMemoryPhotoRepository,
    storage: InMemoryObjectStorage,
    events: EventBus,
    clock: FakeClock,
) -> PhotoFolderManager:
    return PhotoFolderManager(folder_repo, photo_repo, storage, events=events, clock=clock)


@pytest.fixture
def uploads(manager: PhotoFolderManager) -> PhotoUploadCoordinator:
    return PhotoUploadCoordinator(manager, max_concurrent_uploads=2)


@pytest.fixture
def claims(manager: PhotoFolderManager) -> ClaimSearchService:
    return ClaimSearchService(manager)


@pytest.fixture
def downloads(manager: PhotoFolderManager) -> DownloadService:
    return DownloadService(manager)


@pytest.fixture
def make_file() -> Callable[..., UploadFile]:
    """Factory for in-memory upload files of a given size."""

    def _make(
        name: str = "photo.jpg", size: int = 1024, content_type: str = "image/jpeg"
    ) -> UploadFile:
        return UploadFile(file_name=name, content=b"x" * size, content_type=content_type)

    return _make


@pytest.fixture
def make_folder(
    manager: PhotoFolderManager,
) -> Callable[..., Awaitable[PhotoFolder]]:
    """Factory creating a folder and walking it to the requested status."""
    path_to = {
        FolderStatus.PENDING: [],
        FolderStatus.READY: [FolderStatus.READY],
        FolderStatus.CLAIMED: [FolderStatus.READY, FolderStatus.CLAIMED],
        FolderStatus.EXPIRED: [FolderStatus.READY, FolderStatus.EXPIRED],
    }

    async def _make(
        status: FolderStatus = FolderStatus.PENDING,
        name: str = "Budi Santoso",
        phone: str = "081234567890",
    ) -> PhotoFolder:
        folder = await manager.create_folder(name, phone)
        for step in path_to[status]:
            folder = await manager.update_status(folder.id, step)
        return folder

    return _make


@pytest.fixture
def folder_row() -> Callable[..., dict[str, Any]]:
    """Factory for ``photo_folders`` rows as the REST backend returns them."""

    def _row(**overrides: Any) -> dict[str, Any]:
        row = {
            "id": "folder-1",
            "customer_name": "Budi Santoso",
            "customer_phone": "081234567890",
            "customer_email": None,
            "package_name": "Basic",
            "folder_path": "photos/manual/abc/2024-06-01_BudiSantoso_081234567890",
            "folder_name": "2024-06-01_BudiSantoso_081234567890",
            "transaction_id": None,
            "uploaded_by": None,
            "status": "pending",
            "photo_count": 0,
            "total_size": 0,
            "created_at": "2024-06-01T10:00:00Z",
            "updated_at": "2024-06-01T10:00:00Z",
            "claimed_at": None,
        }
        row.update(overrides)
        return row

    return _row


@pytest.fixture
def temp_photos_dir(tmp_path: Path) -> Path:
    """Create a temporary session directory with test photos.

    Structure:
        session/
            photo1.jpg
            photo2.png
            notes.txt
            raw/
    """
    session = tmp_path / "session"
    session.mkdir()
    (session / "photo1.jpg").write_text("fake jpg content")
    (session / "photo2.png").write_text("fake png content")
    (session / "notes.txt").write_text("not a photo")
    (session / "raw").mkdir()
    return session
