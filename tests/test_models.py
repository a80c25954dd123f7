"""Tests for data models."""

from datetime import datetime, timezone

import pytest

from snapme_claim.models import (
    DownloadResult,
    FileValidation,
    FolderStatus,
    Photo,
    PhotoFolder,
    UploadFile,
)


def _folder(**kwargs) -> PhotoFolder:
    base = dict(
        id="f1",
        customer_name="Ani",
        customer_phone="0812",
        folder_path="photos/manual/x/2024-06-01_Ani_0812",
        folder_name="2024-06-01_Ani_0812",
    )
    base.update(kwargs)
    return PhotoFolder(**base)


class TestPhotoFolder:
    """Test folder invariants and row mapping."""

    def test_claimed_requires_claimed_at(self) -> None:
        with pytest.raises(ValueError, match="claimed_at"):
            _folder(status=FolderStatus.CLAIMED)

    def test_claimed_at_only_when_claimed(self) -> None:
        with pytest.raises(ValueError, match="claimed_at"):
            _folder(status=FolderStatus.READY, claimed_at=datetime.now(timezone.utc))

    def test_customer_visibility(self) -> None:
        assert not _folder(status=FolderStatus.PENDING).is_customer_visible
        assert _folder(status=FolderStatus.READY).is_customer_visible
        assert not _folder(status=FolderStatus.EXPIRED).is_customer_visible

    def test_from_row_parses_timestamps(self, folder_row) -> None:
        folder = PhotoFolder.from_row(
            folder_row(status="claimed", claimed_at="2024-06-02T08:30:00Z")
        )

        assert folder.status == FolderStatus.CLAIMED
        assert folder.claimed_at == datetime(2024, 6, 2, 8, 30, tzinfo=timezone.utc)
        assert folder.info.folder_name == "2024-06-01_BudiSantoso_081234567890"

    def test_row_round_trip(self, folder_row) -> None:
        folder = PhotoFolder.from_row(folder_row())
        assert PhotoFolder.from_row(folder.to_row()) == folder


class TestPhoto:
    def test_defaults_from_sparse_row(self) -> None:
        photo = Photo.from_row(
            {"id": 7, "folder_id": "f1", "file_name": "a.jpg", "file_path": "p/a.jpg"}
        )

        assert photo.id == "7"
        assert photo.file_size == 0
        assert photo.download_count == 0
        assert photo.is_active


class TestResults:
    def test_upload_file_size(self) -> None:
        assert UploadFile("a.jpg", b"12345", "image/jpeg").size == 5

    def test_invalid_validation_needs_error(self) -> None:
        with pytest.raises(ValueError):
            FileValidation(valid=False)

    def test_successful_download_needs_archive(self) -> None:
        with pytest.raises(ValueError, match="archive"):
            DownloadResult(folder_id="f1", success=True)

    def test_failed_download_needs_message(self) -> None:
        with pytest.raises(ValueError, match="error_message"):
            DownloadResult(folder_id="f1", success=False)
