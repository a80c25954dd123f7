"""Data models for photo folders, photos and operation results."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class FolderStatus(str, Enum):
    """Lifecycle states of a customer photo folder."""

    PENDING = "pending"
    READY = "ready"
    CLAIMED = "claimed"
    EXPIRED = "expired"


class SearchMode(str, Enum):
    """Field a folder search matches against."""

    PHONE = "phone"
    NAME = "name"


# Statuses an unauthenticated customer may ever see
CUSTOMER_VISIBLE_STATUSES = frozenset({FolderStatus.READY, FolderStatus.CLAIMED})


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp coming from the record store."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def format_timestamp(value: datetime | None) -> str | None:
    """Format a timestamp for the record store."""
    return value.isoformat() if value else None


@dataclass(frozen=True)
class FolderInfo:
    """Storage namespace of a folder, as needed by the upload coordinator."""

    folder_path: str
    folder_name: str
    transaction_id: str | None = None


@dataclass(frozen=True)
class PhotoFolder:
    """A customer's photo session grouping."""

    id: str
    customer_name: str
    customer_phone: str
    folder_path: str
    folder_name: str
    status: FolderStatus = FolderStatus.PENDING
    customer_email: str | None = None
    package_name: str | None = None
    transaction_id: str | None = None
    uploaded_by: str | None = None
    photo_count: int = 0
    total_size: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    claimed_at: datetime | None = None

    def __post_init__(self) -> None:
        """Validate folder data."""
        if (self.claimed_at is not None) != (self.status == FolderStatus.CLAIMED):
            raise ValueError("claimed_at must be set if and only if status is 'claimed'")

    @property
    def info(self) -> FolderInfo:
        return FolderInfo(self.folder_path, self.folder_name, self.transaction_id)

    @property
    def is_customer_visible(self) -> bool:
        return self.status in CUSTOMER_VISIBLE_STATUSES

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "PhotoFolder":
        """Build a folder from a snake_case record store row."""
        return cls(
            id=str(row["id"]),
            customer_name=row["customer_name"],
            customer_phone=row["customer_phone"],
            folder_path=row["folder_path"],
            folder_name=row["folder_name"],
            status=FolderStatus(row.get("status") or FolderStatus.PENDING),
            customer_email=row.get("customer_email"),
            package_name=row.get("package_name"),
            transaction_id=row.get("transaction_id"),
            uploaded_by=row.get("uploaded_by"),
            photo_count=row.get("photo_count") or 0,
            total_size=row.get("total_size") or 0,
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
            claimed_at=parse_timestamp(row.get("claimed_at")),
        )

    def to_row(self) -> dict[str, Any]:
        """Convert to a record store row."""
        return {
            "id": self.id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "folder_path": self.folder_path,
            "folder_name": self.folder_name,
            "status": self.status.value,
            "customer_email": self.customer_email,
            "package_name": self.package_name,
            "transaction_id": self.transaction_id,
            "uploaded_by": self.uploaded_by,
            "photo_count": self.photo_count,
            "total_size": self.total_size,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "claimed_at": format_timestamp(self.claimed_at),
        }


@dataclass(frozen=True)
class Photo:
    """A single uploaded photo belonging to a folder."""

    id: str
    folder_id: str
    file_name: str
    file_path: str
    file_size: int
    file_type: str | None = None
    download_count: int = 0
    last_downloaded_at: datetime | None = None
    is_active: bool = True
    uploaded_by: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Photo":
        return cls(
            id=str(row["id"]),
            folder_id=str(row["folder_id"]),
            file_name=row["file_name"],
            file_path=row["file_path"],
            file_size=row.get("file_size") or 0,
            file_type=row.get("file_type"),
            download_count=row.get("download_count") or 0,
            last_downloaded_at=parse_timestamp(row.get("last_downloaded_at")),
            is_active=row.get("is_active", True),
            uploaded_by=row.get("uploaded_by"),
            created_at=parse_timestamp(row.get("created_at")),
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "folder_id": self.folder_id,
            "file_name": self.file_name,
            "file_path": self.file_path,
            "file_size": self.file_size,
            "file_type": self.file_type,
            "download_count": self.download_count,
            "last_downloaded_at": format_timestamp(self.last_downloaded_at),
            "is_active": self.is_active,
            "uploaded_by": self.uploaded_by,
            "created_at": format_timestamp(self.created_at),
        }


@dataclass(frozen=True)
class UploadFile:
    """A file selected for upload, held in memory."""

    file_name: str
    content: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class FileValidation:
    """Outcome of validating a file before upload."""

    valid: bool
    error: str | None = None

    def __post_init__(self) -> None:
        if not self.valid and not self.error:
            raise ValueError("Invalid file must have an error")


@dataclass(frozen=True)
class UploadFailure:
    """A file that could not be uploaded, with the reason."""

    file: UploadFile
    reason: str


@dataclass
class BatchUploadResult:
    """Result of a multi-file upload: each file lands in exactly one list."""

    successful: list[Photo] = field(default_factory=list)
    failed: list[UploadFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed)


@dataclass(frozen=True)
class SignedUrl:
    """A time-limited download link for a storage object."""

    path: str
    url: str
    expires_in: int


@dataclass(frozen=True)
class SearchOutcome:
    """Result of a customer search.

    An empty ``folders`` list with no ``error`` is a normal "no results"
    state; ``error`` is only set when the search itself failed.
    """

    folders: list[PhotoFolder] = field(default_factory=list)
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class DownloadFailure:
    """A photo that could not be fetched into the archive."""

    photo: Photo
    reason: str


@dataclass(frozen=True)
class DownloadResult:
    """Result of downloading a whole folder as a ZIP archive."""

    folder_id: str
    success: bool
    archive_name: str | None = None
    archive: bytes | None = None
    included: list[Photo] = field(default_factory=list)
    failed: list[DownloadFailure] = field(default_factory=list)
    claimed: bool = False
    error_message: str | None = None

    def __post_init__(self) -> None:
        """Validate download result."""
        if self.success and self.archive is None:
            raise ValueError("Successful download must have an archive")
        if not self.success and not self.error_message:
            raise ValueError("Failed download must have an error_message")
