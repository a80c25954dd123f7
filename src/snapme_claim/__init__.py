"""SnapMe Studio photo claim - folder lifecycle, uploads and customer downloads."""

__version__ = "0.1.0"

from snapme_claim.backend import BackendClient
from snapme_claim.claims import ClaimSearchService
from snapme_claim.downloads import DownloadService
from snapme_claim.events import EventBus, EventType
from snapme_claim.folders import PhotoFolderManager
from snapme_claim.models import FolderStatus, Photo, PhotoFolder, SearchMode, UploadFile
from snapme_claim.uploads import PhotoUploadCoordinator, validate_file

__all__ = [
    "BackendClient",
    "ClaimSearchService",
    "DownloadService",
    "EventBus",
    "EventType",
    "PhotoFolderManager",
    "FolderStatus",
    "Photo",
    "PhotoFolder",
    "SearchMode",
    "UploadFile",
    "PhotoUploadCoordinator",
    "validate_file",
]
