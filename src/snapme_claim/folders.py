"""Photo folder lifecycle: creation, status transitions, search and expiry."""

import json
import logging
import re
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from snapme_claim.errors import InvalidTransitionError, NotFoundError, ValidationError
from snapme_claim.events import EventBus, EventType
from snapme_claim.models import (
    CUSTOMER_VISIBLE_STATUSES,
    FolderStatus,
    PhotoFolder,
    SearchMode,
    format_timestamp,
)
from snapme_claim.repositories import FolderRepository, ObjectStorage, PhotoRepository

logger = logging.getLogger(__name__)

# Allowed status changes; expired is terminal
TRANSITIONS: dict[FolderStatus, frozenset[FolderStatus]] = {
    FolderStatus.PENDING: frozenset({FolderStatus.READY}),
    FolderStatus.READY: frozenset({FolderStatus.CLAIMED, FolderStatus.EXPIRED}),
    FolderStatus.CLAIMED: frozenset({FolderStatus.EXPIRED}),
    FolderStatus.EXPIRED: frozenset(),
}

DEFAULT_RETENTION = timedelta(days=3)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: FolderStatus, new: FolderStatus) -> bool:
    return new in TRANSITIONS[current]


def validate_folder_data(customer_name: Any, customer_phone: Any) -> list[str]:
    """Return the list of problems with the required folder fields."""
    errors = []
    if not isinstance(customer_name, str) or not customer_name.strip():
        errors.append("customer_name is required")
    if not isinstance(customer_phone, str) or not customer_phone.strip():
        errors.append("customer_phone is required")
    return errors


def generate_folder_path(
    source_type: str,
    source_id: str,
    customer_name: str,
    customer_phone: str,
    today: datetime | None = None,
) -> str:
    """Build the storage namespace of a new folder.

    Layout: ``photos/<source_type>/<source_id>/<date>_<name>_<phone>`` where
    the name keeps only ASCII letters and digits and the phone only digits.
    """
    date = (today or utc_now()).date().isoformat()
    name = re.sub(r"[^a-zA-Z0-9]", "", customer_name)
    phone = re.sub(r"[^0-9]", "", customer_phone)
    return f"photos/{source_type}/{source_id}/{date}_{name}_{phone}"


def serialize_folder_metadata(folder: PhotoFolder) -> str:
    """Serialize the customer-facing metadata of a folder to JSON."""
    return json.dumps(
        {
            "folderId": folder.id,
            "customerName": folder.customer_name,
            "customerPhone": folder.customer_phone,
            "customerEmail": folder.customer_email,
            "packageName": folder.package_name,
            "transactionId": folder.transaction_id,
            "createdAt": format_timestamp(folder.created_at) or format_timestamp(utc_now()),
        }
    )


def deserialize_folder_metadata(data: str) -> dict[str, Any]:
    """Parse metadata produced by :func:`serialize_folder_metadata`."""
    parsed = json.loads(data)
    return {
        "folderId": parsed["folderId"],
        "customerName": parsed["customerName"],
        "customerPhone": parsed["customerPhone"],
        "customerEmail": parsed.get("customerEmail") or None,
        "packageName": parsed.get("packageName") or None,
        "transactionId": parsed.get("transactionId") or None,
        "createdAt": parsed.get("createdAt"),
    }


class PhotoFolderManager:
    """Owns the folder state machine and the derived folder aggregates."""

    def __init__(
        self,
        folders: FolderRepository,
        photos: PhotoRepository,
        storage: ObjectStorage,
        events: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize folder manager.

        Args:
            folders: Folder record store
            photos: Photo record store (for aggregates and cascades)
            storage: Storage gateway (for cascading deletes)
            events: Optional bus receiving change events
            clock: Source of the current time
        """
        self.folders = folders
        self.photos = photos
        self.storage = storage
        self.events = events or EventBus()
        self.clock = clock

    async def create_folder(
        self,
        customer_name: str,
        customer_phone: str,
        customer_email: str | None = None,
        package_name: str | None = None,
        transaction_id: str | None = None,
        uploaded_by: str | None = None,
    ) -> PhotoFolder:
        """Open a new pending folder for a customer session.

        Raises:
            ValidationError: If customer name or phone is missing or blank
        """
        errors = validate_folder_data(customer_name, customer_phone)
        if errors:
            raise ValidationError(errors)

        now = self.clock()
        source_type = "transactions" if transaction_id else "manual"
        source_id = transaction_id or str(uuid.uuid4())
        folder_path = generate_folder_path(
            source_type, source_id, customer_name, customer_phone, today=now
        )

        folder = PhotoFolder(
            id=str(uuid.uuid4()),
            customer_name=customer_name.strip(),
            customer_phone=customer_phone.strip(),
            customer_email=(customer_email or "").strip() or None,
            package_name=package_name or None,
            transaction_id=transaction_id or None,
            uploaded_by=uploaded_by,
            folder_path=folder_path,
            folder_name=folder_path.rsplit("/", 1)[-1],
            status=FolderStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        folder = await self.folders.insert(folder)
        logger.info(f"Created folder {folder.id} for '{folder.customer_name}'")
        self.events.publish(EventType.FOLDER_CREATED, folder)
        return folder

    async def get_by_id(self, folder_id: str) -> PhotoFolder:
        """Get a folder.

        Raises:
            NotFoundError: If the folder does not exist
        """
        folder = await self.folders.get(folder_id)
        if folder is None:
            raise NotFoundError(f"Folder not found: {folder_id}")
        return folder

    async def list_folders(
        self,
        status: FolderStatus | str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[PhotoFolder]:
        status = _coerce_status(status) if status is not None else None
        return await self.folders.list_all(status=status, limit=limit, offset=offset)

    async def update_status(
        self, folder_id: str, new_status: FolderStatus | str
    ) -> PhotoFolder:
        """Move a folder to a new status.

        ``claimed_at`` is stamped on entering ``claimed`` and cleared on
        leaving it.

        Raises:
            ValidationError: If ``new_status`` is not a known status
            NotFoundError: If the folder does not exist
            InvalidTransitionError: If the change is not allowed
        """
        new_status = _coerce_status(new_status)
        folder = await self.get_by_id(folder_id)

        if not can_transition(folder.status, new_status):
            logger.warning(
                f"Rejected status change {folder.status.value} -> {new_status.value} "
                f"for folder {folder_id}"
            )
            raise InvalidTransitionError(folder.status.value, new_status.value)

        now = self.clock()
        values: dict[str, Any] = {
            "status": new_status.value,
            "updated_at": format_timestamp(now),
        }
        if new_status == FolderStatus.CLAIMED:
            values["claimed_at"] = format_timestamp(now)
        elif folder.status == FolderStatus.CLAIMED:
            values["claimed_at"] = None

        updated = await self.folders.update(folder_id, values)
        logger.info(f"Folder {folder_id}: {folder.status.value} -> {new_status.value}")
        self.events.publish(EventType.FOLDER_STATUS_CHANGED, updated)
        return updated

    async def mark_claimed_on_download(self, folder_id: str) -> PhotoFolder | None:
        """Claim a ready folder; any other status is left untouched.

        Returns:
            The claimed folder, or None if the folder was not ``ready``
        """
        folder = await self.get_by_id(folder_id)
        if folder.status != FolderStatus.READY:
            logger.debug(f"Folder {folder_id} is {folder.status.value}, no claim needed")
            return None
        return await self.update_status(folder_id, FolderStatus.CLAIMED)

    async def search(
        self,
        term: str | None,
        mode: SearchMode | str = SearchMode.PHONE,
        for_customer: bool = False,
    ) -> list[PhotoFolder]:
        """Find folders by partial, case-insensitive phone or name match.

        With ``for_customer`` only ``ready`` and ``claimed`` folders are
        returned. A blank term returns no folders without querying;
        ``*`` is ignored.
        """
        try:
            mode = SearchMode(mode)
        except ValueError:
            raise ValidationError(f"Invalid search mode: {mode}") from None

        # "*" is a wildcard on the REST backend and has no literal form
        term = (term or "").replace("*", "").strip()
        if not term:
            return []

        statuses = CUSTOMER_VISIBLE_STATUSES if for_customer else None
        folders = await self.folders.search(mode, term, statuses)
        if for_customer:
            folders = [f for f in folders if f.is_customer_visible]
        return folders

    async def load_shared_folder(self, folder_id: str) -> PhotoFolder | None:
        """Resolve a ``?folder=<id>`` link; hidden folders resolve to None."""
        folder = await self.folders.get(folder_id)
        if folder is None or not folder.is_customer_visible:
            return None
        return folder

    async def refresh_aggregates(self, folder_id: str) -> PhotoFolder:
        """Recompute photo_count and total_size from the folder's photos."""
        photos = await self.photos.list_by_folder(folder_id)
        return await self.folders.update(
            folder_id,
            {
                "photo_count": len(photos),
                "total_size": sum(p.file_size for p in photos),
                "updated_at": format_timestamp(self.clock()),
            },
        )

    async def delete_folder(self, folder_id: str) -> None:
        """Delete a folder together with all its photos and stored objects."""
        folder = await self.get_by_id(folder_id)
        await self._delete_photos(folder_id)
        await self.folders.delete(folder_id)
        logger.info(f"Deleted folder {folder_id}")
        self.events.publish(EventType.FOLDER_DELETED, folder)

    async def expire_claimed_folders(
        self, retention: timedelta = DEFAULT_RETENTION, now: datetime | None = None
    ) -> list[PhotoFolder]:
        """Expire folders claimed longer than ``retention`` ago.

        Each expired folder loses its photos. Scheduling is left to the
        caller; this performs a single sweep.

        Returns:
            The folders that were expired
        """
        cutoff = (now or self.clock()) - retention
        expired = []
        for folder in await self.folders.list_claimed_before(cutoff):
            await self._delete_photos(folder.id)
            await self.update_status(folder.id, FolderStatus.EXPIRED)
            expired.append(await self.refresh_aggregates(folder.id))
        if expired:
            logger.info(f"Expired {len(expired)} folder(s) claimed before {cutoff.isoformat()}")
        return expired

    async def _delete_photos(self, folder_id: str) -> None:
        photos = await self.photos.list_by_folder(folder_id)
        if not photos:
            return
        await self.storage.remove([p.file_path for p in photos])
        for photo in photos:
            await self.photos.delete(photo.id)
            self.events.publish(EventType.PHOTO_DELETED, photo)


def _coerce_status(status: FolderStatus | str) -> FolderStatus:
    try:
        return FolderStatus(status)
    except ValueError:
        raise ValidationError(f"Invalid status: {status}") from None
