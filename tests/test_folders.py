"""Tests for the folder state machine, search and expiry."""

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from snapme_claim.errors import InvalidTransitionError, NotFoundError, ValidationError
from snapme_claim.events import EventType
from snapme_claim.folders import (
    TRANSITIONS,
    deserialize_folder_metadata,
    generate_folder_path,
    serialize_folder_metadata,
)
from snapme_claim.models import FolderStatus, SearchMode


@pytest.mark.asyncio
class TestCreateFolder:
    """Test folder creation."""

    async def test_create_initializes_pending(self, manager) -> None:
        folder = await manager.create_folder(
            "  Budi Santoso ", " 0812-3456 ", customer_email="  ", package_name="Couple"
        )

        assert folder.status == FolderStatus.PENDING
        assert folder.photo_count == 0
        assert folder.total_size == 0
        assert folder.claimed_at is None
        assert folder.customer_name == "Budi Santoso"
        assert folder.customer_phone == "0812-3456"
        assert folder.customer_email is None
        assert folder.package_name == "Couple"

    async def test_folder_path_layout(self, manager) -> None:
        folder = await manager.create_folder("Budi S.", "+62 812", transaction_id="trx-9")

        assert folder.folder_path == "photos/transactions/trx-9/2024-06-01_BudiS_62812"
        assert folder.folder_name == "2024-06-01_BudiS_62812"

    async def test_manual_folder_gets_own_namespace(self, manager) -> None:
        first = await manager.create_folder("Ani", "0811")
        second = await manager.create_folder("Ani", "0811")

        assert first.folder_path.startswith("photos/manual/")
        assert first.folder_path != second.folder_path

    @pytest.mark.parametrize(
        "name,phone,missing",
        [
            ("", "0812", ["customer_name is required"]),
            ("Ani", "   ", ["customer_phone is required"]),
            (" ", "", ["customer_name is required", "customer_phone is required"]),
        ],
    )
    async def test_missing_required_fields(self, manager, folder_repo, name, phone, missing) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await manager.create_folder(name, phone)

        assert exc_info.value.errors == missing
        assert folder_repo.rows == {}

    async def test_publishes_created_event(self, manager, events) -> None:
        received = []
        events.subscribe(EventType.FOLDER_CREATED, received.append)

        folder = await manager.create_folder("Ani", "0811")

        assert [e.payload.id for e in received] == [folder.id]


@pytest.mark.asyncio
class TestUpdateStatus:
    """Test status transitions."""

    async def test_pending_to_claimed_rejected(self, manager, make_folder) -> None:
        folder = await make_folder(FolderStatus.PENDING)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await manager.update_status(folder.id, "claimed")

        assert exc_info.value.current == "pending"
        assert exc_info.value.requested == "claimed"
        assert (await manager.get_by_id(folder.id)).status == FolderStatus.PENDING

    async def test_claimed_sets_claimed_at(self, manager, make_folder, clock) -> None:
        folder = await make_folder(FolderStatus.READY)
        clock.advance(timedelta(hours=2))

        claimed = await manager.update_status(folder.id, FolderStatus.CLAIMED)

        assert claimed.status == FolderStatus.CLAIMED
        assert claimed.claimed_at == clock.now

    async def test_leaving_claimed_clears_claimed_at(self, manager, make_folder) -> None:
        folder = await make_folder(FolderStatus.CLAIMED)

        expired = await manager.update_status(folder.id, FolderStatus.EXPIRED)

        assert expired.status == FolderStatus.EXPIRED
        assert expired.claimed_at is None

    @pytest.mark.parametrize("current", list(FolderStatus))
    async def test_transition_table(self, manager, make_folder, current) -> None:
        for target in FolderStatus:
            folder = await make_folder(current)
            if target in TRANSITIONS[current]:
                updated = await manager.update_status(folder.id, target)
                assert updated.status == target
                assert (updated.claimed_at is not None) == (target == FolderStatus.CLAIMED)
            else:
                with pytest.raises(InvalidTransitionError):
                    await manager.update_status(folder.id, target)

    async def test_expired_is_terminal(self, manager, make_folder) -> None:
        folder = await make_folder(FolderStatus.EXPIRED)

        for target in FolderStatus:
            with pytest.raises(InvalidTransitionError):
                await manager.update_status(folder.id, target)

    async def test_unknown_status(self, manager, make_folder) -> None:
        folder = await make_folder()

        with pytest.raises(ValidationError, match="Invalid status"):
            await manager.update_status(folder.id, "archived")

    async def test_missing_folder(self, manager) -> None:
        with pytest.raises(NotFoundError):
            await manager.update_status("nope", FolderStatus.READY)

    async def test_status_event(self, manager, make_folder, events) -> None:
        folder = await make_folder()
        received = []
        events.subscribe(EventType.FOLDER_STATUS_CHANGED, received.append)

        await manager.update_status(folder.id, FolderStatus.READY)

        assert received[0].payload.status == FolderStatus.READY


@pytest.mark.asyncio
class TestMarkClaimedOnDownload:
    async def test_ready_folder_claimed(self, manager, make_folder) -> None:
        folder = await make_folder(FolderStatus.READY)

        claimed = await manager.mark_claimed_on_download(folder.id)

        assert claimed is not None
        assert claimed.status == FolderStatus.CLAIMED

    async def test_already_claimed_untouched(self, manager, make_folder, clock) -> None:
        folder = await make_folder(FolderStatus.CLAIMED)
        clock.advance(timedelta(days=1))

        assert await manager.mark_claimed_on_download(folder.id) is None
        assert (await manager.get_by_id(folder.id)).claimed_at == folder.claimed_at

    async def test_pending_not_claimed(self, manager, make_folder) -> None:
        folder = await make_folder(FolderStatus.PENDING)

        assert await manager.mark_claimed_on_download(folder.id) is None
        assert (await manager.get_by_id(folder.id)).status == FolderStatus.PENDING


@pytest.mark.asyncio
class TestSearch:
    """Test staff and customer search."""

    async def test_customer_search_hides_pending_and_expired(self, manager, make_folder) -> None:
        pending = await make_folder(FolderStatus.PENDING, phone="0812111")
        ready = await make_folder(FolderStatus.READY, phone="0812222")
        claimed = await make_folder(FolderStatus.CLAIMED, phone="0812333")
        expired = await make_folder(FolderStatus.EXPIRED, phone="0812444")

        results = await manager.search("0812", SearchMode.PHONE, for_customer=True)

        ids = {f.id for f in results}
        assert ids == {ready.id, claimed.id}
        assert pending.id not in ids and expired.id not in ids
        assert all(f.status in (FolderStatus.READY, FolderStatus.CLAIMED) for f in results)

    async def test_staff_search_sees_everything(self, manager, make_folder) -> None:
        await make_folder(FolderStatus.PENDING, phone="0812111")
        await make_folder(FolderStatus.EXPIRED, phone="0812444")

        results = await manager.search("0812", "phone")

        assert len(results) == 2

    async def test_name_search_case_insensitive_partial(self, manager, make_folder) -> None:
        folder = await make_folder(FolderStatus.READY, name="Siti Rahma")

        results = await manager.search("  rahm ", SearchMode.NAME, for_customer=True)

        assert [f.id for f in results] == [folder.id]

    async def test_blank_term_skips_store(self, manager) -> None:
        manager.folders.search = AsyncMock()

        assert await manager.search("   ", SearchMode.PHONE) == []
        manager.folders.search.assert_not_called()

    async def test_wildcard_only_term_matches_nothing(self, manager, make_folder) -> None:
        await make_folder(FolderStatus.READY)

        assert await manager.search("**", SearchMode.NAME) == []
        assert len(await manager.search("Bu*di", SearchMode.NAME)) == 1

    async def test_invalid_mode(self, manager) -> None:
        with pytest.raises(ValidationError, match="search mode"):
            await manager.search("0812", "email")

    async def test_shared_link_visibility(self, manager, make_folder) -> None:
        pending = await make_folder(FolderStatus.PENDING)
        ready = await make_folder(FolderStatus.READY)

        assert await manager.load_shared_folder(pending.id) is None
        assert await manager.load_shared_folder("missing") is None
        assert (await manager.load_shared_folder(ready.id)).id == ready.id

    async def test_list_folders_filters_and_pages(self, manager, make_folder) -> None:
        for _ in range(3):
            await make_folder(FolderStatus.READY)
        await make_folder(FolderStatus.PENDING)

        ready = await manager.list_folders(status="ready")
        page = await manager.list_folders(limit=2, offset=1)

        assert len(ready) == 3
        assert len(page) == 2


@pytest.mark.asyncio
class TestDeleteAndExpire:
    async def test_delete_cascades(self, manager, uploads, make_folder, make_file, storage, photo_repo) -> None:
        folder = await make_folder()
        await uploads.upload_multiple(folder.id, [make_file("a.jpg"), make_file("b.jpg")], folder.info)

        await manager.delete_folder(folder.id)

        assert storage.objects == {}
        assert photo_repo.rows == {}
        with pytest.raises(NotFoundError):
            await manager.get_by_id(folder.id)

    async def test_sweep_expires_old_claims(self, manager, uploads, make_folder, make_file, clock, storage) -> None:
        old = await make_folder(FolderStatus.READY, phone="0811")
        await uploads.upload_multiple(old.id, [make_file("a.jpg", size=10)], old.info)
        await manager.update_status(old.id, FolderStatus.CLAIMED)
        clock.advance(timedelta(days=2))
        recent = await make_folder(FolderStatus.CLAIMED, phone="0822")
        ready = await make_folder(FolderStatus.READY, phone="0833")
        clock.advance(timedelta(days=1, hours=1))

        expired = await manager.expire_claimed_folders(timedelta(days=3))

        assert [f.id for f in expired] == [old.id]
        old_now = await manager.get_by_id(old.id)
        assert old_now.status == FolderStatus.EXPIRED
        assert old_now.claimed_at is None
        assert old_now.photo_count == 0
        assert old_now.total_size == 0
        assert storage.objects == {}
        assert (await manager.get_by_id(recent.id)).status == FolderStatus.CLAIMED
        assert (await manager.get_by_id(ready.id)).status == FolderStatus.READY


class TestHelpers:
    def test_generate_folder_path_strips_characters(self, clock) -> None:
        path = generate_folder_path("manual", "id-1", "Dewi & Co!", "(0812) 34-56", today=clock())

        assert path == "photos/manual/id-1/2024-06-01_DewiCo_08123456"

    @pytest.mark.asyncio
    async def test_metadata_round_trip(self, manager) -> None:
        folder = await manager.create_folder("Ani", "0811", package_name="Family")

        data = deserialize_folder_metadata(serialize_folder_metadata(folder))

        assert data["folderId"] == folder.id
        assert data["customerName"] == "Ani"
        assert data["packageName"] == "Family"
        assert data["customerEmail"] is None
        assert data["createdAt"].startswith("2024-06-01T10:00:00")

    def test_deserialize_defaults_optional_fields(self) -> None:
        data = deserialize_folder_metadata(
            json.dumps({"folderId": "f", "customerName": "A", "customerPhone": "1", "customerEmail": ""})
        )

        assert data["customerEmail"] is None
        assert data["transactionId"] is None
        assert data["createdAt"] is None
