"""Tests for the change event bus."""

from snapme_claim.events import EventBus, EventType


class TestEventBus:
    def test_subscribe_and_unsubscribe(self) -> None:
        bus = EventBus()
        received = []

        subscription = bus.subscribe(EventType.PHOTO_INSERTED, received.append)
        bus.publish(EventType.PHOTO_INSERTED, "first")
        subscription.unsubscribe()
        subscription.unsubscribe()
        bus.publish(EventType.PHOTO_INSERTED, "second")

        assert [e.payload for e in received] == ["first"]
        assert not subscription.active

    def test_only_matching_type_delivered(self) -> None:
        bus = EventBus()
        received = []
        bus.subscribe(EventType.PHOTO_DELETED, received.append)

        bus.publish(EventType.PHOTO_INSERTED, "photo")

        assert received == []

    def test_failing_handler_does_not_block_others(self, caplog) -> None:
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(EventType.FOLDER_DELETED, broken)
        bus.subscribe(EventType.FOLDER_DELETED, received.append)

        bus.publish(EventType.FOLDER_DELETED, "folder")

        assert [e.type for e in received] == [EventType.FOLDER_DELETED]
        assert "Event handler failed" in caplog.text
