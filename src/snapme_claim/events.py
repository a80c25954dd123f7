"""In-process change events for folders and photos."""

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Kinds of change events published by the managers."""

    FOLDER_CREATED = "folder.created"
    FOLDER_STATUS_CHANGED = "folder.status_changed"
    FOLDER_DELETED = "folder.deleted"
    PHOTO_INSERTED = "photo.inserted"
    PHOTO_DELETED = "photo.deleted"


@dataclass(frozen=True)
class Event:
    """A change event with its payload (the affected folder or photo)."""

    type: EventType
    payload: Any


Handler = Callable[[Event], None]


class Subscription:
    """Token returned by :meth:`EventBus.subscribe`."""

    def __init__(self, bus: "EventBus", event_type: EventType, handler: Handler) -> None:
        self._bus = bus
        self.event_type = event_type
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        """Stop delivering events to the handler. Safe to call twice."""
        if self.active:
            self._bus._remove(self)
            self.active = False


class EventBus:
    """Publish/subscribe hub for folder and photo changes."""

    def __init__(self) -> None:
        self._subscriptions: dict[EventType, list[Subscription]] = defaultdict(list)

    def subscribe(self, event_type: EventType, handler: Handler) -> Subscription:
        subscription = Subscription(self, event_type, handler)
        self._subscriptions[event_type].append(subscription)
        return subscription

    def publish(self, event_type: EventType, payload: Any) -> None:
        """Deliver an event to every current subscriber.

        A failing handler is logged and does not stop delivery to the
        remaining handlers or fail the operation that published.
        """
        event = Event(event_type, payload)
        for subscription in list(self._subscriptions[event_type]):
            try:
                subscription.handler(event)
            except Exception:
                logger.exception(f"Event handler failed for {event_type.value}")

    def _remove(self, subscription: Subscription) -> None:
        handlers = self._subscriptions[subscription.event_type]
        if subscription in handlers:
            handlers.remove(subscription)
