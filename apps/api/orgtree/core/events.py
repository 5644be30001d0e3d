import uuid
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from orgtree.context import get_correlation_id


ORGANIZATION_CREATED = "crm.organization.created"
ORGANIZATION_UPDATED = "crm.organization.updated"
ORGANIZATION_DELETED = "crm.organization.deleted"
ORGANIZATION_REPARENTED = "crm.organization.reparented"
SYSTEM_STARTED = "system.started"
ORGANIZATION_ENTITY_TYPE = "crm.organization"

ORGANIZATION_EVENT_TYPES = (
    ORGANIZATION_CREATED,
    ORGANIZATION_UPDATED,
    ORGANIZATION_DELETED,
    ORGANIZATION_REPARENTED,
)


@dataclass
class InternalEvent:
    name: str
    payload: dict[str, Any]

    @property
    def organization_id(self) -> str | None:
        body = self.payload.get("payload")
        if isinstance(body, dict):
            return body.get("organization_id")
        return None


EventHandler = Callable[[InternalEvent], None]


class InProcessEventBus:
    """Synchronous fan-out; handlers run on the publishing thread in subscription order."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_names: str | Iterable[str], handler: EventHandler) -> None:
        names = [event_names] if isinstance(event_names, str) else list(event_names)
        for name in names:
            if handler not in self._subscribers[name]:
                self._subscribers[name].append(handler)

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        event = InternalEvent(name=event_name, payload=payload)
        for handler in list(self._subscribers.get(event_name, [])):
            handler(event)


event_bus = InProcessEventBus()


# Every envelope published in this process, newest last; tests inspect and clear it.
published_events: list[dict[str, Any]] = []


def organization_envelope(event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "entity_type": ORGANIZATION_ENTITY_TYPE,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "correlation_id": get_correlation_id(),
        "payload": payload,
    }


def publish(envelope: dict[str, Any]) -> None:
    published_events.append(envelope)
    event_bus.publish(envelope["event_type"], envelope)
