"""In-process publish/subscribe channel shared by the billing views.

Publishers may ask for the last message of a topic to be retained, so a view
that subscribes later (the cashier opening the queue after an admin created
an invoice) can replay it. Replay and live delivery can hand the same event to
one consumer twice; :class:`IdempotentConsumer` drops repeats by dedupe key.
"""
from __future__ import annotations

import logging
from collections import OrderedDict, defaultdict
from dataclasses import dataclass
from typing import Any, Callable, DefaultDict, Dict, Hashable, List

LOGGER = logging.getLogger(__name__)

INVOICE_CREATED = "invoice.created"
DISCOUNTS_CHANGED = "discounts.changed"
NEW_RECORDS = "reconciliation.new_records"

Handler = Callable[[Any], None]


@dataclass(frozen=True)
class InvoiceCreated:
    invoice_number: str
    patient_name: str
    total: float
    timestamp: str

    @property
    def dedupe_key(self) -> str:
        return f"{self.timestamp}-{self.invoice_number}"


@dataclass(frozen=True)
class DiscountsChanged:
    action: str  # create | update | delete
    discount_id: str
    code: str = ""


class EventBus:
    """Topic-based synchronous dispatcher."""

    def __init__(self) -> None:
        self._handlers: DefaultDict[str, List[Handler]] = defaultdict(list)
        self._retained: Dict[str, Any] = {}

    def subscribe(self, topic: str, handler: Handler, *, replay: bool = False) -> Callable[[], None]:
        """Register ``handler``; with ``replay`` it first receives the retained message, if any."""
        self._handlers[topic].append(handler)
        if replay and topic in self._retained:
            self._deliver(topic, handler, self._retained[topic])

        def unsubscribe() -> None:
            handlers = self._handlers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, topic: str, payload: Any, *, retain: bool = False) -> int:
        """Deliver ``payload`` once to each current subscriber; return how many were called."""
        if retain:
            self._retained[topic] = payload
        handlers = list(self._handlers.get(topic, []))
        for handler in handlers:
            self._deliver(topic, handler, payload)
        return len(handlers)

    def retained(self, topic: str) -> Any:
        return self._retained.get(topic)

    def subscriber_count(self, topic: str) -> int:
        return len(self._handlers.get(topic, []))

    @staticmethod
    def _deliver(topic: str, handler: Handler, payload: Any) -> None:
        try:
            handler(payload)
        except Exception:
            LOGGER.exception("Subscriber for %s failed", topic)


class IdempotentConsumer:
    """Wrap a handler so each dedupe key is handled at most once."""

    def __init__(
        self,
        handler: Handler,
        key: Callable[[Any], Hashable] = lambda event: getattr(event, "dedupe_key", id(event)),
        history: int = 256,
    ) -> None:
        self._handler = handler
        self._key = key
        self._history = history
        self._seen: "OrderedDict[Hashable, None]" = OrderedDict()

    def __call__(self, event: Any) -> None:
        key = self._key(event)
        if key in self._seen:
            LOGGER.debug("Skipping duplicate event %s", key)
            return
        self._seen[key] = None
        if len(self._seen) > self._history:
            self._seen.popitem(last=False)
        self._handler(event)

    def seen(self, key: Hashable) -> bool:
        return key in self._seen


__all__ = [
    "INVOICE_CREATED",
    "DISCOUNTS_CHANGED",
    "NEW_RECORDS",
    "InvoiceCreated",
    "DiscountsChanged",
    "EventBus",
    "IdempotentConsumer",
]
