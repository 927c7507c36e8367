"""User-facing notification wording for cashier alerts."""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List

from medibill.normalization.timestamps import iso_now

LOGGER = logging.getLogger(__name__)

TITLES = {
    "invoice": "New Invoice Available",
    "payment": "New Payment Recorded",
    "emr": "New EMR Services",
    "pharmacy": "New Pharmacy Transactions",
    "invoice_created": "Invoice Created",
}


def _plural(count: int, noun: str) -> str:
    return f"{count} new {noun}{'s' if count > 1 else ''}"


def new_records_message(source: str, count: int) -> str:
    """Sentence announcing ``count`` new rows from one upstream source."""
    if source == "invoice":
        return f"{_plural(count, 'invoice')} received from Admin system"
    if source == "emr":
        return f"{_plural(count, 'service')} available from EMR system"
    if source == "pharmacy":
        return f"{_plural(count, 'transaction')} available from Pharmacy system"
    if source == "payment":
        return f"{_plural(count, 'payment')} {'have' if count > 1 else 'has'} been recorded."
    raise ValueError(f"Unknown record source '{source}'")


def format_money(amount: float, symbol: str = "₱") -> str:
    return f"{symbol}{amount:,.2f}"


def invoice_created_message(invoice_number: str, patient_name: str, total: float, symbol: str = "₱") -> str:
    return f"New invoice #{invoice_number} created for {patient_name} ({format_money(total, symbol)})"


@dataclass
class Notification:
    kind: str
    title: str
    message: str
    created_at: str = field(default_factory=iso_now)


class NotificationFeed:
    """Most recent notifications, newest first, capped at ``limit`` entries."""

    def __init__(self, limit: int = 100) -> None:
        self._items: Deque[Notification] = deque(maxlen=limit)

    def push(self, kind: str, message: str) -> Notification:
        notification = Notification(kind=kind, title=TITLES.get(kind, "Notification"), message=message)
        self._items.appendleft(notification)
        LOGGER.info("%s: %s", notification.title, message)
        return notification

    def items(self) -> List[Notification]:
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


__all__ = [
    "new_records_message",
    "invoice_created_message",
    "format_money",
    "Notification",
    "NotificationFeed",
]
