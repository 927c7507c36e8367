"""Periodic re-fetch of upstream sources with new-record notifications."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from medibill.events import NEW_RECORDS, EventBus
from medibill.messages import NotificationFeed, new_records_message
from medibill.models import Invoice
from medibill.normalization.invoices import cashier_queue
from medibill.normalization.patients import normalize_patients
from medibill.scheduling import PeriodicTask, Sleep

LOGGER = logging.getLogger(__name__)

SOURCES = ("invoice", "payment", "emr", "pharmacy")

Fetcher = Callable[[], Awaitable[List[Dict[str, Any]]]]


@dataclass(frozen=True)
class PollNotification:
    source: str
    new_count: int
    total: int
    message: str


@dataclass(frozen=True)
class PollResult:
    counts: Dict[str, int]
    notifications: List[PollNotification]
    discarded: bool = False


class ReconciliationPoller:
    """Re-fetches invoices, payments, EMR appointments and pharmacy sales on an interval.

    Each source keeps a baseline count. A tick announces new rows for a source
    only when its previous baseline was positive and the fresh count is larger,
    so the first tick only establishes baselines. The patient list is fetched
    alongside to give queued invoices their friendly patient ids; it is not counted.
    """

    def __init__(
        self,
        fetch_invoices: Fetcher,
        fetch_payments: Fetcher,
        fetch_emr: Optional[Fetcher] = None,
        fetch_pharmacy: Optional[Fetcher] = None,
        fetch_patients: Optional[Fetcher] = None,
        *,
        bus: Optional[EventBus] = None,
        feed: Optional[NotificationFeed] = None,
        on_alert: Optional[Callable[[PollNotification], None]] = None,
        interval: float = 2.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._fetchers: Dict[str, Optional[Fetcher]] = {
            "invoice": fetch_invoices,
            "payment": fetch_payments,
            "emr": fetch_emr,
            "pharmacy": fetch_pharmacy,
            "patient": fetch_patients,
        }
        self._bus = bus
        self._feed = feed
        self._on_alert = on_alert
        self.counts: Dict[str, int] = {source: 0 for source in SOURCES}
        self.queue: List[Invoice] = []
        self._task = PeriodicTask(self.tick, interval, sleep=sleep, name="reconciliation-poller")

    @property
    def running(self) -> bool:
        return self._task.running

    def start(self) -> asyncio.Task:
        return self._task.start()

    def stop(self) -> None:
        self._task.stop()

    async def tick(self) -> PollResult:
        generation = self._task.generation
        invoices, payments, emr, pharmacy, patients = await asyncio.gather(
            *(self._fetch(source) for source in (*SOURCES, "patient"))
        )
        if generation != self._task.generation:
            LOGGER.debug("Discarding poll results that arrived after stop")
            return PollResult(counts=dict(self.counts), notifications=[], discarded=True)

        self.queue = cashier_queue(invoices, payments, normalize_patients(patients))
        fresh = {
            "invoice": len(self.queue),
            "payment": len(payments),
            "emr": sum(1 for row in emr if str(row.get("status") or "").lower() != "cancelled"),
            "pharmacy": len(pharmacy),
        }
        notifications = []
        for source in SOURCES:
            previous, current = self.counts[source], fresh[source]
            if previous > 0 and current > previous:
                notifications.append(self._emit(source, current - previous, current))
            self.counts[source] = current
        return PollResult(counts=dict(self.counts), notifications=notifications)

    async def _fetch(self, source: str) -> List[Dict[str, Any]]:
        fetch = self._fetchers[source]
        if fetch is None:
            return []
        try:
            rows = await fetch()
        except Exception as exc:
            LOGGER.warning("Polling %s records failed: %s", source, exc)
            return []
        return [row for row in rows or [] if isinstance(row, dict)]

    def _emit(self, source: str, new_count: int, total: int) -> PollNotification:
        notification = PollNotification(
            source=source,
            new_count=new_count,
            total=total,
            message=new_records_message(source, new_count),
        )
        if self._feed is not None:
            self._feed.push(source, notification.message)
        if self._bus is not None:
            self._bus.publish(NEW_RECORDS, notification)
        if self._on_alert is not None:
            try:
                self._on_alert(notification)
            except Exception:
                LOGGER.exception("New-record alert for %s failed", source)
        return notification


__all__ = ["ReconciliationPoller", "PollNotification", "PollResult", "SOURCES"]
