"""Explicit wiring of the billing services shared by the API, CLI and background tasks."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from medibill.clients import BillingApiClient
from medibill.config import BillingSettings, get_settings
from medibill.discounts import DiscountCatalog
from medibill.events import INVOICE_CREATED, EventBus, IdempotentConsumer, InvoiceCreated
from medibill.ledger import BillingLedger
from medibill.messages import NotificationFeed, invoice_created_message
from medibill.normalization.timestamps import iso_now
from medibill.reconciliation import ReconciliationPoller
from medibill.scheduling import PeriodicTask, Sleep

LOGGER = logging.getLogger(__name__)


@dataclass
class BillingContext:
    settings: BillingSettings
    bus: EventBus
    ledger: BillingLedger
    catalog: DiscountCatalog
    feed: NotificationFeed
    client: BillingApiClient
    poller: ReconciliationPoller
    automations: PeriodicTask

    def start(self) -> None:
        """Start the automation schedule and the poller on the running event loop."""
        self.automations.start()
        self.poller.start()

    async def stop(self) -> None:
        self.poller.stop()
        self.automations.stop()
        await self.client.close()

    def announce_invoice_created(
        self, invoice_number: str, patient_name: str, total: float, timestamp: Optional[str] = None
    ) -> InvoiceCreated:
        """Tell cashier views about a new invoice; the event is retained for late subscribers."""
        event = InvoiceCreated(
            invoice_number=invoice_number,
            patient_name=patient_name,
            total=float(total),
            timestamp=timestamp or iso_now(),
        )
        self.bus.publish(INVOICE_CREATED, event, retain=True)
        return event


def create_context(
    settings: Optional[BillingSettings] = None,
    *,
    client: Optional[BillingApiClient] = None,
    sleep: Sleep = asyncio.sleep,
) -> BillingContext:
    settings = settings or get_settings()
    bus = EventBus()
    ledger = BillingLedger(
        auto_void_days=settings.auto_void_days,
        seed_demo_data=settings.seed_demo_data,
        date_formats=settings.date_formats,
    )
    catalog = DiscountCatalog(bus=bus)
    feed = NotificationFeed(limit=settings.max_notifications)
    client = client or BillingApiClient(settings)
    poller = ReconciliationPoller(
        client.fetch_invoices,
        client.fetch_payments,
        client.fetch_emr_appointments,
        client.fetch_pharmacy_sales,
        client.fetch_patients,
        bus=bus,
        feed=feed,
        interval=settings.poll_interval_seconds,
        sleep=sleep,
    )

    async def run_automations() -> None:
        result = ledger.run_automations()
        if result.changed:
            LOGGER.info("Automations settled %d and voided %d records", len(result.settled), len(result.voided))

    automations = PeriodicTask(
        run_automations, settings.automation_interval_seconds, sleep=sleep, name="billing-automations"
    )

    def on_invoice_created(event: InvoiceCreated) -> None:
        feed.push(
            "invoice_created",
            invoice_created_message(event.invoice_number, event.patient_name, event.total, settings.currency_symbol),
        )

    bus.subscribe(INVOICE_CREATED, IdempotentConsumer(on_invoice_created), replay=True)
    return BillingContext(
        settings=settings,
        bus=bus,
        ledger=ledger,
        catalog=catalog,
        feed=feed,
        client=client,
        poller=poller,
        automations=automations,
    )


__all__ = ["BillingContext", "create_context"]
