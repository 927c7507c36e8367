"""In-memory billing ledger: unified invoice/payment history with automations."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from medibill.errors import InvalidTransitionError, ValidationError
from medibill.matching import match_payment
from medibill.models import TERMINAL_RECORD_STATUSES, BillingRecord, RecordStatus, RecordType
from medibill.normalization.timestamps import DEFAULT_DATE_FORMATS, parse_date

LOGGER = logging.getLogger(__name__)

RECORD_STATUSES = ("completed", "pending", "cancelled", "refunded")
RECORD_TYPES = ("invoice", "payment", "pharmacy", "service")

PAYMENT_METHOD_LABELS = {
    "cash": "Cash",
    "card": "Credit Card",
    "gcash": "GCash",
    "paymaya": "PayMaya",
    "bank": "Bank Transfer",
}
PAYMENT_STATUS_TO_RECORD = {"processing": "pending", "failed": "cancelled", "paid": "completed"}

Listener = Callable[[List[BillingRecord]], None]


def format_payment_method(method: str) -> str:
    return PAYMENT_METHOD_LABELS.get(method, method)


@dataclass
class AutomationResult:
    """Record ids touched by one automation run."""

    settled: List[str] = field(default_factory=list)
    voided: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.settled or self.voided)


class BillingLedger:
    """Sole owner of the billing record list.

    Every mutation notifies subscribers synchronously, in subscription order,
    with copies of the post-mutation records.
    """

    def __init__(
        self,
        auto_void_days: int = 30,
        seed_demo_data: bool = False,
        date_formats: Sequence[str] = DEFAULT_DATE_FORMATS,
    ) -> None:
        if auto_void_days < 1:
            raise ValueError("auto_void_days must be at least 1")
        self.auto_void_days = auto_void_days
        self.date_formats = tuple(date_formats)
        self._records: List[BillingRecord] = []
        self._listeners: List[Listener] = []
        self._remote_sync_suppressed = False
        if seed_demo_data:
            self._seed_demo_records()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``, call it right away with the current records and return an unsubscribe handle."""
        self._listeners.append(listener)
        self._call(listener, self.get_all_records())

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            self._call(listener, self.get_all_records())

    @staticmethod
    def _call(listener: Listener, records: List[BillingRecord]) -> None:
        try:
            listener(records)
        except Exception:
            LOGGER.exception("Billing ledger listener failed")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_all_records(self) -> List[BillingRecord]:
        return [replace(record) for record in self._records]

    def get_record(self, record_id: str) -> BillingRecord:
        return replace(self._find(record_id))

    def get_records_by_patient(self, patient_id: str) -> List[BillingRecord]:
        return [replace(r) for r in self._records if r.patient_id == patient_id]

    def get_records_by_type(self, record_type: RecordType) -> List[BillingRecord]:
        return [replace(r) for r in self._records if r.type == record_type]

    def get_records_by_date_range(self, start: date | str, end: date | str) -> List[BillingRecord]:
        start_date, end_date = self._as_date(start), self._as_date(end)
        return [replace(r) for r in self._records if start_date <= r.date <= end_date]

    def is_remote_sync_suppressed(self) -> bool:
        return self._remote_sync_suppressed

    def set_remote_sync_suppressed(self, suppressed: bool) -> None:
        self._remote_sync_suppressed = bool(suppressed)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def add_record(self, record: BillingRecord) -> BillingRecord:
        if record.type not in RECORD_TYPES:
            raise ValidationError(f"Unsupported record type '{record.type}'")
        if record.status not in RECORD_STATUSES:
            raise ValidationError(f"Unsupported record status '{record.status}'")
        stored = replace(record, date=self._as_date(record.date))
        self._records.append(stored)
        LOGGER.debug("Added %s record %s", stored.type, stored.number)
        self._notify()
        return replace(stored)

    def add_invoice_record(
        self,
        *,
        invoice_number: str,
        patient_name: str,
        patient_id: str,
        amount: float,
        description: str = "",
        record_date: date | str | None = None,
        time: Optional[str] = None,
        department: Optional[str] = None,
        invoice_id: Optional[str] = None,
        subtotal: Optional[float] = None,
        discount: Optional[float] = None,
        discount_type: Optional[str] = None,
        discount_percentage: Optional[float] = None,
        tax: Optional[float] = None,
        tax_rate: Optional[float] = None,
        total_before_tax: Optional[float] = None,
        items: Optional[Iterable[Dict[str, Any]]] = None,
    ) -> BillingRecord:
        record = BillingRecord(
            id=self._new_id(),
            type="invoice",
            number=invoice_number,
            patient_name=patient_name,
            patient_id=patient_id,
            date=self._as_date(record_date),
            amount=float(amount),
            status="pending",
            description=description,
            time=time,
            department=department,
            invoice_id=invoice_id,
            invoice_number=invoice_number,
            subtotal=subtotal,
            discount=discount,
            discount_type=discount_type,
            discount_percentage=discount_percentage,
            tax=tax,
            tax_rate=tax_rate,
            total_before_tax=total_before_tax,
            items=[dict(item) for item in items or []],
        )
        return self.add_record(record)

    def add_payment_record(
        self,
        *,
        invoice_number: str,
        patient_name: str,
        patient_id: str,
        amount: float,
        method: str,
        reference: str = "",
        record_date: date | str | None = None,
        time: Optional[str] = None,
        status: str = "completed",
        invoice_id: Optional[str] = None,
    ) -> BillingRecord:
        record = BillingRecord(
            id=self._new_id(),
            type="payment",
            number=f"PAY-{self._millis()}",
            patient_name=patient_name,
            patient_id=patient_id,
            date=self._as_date(record_date),
            amount=float(amount),
            status=PAYMENT_STATUS_TO_RECORD.get(status, status),
            description=f"Payment for {invoice_number}",
            time=time,
            payment_method=format_payment_method(method),
            reference=reference,
            invoice_id=invoice_id,
            invoice_number=invoice_number,
        )
        return self.add_record(record)

    def update_record_status(self, record_id: str, status: RecordStatus) -> BillingRecord:
        if status not in RECORD_STATUSES:
            raise ValidationError(f"Unsupported record status '{status}'")
        record = self._find(record_id)
        if record.status in TERMINAL_RECORD_STATUSES and status != record.status:
            raise InvalidTransitionError(record_id, record.status, status)
        record.status = status
        self._notify()
        return replace(record)

    def clear_all_records(self, notify: bool = True) -> None:
        self._records = []
        if notify:
            self._notify()

    # ------------------------------------------------------------------
    # Automations
    # ------------------------------------------------------------------
    def run_automations(self, now: date | datetime | None = None) -> AutomationResult:
        """Settle invoices paid by completed payments, then void stale pending records.

        Subscribers are notified once, and only when something changed.
        """
        today = self._as_date(now)
        result = AutomationResult()
        invoices = [record for record in self._records if record.type == "invoice"]

        for payment in self._records:
            if payment.type != "payment" or payment.status != "completed" or payment.settled_by:
                continue
            match = match_payment(payment, invoices)
            if match is None:
                continue
            invoice: BillingRecord = match.invoice
            payment.settled_by = invoice.id
            if invoice.status == "pending":
                invoice.status = "completed"
                result.settled.append(invoice.id)
                LOGGER.info("Invoice %s settled by %s (%s)", invoice.number, payment.number, match.rule)

        for record in self._records:
            if record.status == "pending" and (today - record.date).days >= self.auto_void_days:
                record.status = "cancelled"
                result.voided.append(record.id)
                LOGGER.info("Voided stale %s record %s dated %s", record.type, record.number, record.date)

        if result.changed:
            self._notify()
        return result

    # ------------------------------------------------------------------
    # Reporting helpers
    # ------------------------------------------------------------------
    def dashboard_metrics(self, *, as_of: Optional[date] = None) -> Dict[str, Any]:
        as_of = as_of or date.today()
        completed_payments = [
            r for r in self._records if r.type == "payment" and r.status == "completed"
        ]
        pending_invoices = [r for r in self._records if r.type == "invoice" and r.status == "pending"]
        return {
            "total_revenue": self._sum(r.amount for r in completed_payments),
            "revenue_today": self._sum(r.amount for r in completed_payments if r.date == as_of),
            "pending_invoices": len(pending_invoices),
            "pending_amount": self._sum(r.amount for r in pending_invoices),
            "completed_records": sum(1 for r in self._records if r.status == "completed"),
            "cancelled_records": sum(1 for r in self._records if r.status == "cancelled"),
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _find(self, record_id: str) -> BillingRecord:
        for record in self._records:
            if record.id == record_id:
                return record
        raise KeyError(f"Unknown billing record '{record_id}'")

    def _as_date(self, value: date | datetime | str | None) -> date:
        if value is None:
            return date.today()
        parsed = parse_date(value, self.date_formats)
        if parsed is None:
            raise ValidationError(f"Unrecognised date '{value}'")
        return parsed

    @staticmethod
    def _sum(amounts: Iterable[float]) -> Decimal:
        total = sum((Decimal(str(amount)) for amount in amounts), Decimal("0"))
        return total.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    @staticmethod
    def _new_id() -> str:
        return uuid4().hex

    @staticmethod
    def _millis() -> int:
        return int(time.time() * 1000)

    def _seed_demo_records(self) -> None:
        """Populate the ledger with sample history for the demo dashboard."""

        samples = [
            ("invoice", "INV-2025-001", "Maria Santos", "P001", "2025-01-05", "10:30 AM", 13800, "completed",
             "General Consultation, Blood Test, X-Ray", {"department": "Outpatient"}),
            ("payment", "PAY-2025-001", "Maria Santos", "P001", "2025-01-05", "10:45 AM", 13800, "completed",
             "Payment for INV-2025-001",
             {"payment_method": "GCash", "reference": "GCH-20250105-001", "invoice_number": "INV-2025-001"}),
            ("pharmacy", "PH-2025-001", "Juan Dela Cruz", "P002", "2025-01-04", "2:15 PM", 2500, "completed",
             "Prescription Medications (Amoxicillin, Paracetamol)",
             {
                 "department": "Pharmacy",
                 "items": [
                     {"id": "med1", "description": "Amoxicillin 500mg Capsules x30", "quantity": 30,
                      "unitPrice": 25, "totalPrice": 750},
                     {"id": "med2", "description": "Paracetamol 500mg Tablets x20", "quantity": 20,
                      "unitPrice": 5, "totalPrice": 100},
                     {"id": "med3", "description": "Cough Syrup 120ml", "quantity": 1,
                      "unitPrice": 150, "totalPrice": 150},
                 ],
             }),
            ("invoice", "INV-2025-002", "Juan Dela Cruz", "P002", "2025-01-05", "11:15 AM", 7820, "pending",
             "Follow-up Consultation, Medication", {"department": "Outpatient"}),
            ("invoice", "INV-2025-003", "Anna Reyes", "P003", "2025-01-04", "9:30 AM", 11040, "pending",
             "Laboratory Tests, Consultation", {"department": "Laboratory"}),
            ("invoice", "INV-2025-004", "Roberto Cruz", "P004", "2025-01-04", "3:45 PM", 28000, "pending",
             "X-Ray, Physical Therapy Sessions", {"department": "Radiology"}),
            ("service", "SRV-2025-001", "Carmen Flores", "P005", "2025-01-03", "1:00 PM", 15600, "pending",
             "CT Scan, Blood Chemistry Panel", {"department": "Radiology"}),
            ("invoice", "INV-2025-005", "Carlos Miguel", "P004", "2025-01-03", "8:30 AM", 45000, "completed",
             "Minor Surgery, Anesthesia, Recovery Room", {"department": "Surgery"}),
            ("payment", "PAY-2025-002", "Carlos Miguel", "P004", "2025-01-03", "4:15 PM", 45000, "completed",
             "Payment for INV-2025-005",
             {"payment_method": "Credit Card", "reference": "CC-20250103-001", "invoice_number": "INV-2025-005"}),
        ]
        for index, (kind, number, name, patient, day, clock, amount, status, description, extra) in enumerate(
            samples, start=1
        ):
            self._records.append(
                BillingRecord(
                    id=str(index),
                    type=kind,
                    number=number,
                    patient_name=name,
                    patient_id=patient,
                    date=date.fromisoformat(day),
                    amount=float(amount),
                    status=status,
                    description=description,
                    time=clock,
                    **extra,
                )
            )


__all__ = [
    "BillingLedger",
    "AutomationResult",
    "format_payment_method",
    "PAYMENT_METHOD_LABELS",
    "RECORD_STATUSES",
    "RECORD_TYPES",
]
