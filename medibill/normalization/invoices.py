"""Normalization of raw invoice-like records into canonical :class:`Invoice` objects."""
from __future__ import annotations

import logging
import time
from dataclasses import asdict
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from medibill.models import Invoice
from medibill.normalization.amounts import (
    coerce_amount,
    first_truthy,
    item_amount,
    pick_nonzero_amount,
    pick_text,
)
from medibill.normalization.patients import is_friendly_patient_id, lookup_display_id
from medibill.normalization.sources import SourceShape, detect_shape, normalize_item
from medibill.normalization.timestamps import iso_now

LOGGER = logging.getLogger(__name__)

SETTLED_PAYMENT_STATUSES = frozenset({"completed", "paid"})
PENDING_RAW_STATUSES = frozenset({"draft", "unpaid", "sent"})
PAID_RAW_STATUSES = frozenset({"paid", "completed"})
ACTIVE_INVOICE_STATUSES = frozenset({"pending", "draft", "sent"})


def _payment_field(payment: Any, *names: str) -> str:
    for name in names:
        if isinstance(payment, Mapping):
            value = payment.get(name)
        else:
            value = getattr(payment, _snake(name), None)
        if value not in (None, ""):
            return str(value)
    return ""


def _snake(name: str) -> str:
    return "".join("_" + ch.lower() if ch.isupper() else ch for ch in name)


def find_invoice_payment(
    invoice_id: Optional[str], number: Optional[str], payments: Iterable[Any]
) -> Optional[Any]:
    """Return the payment recorded against an invoice: by invoice id first, then by invoice number."""
    payments = list(payments or [])
    if invoice_id:
        for payment in payments:
            if _payment_field(payment, "invoiceId") == str(invoice_id):
                return payment
    if number:
        for payment in payments:
            if number in (
                _payment_field(payment, "invoiceNumber"),
                _payment_field(payment, "invoiceNo"),
            ):
                return payment
    return None


def derive_invoice_status(raw_status: Any, payment: Any = None) -> str:
    """Collapse a raw status into the cashier vocabulary.

    A completed/paid payment always wins over whatever the invoice says.
    """
    status = str(raw_status or "unpaid").strip().lower() or "unpaid"
    if payment is not None:
        payment_status = _payment_field(payment, "status").lower()
        if payment_status in SETTLED_PAYMENT_STATUSES:
            return "paid"
    if status in PAID_RAW_STATUSES:
        return "paid"
    if status in PENDING_RAW_STATUSES:
        return "pending"
    return status


def _synthesize_number(invoice_id: str) -> str:
    suffix = invoice_id[-6:] if invoice_id else str(int(time.time() * 1000))[-6:]
    return f"INV-{suffix}"


def _patient_name(raw: Mapping[str, Any], shape: SourceShape) -> str:
    for name in shape.patient_name_fields:
        value = raw.get(name)
        if isinstance(value, Mapping):
            full = value.get("name") or f"{value.get('firstName') or ''} {value.get('lastName') or ''}".strip()
            if full:
                return str(full)
        elif value:
            return str(value)
    return "Unknown"


def _internal_patient_id(raw: Mapping[str, Any]) -> str:
    value = raw.get("patientId")
    if value in (None, ""):
        patient = raw.get("patient")
        if isinstance(patient, Mapping):
            value = patient.get("_id") or patient.get("id")
    return "" if value in (None, "") else str(value)


def display_patient_id(
    raw: Mapping[str, Any], patients: Sequence[Mapping[str, Any]] = ()
) -> str:
    """Friendly patient id for display; never an opaque database id."""
    explicit = first_truthy(raw, ("patientNumber", "accountId"))
    if explicit:
        return str(explicit)
    internal = _internal_patient_id(raw)
    if is_friendly_patient_id(internal):
        return internal
    return lookup_display_id(patients, internal) or ""


def compute_invoice_subtotal(raw: Mapping[str, Any]) -> float:
    """Best-effort subtotal for records with no breakdown: scalar fields, then line sums."""
    if not raw:
        return 0.0
    for name in ("subtotal", "amount", "total", "totalAmount", "totalBeforeTax", "total_price", "price"):
        amount = coerce_amount(raw.get(name))
        if amount is not None:
            return amount
    for lines_field in ("items", "lines"):
        lines = raw.get(lines_field)
        if isinstance(lines, list) and lines:
            return sum(item_amount(line) for line in lines)
    return 0.0


def normalize_invoice(
    raw: Mapping[str, Any] | Invoice,
    payments: Iterable[Any] = (),
    patients: Sequence[Mapping[str, Any]] = (),
) -> Invoice:
    """Map a raw invoice, pharmacy sale or EMR appointment onto :class:`Invoice`."""
    if isinstance(raw, Invoice):
        raw = invoice_to_raw(raw)
    if not isinstance(raw, Mapping):
        raw = {}
    shape = detect_shape(raw)
    now = iso_now()

    invoice_id = pick_text(raw, shape.id_fields)
    number = pick_text(raw, shape.number_fields) or _synthesize_number(invoice_id)
    payment = find_invoice_payment(invoice_id, number, payments)
    status = derive_invoice_status(first_truthy(raw, shape.status_fields), payment)

    total = pick_nonzero_amount(raw, shape.total_fields)
    tax = pick_nonzero_amount(raw, ("tax", "vat"))
    discount = pick_nonzero_amount(raw, ("discount",))
    subtotal = pick_nonzero_amount(raw, ("subtotal",)) or (total - tax - discount) or 0.0

    raw_items = first_truthy(raw, shape.items_fields) or []
    items = [normalize_item(item, index, shape) for index, item in enumerate(raw_items)]
    date = pick_text(raw, shape.date_fields, default=now)

    return Invoice(
        id=invoice_id,
        number=number,
        patient_name=_patient_name(raw, shape),
        patient_id=display_patient_id(raw, patients),
        internal_patient_id=_internal_patient_id(raw),
        date=date,
        due_date=pick_text(raw, ("dueDate",), default=now),
        status=status,
        subtotal=subtotal,
        discount=discount,
        discount_type=pick_text(raw, ("discountType",), default="none"),
        discount_percentage=pick_nonzero_amount(raw, ("discountPercentage",)),
        tax=tax,
        total=total,
        items=items,
        generated_by=pick_text(raw, ("generatedBy",), default="Billing Department"),
        generated_at=pick_text(raw, ("generatedAt", "date"), default=date),
        notes=pick_text(raw, ("notes",)),
        created_at=pick_text(raw, ("createdAt",), default=now),
        source=shape.name,
    )


def invoice_to_raw(invoice: Invoice) -> dict:
    """Express a canonical invoice in the upstream field names so it can be re-normalized."""
    raw = {
        "_id": invoice.id,
        "number": invoice.number,
        "status": invoice.status,
        "patientName": invoice.patient_name,
        "patientId": invoice.internal_patient_id,
        "date": invoice.date,
        "dueDate": invoice.due_date,
        "subtotal": invoice.subtotal,
        "discount": invoice.discount,
        "discountType": invoice.discount_type,
        "discountPercentage": invoice.discount_percentage,
        "tax": invoice.tax,
        "total": invoice.total,
        "items": [asdict(item) for item in invoice.items],
        "generatedBy": invoice.generated_by,
        "generatedAt": invoice.generated_at,
        "notes": invoice.notes,
        "createdAt": invoice.created_at,
        "source": invoice.source,
    }
    if invoice.patient_id:
        raw["patientNumber"] = invoice.patient_id
    return raw


def is_active_invoice(invoice: Invoice) -> bool:
    """True when the invoice belongs in the cashier's pending queue."""
    not_archived = "archived" not in (invoice.created_at or "")
    return not_archived and invoice.status in ACTIVE_INVOICE_STATUSES


def cashier_queue(
    raw_invoices: Iterable[Mapping[str, Any]],
    payments: Iterable[Any] = (),
    patients: Sequence[Mapping[str, Any]] = (),
) -> List[Invoice]:
    """Normalize every invoice and keep only those a cashier still has to collect."""
    payments = list(payments or [])
    normalized = [normalize_invoice(raw, payments, patients) for raw in raw_invoices or []]
    queue = [invoice for invoice in normalized if is_active_invoice(invoice)]
    LOGGER.debug("Cashier queue holds %d of %d invoices", len(queue), len(normalized))
    return queue


__all__ = [
    "find_invoice_payment",
    "derive_invoice_status",
    "display_patient_id",
    "compute_invoice_subtotal",
    "normalize_invoice",
    "invoice_to_raw",
    "is_active_invoice",
    "cashier_queue",
]
