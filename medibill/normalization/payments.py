"""Normalization of raw payment records into canonical :class:`Payment` objects."""
from __future__ import annotations

from typing import Any, List, Mapping

from medibill.models import Payment
from medibill.normalization.amounts import pick_amount, pick_text
from medibill.normalization.timestamps import format_time, iso_now

AMOUNT_FIELDS = ("amount", "total", "paymentAmount", "paid")
SUBTOTAL_FIELDS = ("subtotal", "amount", "total")
DISCOUNT_FIELDS = ("discount", "discountAmount")
TAX_FIELDS = ("tax",)
INVOICE_NUMBER_FIELDS = ("invoiceNumber", "invoiceNo", "number", "ref", "reference")


def _items(raw: Mapping[str, Any]) -> List[dict]:
    for name in ("items", "lines"):
        value = raw.get(name)
        if isinstance(value, list):
            return [dict(item) for item in value if isinstance(item, Mapping)]
    return []


def normalize_payment(raw: Mapping[str, Any] | Payment, processed_by: str = "system") -> Payment:
    """Map a raw payment onto :class:`Payment`. Never raises; bad numbers become 0."""
    if isinstance(raw, Payment):
        raw = payment_to_raw(raw)
    if not isinstance(raw, Mapping):
        raw = {}
    created_at = raw.get("createdAt")
    time_text = pick_text(raw, ("time",)) or format_time(created_at)
    return Payment(
        id=pick_text(raw, ("_id", "id", "paymentId")),
        invoice_id=pick_text(raw, ("invoiceId",)),
        invoice_number=pick_text(raw, INVOICE_NUMBER_FIELDS),
        patient_name=pick_text(raw, ("patientName", "patient", "name")),
        patient_id=pick_text(raw, ("patientId", "accountId", "patient_id")),
        amount=pick_amount(raw, AMOUNT_FIELDS),
        subtotal=pick_amount(raw, SUBTOTAL_FIELDS),
        discount=pick_amount(raw, DISCOUNT_FIELDS),
        tax=pick_amount(raw, TAX_FIELDS),
        method=pick_text(raw, ("method", "paymentMethod")),
        status=pick_text(raw, ("status",), default="completed"),
        date=pick_text(raw, ("paymentDate", "date", "createdAt"), default=iso_now()),
        time=time_text,
        reference=pick_text(raw, ("reference", "ref")),
        cash_received=pick_amount(raw, ("cashReceived",)),
        change=pick_amount(raw, ("change",)),
        processed_by=pick_text(raw, ("processedBy", "createdBy", "createdByName"), default=processed_by),
        items=_items(raw),
    )


def payment_to_raw(payment: Payment) -> dict:
    return {
        "_id": payment.id,
        "invoiceId": payment.invoice_id,
        "invoiceNumber": payment.invoice_number,
        "patientName": payment.patient_name,
        "patientId": payment.patient_id,
        "amount": payment.amount,
        "subtotal": payment.subtotal,
        "discount": payment.discount,
        "tax": payment.tax,
        "method": payment.method,
        "status": payment.status,
        "paymentDate": payment.date,
        "time": payment.time,
        "reference": payment.reference,
        "cashReceived": payment.cash_received,
        "change": payment.change,
        "processedBy": payment.processed_by,
        "items": [dict(item) for item in payment.items],
    }


__all__ = ["normalize_payment", "payment_to_raw", "AMOUNT_FIELDS"]
