"""Cashier payment workflow: validate, create upstream, settle and record locally."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence

from medibill import calculator
from medibill.errors import PaymentProcessingError, PaymentValidationError
from medibill.models import BillingRecord, Discount, Payment
from medibill.normalization.amounts import item_amount, pick_text
from medibill.normalization.invoices import normalize_invoice
from medibill.normalization.payments import normalize_payment
from medibill.normalization.timestamps import iso_now, parse_date

if TYPE_CHECKING:
    from medibill.context import BillingContext

LOGGER = logging.getLogger(__name__)

PAYMENT_METHODS = ("cash", "card", "gcash", "paymaya", "bank")
PAYMENT_STATUSES = ("completed", "processing", "pending", "failed", "paid")


@dataclass
class PaymentRequest:
    """What the cashier submitted. ``invoice_ref`` is the selected invoice id or number."""

    invoice_ref: str
    method: str = "cash"
    amount: Optional[float] = None
    cash_received: Optional[float] = None
    reference: str = ""
    patient_id: str = ""
    patient_name: str = ""
    discount_code: Optional[str] = None
    discount_as_of: Optional[date] = None
    processed_by: str = "system"


@dataclass
class ProcessedPayment:
    payment: Payment
    record: BillingRecord
    invoice_marked_paid: bool


def validate_payment_request(request: PaymentRequest, amount_due: float) -> float:
    """Return the amount to charge, or raise :class:`PaymentValidationError`."""
    if not (request.invoice_ref or "").strip():
        raise PaymentValidationError("No invoice selected")
    if not (request.method or "").strip():
        raise PaymentValidationError("Payment method is required")
    if request.method.strip().lower() not in PAYMENT_METHODS:
        raise PaymentValidationError(f"Unsupported payment method '{request.method}'")
    amount = request.amount if request.amount else amount_due
    if not amount or amount <= 0:
        raise PaymentValidationError("Payment amount must be greater than zero")
    if request.method == "cash" and request.cash_received is not None and request.cash_received < amount:
        raise PaymentValidationError("Insufficient cash received")
    return float(amount)


def select_invoice(raw_invoices: Sequence[Mapping[str, Any]], ref: str) -> Optional[Mapping[str, Any]]:
    for raw in raw_invoices:
        if ref in (raw.get("_id"), raw.get("id"), raw.get("number"), raw.get("invoiceNumber")):
            return raw
    return None


def invoice_lines(raw: Optional[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    if not raw:
        return []
    lines = raw.get("items") if isinstance(raw.get("items"), list) else raw.get("lines")
    return [dict(line) for line in lines or [] if isinstance(line, Mapping)]


def _selected_discount(context: "BillingContext", request: PaymentRequest) -> Optional[Discount]:
    if not request.discount_code:
        return None
    validation = context.catalog.validate_code(request.discount_code, request.discount_as_of)
    if not validation.valid:
        raise PaymentValidationError(validation.message or "Invalid discount code")
    return validation.discount


def _ledger_invoices(context: "BillingContext") -> List[Dict[str, Any]]:
    """Pending ledger invoices in upstream field names, for when remote sync is off."""
    return [
        {
            "_id": record.invoice_id or record.id,
            "number": record.number,
            "patientId": record.patient_id,
            "patientName": record.patient_name,
            "total": record.amount,
            "status": "pending" if record.status == "pending" else "paid",
            "items": record.items,
        }
        for record in context.ledger.get_records_by_type("invoice")
    ]


async def process_payment(context: "BillingContext", request: PaymentRequest) -> ProcessedPayment:
    """Create the payment upstream and mirror it into the ledger.

    Marking the invoice paid upstream is best effort; a failure is logged and
    reported through ``invoice_marked_paid``.
    """
    if context.ledger.is_remote_sync_suppressed():
        raw_invoices = _ledger_invoices(context)
    else:
        raw_invoices = await context.client.fetch_invoices()
    selected = select_invoice(raw_invoices, request.invoice_ref)
    if selected is None:
        LOGGER.info("Invoice %s not in the fetched list, paying by reference", request.invoice_ref)

    invoice = normalize_invoice(selected) if selected is not None else None
    lines = invoice_lines(selected)
    lines_total = sum(item_amount(line) for line in lines)
    amount_due = (invoice.total if invoice else 0.0) or lines_total
    discount = _selected_discount(context, request)
    breakdown = None
    if discount is not None and not request.amount:
        base = lines_total or (invoice.subtotal if invoice else 0.0) or amount_due
        breakdown = calculator.compute(
            base, discount, lines, tax_rate=Decimal(str(context.settings.tax_rate))
        )
        amount_due = float(breakdown.total)
    amount = validate_payment_request(request, amount_due)

    invoice_id = (invoice.id if invoice else "") or request.invoice_ref
    invoice_number = (invoice.number if invoice else "") or request.invoice_ref
    subtotal = lines_total or amount
    payload = {
        "invoiceId": invoice_id,
        "invoiceNumber": invoice_number,
        "patientId": request.patient_id or (pick_text(selected, ("patientId", "accountId")) if selected else ""),
        "patientName": request.patient_name or (invoice.patient_name if invoice else ""),
        "amount": amount,
        "method": request.method,
        "status": "completed",
        "paymentDate": iso_now(),
        "reference": request.reference or None,
        "note": request.reference,
        "items": lines,
        "subtotal": subtotal,
    }
    if breakdown is not None:
        payload["discount"] = float(breakdown.discount_amount)
        payload["tax"] = float(breakdown.tax_amount)

    created = await context.client.create_payment(payload)
    if not created or not (created.get("_id") or created.get("id")):
        raise PaymentProcessingError("Payment creation failed")

    marked = await context.client.update_invoice_status(invoice_id, "paid")
    if not marked:
        LOGGER.warning("Invoice %s could not be marked paid upstream", invoice_id)

    payment = normalize_payment(created, processed_by=request.processed_by)
    if not payment.items and lines:
        payment.items = lines
    if not payment.subtotal:
        payment.subtotal = subtotal
    if breakdown is not None:
        payment.discount = payment.discount or float(breakdown.discount_amount)
        payment.tax = payment.tax or float(breakdown.tax_amount)
    if not payment.patient_id and payload["patientId"]:
        payment.patient_id = payload["patientId"]
    if not payment.patient_name and payload["patientName"]:
        payment.patient_name = payload["patientName"]
    if request.method == "cash":
        cash_received = payment.cash_received or float(request.cash_received or 0)
        payment.cash_received = cash_received
        payment.change = max(0.0, cash_received - (payment.amount or payment.subtotal))

    record = context.ledger.add_payment_record(
        invoice_number=payment.invoice_number or invoice_number,
        patient_name=payment.patient_name,
        patient_id=(invoice.patient_id if invoice else "") or payment.patient_id,
        amount=payment.amount or amount,
        method=payment.method or request.method,
        reference=payment.reference,
        record_date=parse_date(payment.date, context.settings.date_formats),
        time=payment.time or None,
        status=payment.status if payment.status in PAYMENT_STATUSES else "completed",
        invoice_id=payment.invoice_id or invoice_id,
    )
    if request.discount_code:
        context.catalog.increment_usage(request.discount_code)
    LOGGER.info("Processed %s payment of %.2f for %s", request.method, payment.amount, invoice_number)
    return ProcessedPayment(payment=payment, record=record, invoice_marked_paid=marked)


__all__ = [
    "PAYMENT_METHODS",
    "PaymentRequest",
    "ProcessedPayment",
    "validate_payment_request",
    "select_invoice",
    "invoice_lines",
    "process_payment",
]
