"""Field maps for the upstream record shapes the billing view understands.

Three systems feed the cashier queue: invoices entered by admins, sales rung up
by the pharmacy, and appointments billed out of the EMR. Each arrives with its
own field names. A :class:`SourceShape` lists, in precedence order, where each
canonical field is looked up for that shape, so the rules can be read and
tested one shape at a time.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Tuple

from medibill.models import InvoiceItem
from medibill.normalization.amounts import coerce_amount, first_present, pick_amount, pick_text


@dataclass(frozen=True)
class SourceShape:
    name: str
    id_fields: Tuple[str, ...]
    number_fields: Tuple[str, ...]
    status_fields: Tuple[str, ...]
    patient_name_fields: Tuple[str, ...]
    total_fields: Tuple[str, ...]
    date_fields: Tuple[str, ...]
    items_fields: Tuple[str, ...]
    item_description_fields: Tuple[str, ...]
    default_item_description: str
    default_item_category: str


ADMIN_INVOICE = SourceShape(
    name="admin_invoice",
    id_fields=("_id", "id"),
    number_fields=("number", "invoiceNumber"),
    status_fields=("status", "state"),
    patient_name_fields=("patientName", "patient"),
    total_fields=("total", "amount"),
    date_fields=("date", "issuedDate"),
    items_fields=("items", "lines"),
    item_description_fields=("description", "name", "service"),
    default_item_description="Item",
    default_item_category="",
)

PHARMACY_SALE = SourceShape(
    name="pharmacy_sale",
    id_fields=("_id", "id", "transactionId"),
    number_fields=("number", "invoiceNumber"),
    status_fields=("status", "state", "paymentStatus"),
    patient_name_fields=("patientName", "patient", "customerName"),
    total_fields=("totalAmount", "total", "amount", "subtotal"),
    date_fields=("date", "transactionDate", "createdAt"),
    items_fields=("items", "transformedItems"),
    item_description_fields=("description", "name", "medicationName", "medicineName"),
    default_item_description="Unknown Medication",
    default_item_category="Pharmacy",
)

EMR_APPOINTMENT = SourceShape(
    name="emr_appointment",
    id_fields=("_id", "id", "appointmentId"),
    number_fields=("number", "invoiceNumber"),
    status_fields=("status", "state"),
    patient_name_fields=("patientName", "patient"),
    total_fields=("total", "amount", "fee", "price"),
    date_fields=("date", "appointmentDate", "scheduledAt"),
    items_fields=("items", "services"),
    item_description_fields=("description", "name", "serviceName", "service"),
    default_item_description="Service",
    default_item_category="Service",
)

SHAPES: Dict[str, SourceShape] = {
    shape.name: shape for shape in (ADMIN_INVOICE, PHARMACY_SALE, EMR_APPOINTMENT)
}

_PHARMACY_TAGS = {"pharmacy", "sale", "sales", "pharmacy_sale"}
_EMR_TAGS = {"emr", "appointment", "appointments", "emr_appointment"}


def detect_shape(raw: Mapping[str, Any]) -> SourceShape:
    """Pick the shape of a raw record: explicit source tags first, then telltale fields."""
    for tag_field in ("source", "sourceType", "origin"):
        tag = str(raw.get(tag_field) or "").strip().lower()
        if tag in _PHARMACY_TAGS:
            return PHARMACY_SALE
        if tag in _EMR_TAGS:
            return EMR_APPOINTMENT
    if any(name in raw for name in ("appointmentDate", "appointmentId", "doctorName")):
        return EMR_APPOINTMENT
    if "transactionId" in raw or "transformedItems" in raw:
        return PHARMACY_SALE
    items = raw.get("items")
    if isinstance(items, list) and any(
        isinstance(item, Mapping) and ("medicationName" in item or "medicine" in item)
        for item in items
    ):
        return PHARMACY_SALE
    return ADMIN_INVOICE


def normalize_item(raw: Any, index: int, shape: SourceShape = ADMIN_INVOICE) -> InvoiceItem:
    if isinstance(raw, InvoiceItem):
        return InvoiceItem(**vars(raw))
    if not isinstance(raw, Mapping):
        raw = {}
    quantity = pick_amount(raw, ("quantity", "qty"), default=1.0)
    rate = pick_amount(raw, ("rate", "unitPrice", "price"))
    explicit = coerce_amount(first_present(raw, ("amount", "totalPrice", "total")))
    amount = explicit if explicit is not None else quantity * rate
    return InvoiceItem(
        id=pick_text(raw, ("_id", "id"), default=f"item_{index}"),
        description=pick_text(raw, shape.item_description_fields, default=shape.default_item_description),
        quantity=quantity,
        rate=rate,
        amount=amount,
        category=pick_text(raw, ("category",), default=shape.default_item_category),
    )


__all__ = [
    "SourceShape",
    "ADMIN_INVOICE",
    "PHARMACY_SALE",
    "EMR_APPOINTMENT",
    "SHAPES",
    "detect_shape",
    "normalize_item",
]
