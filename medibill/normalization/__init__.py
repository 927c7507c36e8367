"""Normalizers that turn upstream invoice and payment records into canonical entities."""

from .amounts import coerce_amount, pick_amount
from .invoices import (
    cashier_queue,
    compute_invoice_subtotal,
    derive_invoice_status,
    is_active_invoice,
    normalize_invoice,
)
from .patients import normalize_patients, resolve_patient_display
from .payments import normalize_payment

__all__ = [
    "coerce_amount",
    "pick_amount",
    "cashier_queue",
    "compute_invoice_subtotal",
    "derive_invoice_status",
    "is_active_invoice",
    "normalize_invoice",
    "normalize_patients",
    "resolve_patient_display",
    "normalize_payment",
]
