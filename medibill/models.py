"""Canonical billing entities shared by the normalizers, matcher and ledger."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

InvoiceStatus = str  # draft | sent | paid | overdue | pending, raw values pass through
PaymentStatus = Literal["completed", "processing", "pending", "failed"]
PaymentMethod = Literal["cash", "card", "gcash", "paymaya", "bank"]
RecordType = Literal["invoice", "payment", "pharmacy", "service"]
RecordStatus = Literal["completed", "pending", "cancelled", "refunded"]
DiscountType = Literal["percentage", "fixed", "service"]
SourceType = Literal["admin", "emr", "pharmacy"]

TERMINAL_RECORD_STATUSES = frozenset({"cancelled", "refunded"})


@dataclass
class InvoiceItem:
    """A single billable line on an invoice."""

    id: str
    description: str
    quantity: float = 1.0
    rate: float = 0.0
    amount: float = 0.0
    category: str = ""


@dataclass
class Invoice:
    """An invoice as shown to cashiers, whatever upstream system produced it."""

    id: str
    number: str
    patient_name: str
    patient_id: str
    internal_patient_id: str
    date: str
    due_date: str
    status: InvoiceStatus
    subtotal: float
    discount: float
    discount_type: str
    discount_percentage: float
    tax: float
    total: float
    items: List[InvoiceItem] = field(default_factory=list)
    generated_by: str = "Billing Department"
    generated_at: str = ""
    notes: str = ""
    created_at: str = ""
    source: str = "admin_invoice"


@dataclass
class Payment:
    """A payment processed by a cashier."""

    id: str
    invoice_id: str
    invoice_number: str
    patient_name: str
    patient_id: str
    amount: float
    subtotal: float
    discount: float
    tax: float
    method: str
    status: str
    date: str
    time: str
    reference: str
    cash_received: float = 0.0
    change: float = 0.0
    processed_by: str = ""
    items: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class BillingRecord:
    """Unified history entry owned by the billing ledger."""

    id: str
    type: RecordType
    number: str
    patient_name: str
    patient_id: str
    date: date
    amount: float
    status: RecordStatus
    description: str = ""
    time: Optional[str] = None
    payment_method: Optional[str] = None
    department: Optional[str] = None
    reference: Optional[str] = None
    invoice_id: Optional[str] = None
    invoice_number: Optional[str] = None
    settled_by: Optional[str] = None
    items: List[Dict[str, Any]] = field(default_factory=list)
    subtotal: Optional[float] = None
    discount: Optional[float] = None
    discount_type: Optional[str] = None
    discount_percentage: Optional[float] = None
    tax: Optional[float] = None
    tax_rate: Optional[float] = None
    total_before_tax: Optional[float] = None


@dataclass
class Discount:
    """Admin-managed discount master data."""

    id: str
    code: str
    name: str
    type: DiscountType
    value: float
    category: str
    start_date: date
    end_date: date
    is_active: bool = True
    usage_count: int = 0
    max_usage: Optional[int] = None
    description: str = ""
    conditions: Optional[str] = None
    applicable_services: List[str] = field(default_factory=list)


@dataclass
class PriceBreakdown:
    """Result of pricing a subtotal with a discount and invoice lines."""

    subtotal: Decimal
    discount_amount: Decimal
    taxable_base: Decimal
    tax_amount: Decimal
    total: Decimal


__all__ = [
    "InvoiceItem",
    "Invoice",
    "Payment",
    "BillingRecord",
    "Discount",
    "PriceBreakdown",
    "TERMINAL_RECORD_STATUSES",
]
