"""Cross-source matching: payments to invoices, and invoices to EMR/pharmacy records."""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence

from medibill.models import BillingRecord, Invoice, Payment
from medibill.normalization.amounts import coerce_amount, item_text, pick_amount, pick_nonzero_amount, pick_text
from medibill.normalization.invoices import SETTLED_PAYMENT_STATUSES, derive_invoice_status
from medibill.normalization.payments import normalize_payment
from medibill.normalization.sources import PHARMACY_SALE, normalize_item

LOGGER = logging.getLogger(__name__)

AMOUNT_TOLERANCE = 0.01

PHARMACY_KEYWORDS = (
    "pharmacy",
    "medicine",
    "medication",
    "drug",
    "pills",
    "tablet",
    "injection",
    "iv fluids",
    "injectable",
)
EMR_KEYWORDS = (
    "consultation",
    "diagnostic",
    "laboratory",
    "service",
    "procedure",
    "surgery",
    "therapy",
    "test",
    "scan",
    "x-ray",
    "ultrasound",
    "endoscopy",
)

RecordFetcher = Callable[[str], Awaitable[List[Dict[str, Any]]]]


# ----------------------------------------------------------------------
# Payment -> invoice
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class InvoiceKey:
    """The fields of an invoice (canonical, raw or ledger record) that matching looks at."""

    id: str
    number: str
    patient_ids: FrozenSet[str]
    amount: float
    status: str


@dataclass(frozen=True)
class PaymentKey:
    invoice_id: str
    invoice_number: str
    description: str
    patient_id: str
    amount: float
    status: str


@dataclass(frozen=True)
class PaymentMatch:
    invoice: Any
    rule: str  # "id", "number" or "patient_amount"


def _ids(*values: Any) -> FrozenSet[str]:
    return frozenset(str(value).strip() for value in values if value not in (None, ""))


def invoice_key(invoice: Any) -> InvoiceKey:
    if isinstance(invoice, Invoice):
        return InvoiceKey(
            id=invoice.id,
            number=invoice.number,
            patient_ids=_ids(invoice.patient_id, invoice.internal_patient_id),
            amount=invoice.total,
            status=invoice.status,
        )
    if isinstance(invoice, BillingRecord):
        return InvoiceKey(
            id=invoice.invoice_id or invoice.id,
            number=invoice.number,
            patient_ids=_ids(invoice.patient_id),
            amount=invoice.amount,
            status=invoice.status,
        )
    raw: Mapping[str, Any] = invoice if isinstance(invoice, Mapping) else {}
    return InvoiceKey(
        id=pick_text(raw, ("_id", "id")),
        number=pick_text(raw, ("number", "invoiceNumber")),
        patient_ids=_ids(raw.get("patientId"), raw.get("patientNumber"), raw.get("accountId")),
        amount=pick_nonzero_amount(raw, ("total", "amount")),
        status=derive_invoice_status(raw.get("status") or raw.get("state")),
    )


def payment_key(payment: Any) -> PaymentKey:
    if isinstance(payment, BillingRecord):
        return PaymentKey(
            invoice_id=payment.invoice_id or "",
            invoice_number=payment.invoice_number or "",
            description=payment.description or "",
            patient_id=payment.patient_id or "",
            amount=payment.amount,
            status=payment.status,
        )
    if not isinstance(payment, Payment):
        payment = normalize_payment(payment if isinstance(payment, Mapping) else {})
    return PaymentKey(
        invoice_id=payment.invoice_id,
        invoice_number=payment.invoice_number,
        description="",
        patient_id=payment.patient_id,
        amount=payment.amount,
        status=payment.status,
    )


def _number_equals(invoice: InvoiceKey, payment: PaymentKey) -> bool:
    return bool(invoice.number) and payment.invoice_number == invoice.number


def _description_mentions(invoice: InvoiceKey, payment: PaymentKey) -> bool:
    """Whole-token search, so ``INV-1`` is not found inside ``Payment for INV-10``."""
    if not invoice.number or not payment.description:
        return False
    pattern = rf"(?<![\w-]){re.escape(invoice.number)}(?![\w-])"
    return re.search(pattern, payment.description) is not None


def _patient_amount_matches(invoice: InvoiceKey, payment: PaymentKey) -> bool:
    return (
        bool(payment.patient_id)
        and payment.patient_id.strip() in invoice.patient_ids
        and abs(invoice.amount - payment.amount) < AMOUNT_TOLERANCE
        and invoice.status == "pending"
    )


def match_payment(payment: Any, invoices: Sequence[Any]) -> Optional[PaymentMatch]:
    """Find the invoice a payment settles.

    Rules are tried in order over the whole invoice list and the first rule that
    matches anything decides: invoice id, then exact invoice number, then the
    invoice number named in a ledger payment's description, then same patient
    with an equal amount on a pending invoice.
    """
    key = payment_key(payment)
    keyed = [(invoice, invoice_key(invoice)) for invoice in invoices]
    if key.invoice_id:
        for invoice, inv_key in keyed:
            if inv_key.id and inv_key.id == key.invoice_id:
                return PaymentMatch(invoice, "id")
    for invoice, inv_key in keyed:
        if _number_equals(inv_key, key):
            return PaymentMatch(invoice, "number")
    for invoice, inv_key in keyed:
        if _description_mentions(inv_key, key):
            return PaymentMatch(invoice, "number")
    for invoice, inv_key in keyed:
        if _patient_amount_matches(inv_key, key):
            return PaymentMatch(invoice, "patient_amount")
    return None


def settle_invoices(invoices: Iterable[Invoice], payments: Iterable[Any]) -> List[Invoice]:
    """Return fresh invoices with ``paid`` status wherever a settled payment matches."""
    settled = [replace(invoice) for invoice in invoices]
    for payment in payments:
        if payment_key(payment).status.lower() not in SETTLED_PAYMENT_STATUSES:
            continue
        match = match_payment(payment, settled)
        if match is not None and match.invoice.status != "paid":
            match.invoice.status = "paid"
    return settled


# ----------------------------------------------------------------------
# Invoice -> EMR / pharmacy
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class ItemOrigin:
    emr: bool = False
    pharmacy: bool = False


def _has_keyword(item: Any, keywords: Sequence[str]) -> bool:
    category = item_text(item, "category").lower()
    description = item_text(item, "description").lower()
    return any(keyword in category or keyword in description for keyword in keywords)


def classify_item(item: Any) -> ItemOrigin:
    """An item can look like an EMR service, a pharmacy product, both, or neither."""
    return ItemOrigin(emr=_has_keyword(item, EMR_KEYWORDS), pharmacy=_has_keyword(item, PHARMACY_KEYWORDS))


def detect_invoice_sources(invoice: Invoice) -> ItemOrigin:
    origins = [classify_item(item) for item in invoice.items]
    return ItemOrigin(
        emr=any(origin.emr for origin in origins),
        pharmacy=any(origin.pharmacy for origin in origins),
    )


@dataclass
class SourceLookup:
    """Upstream records behind one invoice, for the invoice detail view."""

    emr_records: List[Dict[str, Any]] = field(default_factory=list)
    pharmacy_records: List[Dict[str, Any]] = field(default_factory=list)
    source_type: str = "admin"
    item_origin: ItemOrigin = field(default_factory=ItemOrigin)


def _same_patient(record: Mapping[str, Any], patient_id: str) -> bool:
    value = record.get("patientId") or record.get("patient") or ""
    if isinstance(value, Mapping):
        value = value.get("_id") or value.get("id") or ""
    return str(value).strip().lower() == patient_id.strip().lower()


def pharmacy_entry(sale: Mapping[str, Any], invoice: Invoice) -> Dict[str, Any]:
    """Flatten a pharmacy sale for display, borrowing patient fields from the invoice when absent."""
    items = sale.get("items") or sale.get("transformedItems") or []
    total = coerce_amount(sale.get("totalAmount")) or coerce_amount(sale.get("total")) or pick_amount(sale, ("subtotal",))
    entry = {
        "id": pick_text(sale, ("_id", "id")),
        "transactionId": pick_text(sale, ("transactionId", "_id", "id")),
        "patientId": pick_text(sale, ("patientId",), default=invoice.patient_id or invoice.internal_patient_id),
        "patientName": pick_text(sale, ("patientName",), default=invoice.patient_name),
        "transactionDate": pick_text(sale, ("date", "transactionDate", "createdAt")),
        "items": [asdict(normalize_item(item, index, PHARMACY_SALE)) for index, item in enumerate(items)],
        "subtotal": pick_nonzero_amount(sale, ("totalAmount", "subtotal", "total")),
        "tax": pick_nonzero_amount(sale, ("tax",)),
        "discount": pick_nonzero_amount(sale, ("discount",)),
        "totalAmount": total,
        "paymentMethod": pick_text(sale, ("paymentMethod",), default="Cash"),
        "paymentStatus": pick_text(sale, ("paymentStatus", "status"), default="Pending"),
    }
    return entry


async def _guarded(label: str, fetch: Optional[RecordFetcher], patient_id: str) -> List[Dict[str, Any]]:
    if fetch is None:
        return []
    try:
        records = await fetch(patient_id)
    except Exception as exc:  # each source fails on its own
        LOGGER.warning("Failed to fetch %s records for %s: %s", label, patient_id, exc)
        return []
    return [record for record in records or [] if isinstance(record, Mapping)]


async def lookup_invoice_sources(
    invoice: Invoice,
    fetch_emr: Optional[RecordFetcher],
    fetch_pharmacy: Optional[RecordFetcher],
) -> SourceLookup:
    """Collect EMR appointments and pharmacy sales for the invoice's patient.

    Either source may fail without affecting the other. The badge is ``emr``
    when EMR records were found, else ``pharmacy``, else ``admin``.
    """
    patient_id = invoice.patient_id or invoice.internal_patient_id
    emr_raw, pharmacy_raw = await asyncio.gather(
        _guarded("EMR", fetch_emr, patient_id),
        _guarded("pharmacy", fetch_pharmacy, patient_id),
    )
    emr_records = [dict(record) for record in emr_raw if _same_patient(record, patient_id)]
    pharmacy_records = [
        entry for entry in (pharmacy_entry(sale, invoice) for sale in pharmacy_raw)
        if _same_patient(entry, patient_id)
    ]
    if emr_records:
        source_type = "emr"
    elif pharmacy_records:
        source_type = "pharmacy"
    else:
        source_type = "admin"
    return SourceLookup(
        emr_records=emr_records,
        pharmacy_records=pharmacy_records,
        source_type=source_type,
        item_origin=detect_invoice_sources(invoice),
    )


__all__ = [
    "InvoiceKey",
    "PaymentKey",
    "PaymentMatch",
    "invoice_key",
    "payment_key",
    "match_payment",
    "settle_invoices",
    "ItemOrigin",
    "classify_item",
    "detect_invoice_sources",
    "SourceLookup",
    "pharmacy_entry",
    "lookup_invoice_sources",
    "PHARMACY_KEYWORDS",
    "EMR_KEYWORDS",
]
