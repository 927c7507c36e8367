import pytest

from medibill.normalization import (
    cashier_queue,
    compute_invoice_subtotal,
    derive_invoice_status,
    normalize_invoice,
    normalize_patients,
    normalize_payment,
    resolve_patient_display,
)
from medibill.normalization.amounts import coerce_amount
from medibill.normalization.patients import is_friendly_patient_id, lookup_display_id
from medibill.normalization.sources import EMR_APPOINTMENT, PHARMACY_SALE, detect_shape

RAW_INVOICE = {
    "_id": "65f1c0ffee1234abcd",
    "status": "draft",
    "patientId": "64aa00bbccddeeff",
    "patientName": "Maria Santos",
    "subtotal": 1000,
    "discount": 200,
    "tax": 96,
    "total": 896,
    "date": "2025-01-05",
    "dueDate": "2025-02-05",
    "createdAt": "2025-01-05T10:30:00Z",
    "items": [{"description": "Paracetamol 500mg", "quantity": 2, "rate": 500, "category": "pharmacy"}],
}


def test_coerce_amount_handles_currency_and_garbage() -> None:
    assert coerce_amount("₱1,250.50") == pytest.approx(1250.5)
    assert coerce_amount("(100)") == pytest.approx(-100)
    assert coerce_amount("abc") is None
    assert coerce_amount(True) is None
    assert coerce_amount(float("nan")) is None


def test_normalize_invoice_derives_number_status_and_items() -> None:
    invoice = normalize_invoice(RAW_INVOICE)
    assert invoice.number == "INV-34abcd"
    assert invoice.status == "pending"
    assert invoice.total == pytest.approx(896)
    assert invoice.items[0].amount == pytest.approx(1000)
    assert invoice.items[0].id == "item_0"
    assert invoice.source == "admin_invoice"


def test_raw_patient_id_never_displayed() -> None:
    invoice = normalize_invoice(RAW_INVOICE)
    assert invoice.patient_id == ""
    assert invoice.internal_patient_id == "64aa00bbccddeeff"


def test_patient_id_resolved_from_patient_list() -> None:
    patients = normalize_patients([{"_id": "other"}, {"_id": "64aa00bbccddeeff", "firstName": "Maria"}])
    invoice = normalize_invoice(RAW_INVOICE, patients=patients)
    assert invoice.patient_id == "P002"


def test_normalization_is_idempotent() -> None:
    patients = normalize_patients([{"_id": "64aa00bbccddeeff", "name": "Maria Santos"}])
    first = normalize_invoice(RAW_INVOICE, patients=patients)
    assert normalize_invoice(first, patients=patients) == first


@pytest.mark.parametrize(
    "raw_status, expected",
    [("draft", "pending"), ("unpaid", "pending"), ("sent", "pending"), ("COMPLETED", "paid"), ("overdue", "overdue"), (None, "pending")],
)
def test_derive_invoice_status(raw_status, expected) -> None:
    assert derive_invoice_status(raw_status) == expected


def test_completed_payment_overrides_raw_status() -> None:
    payments = [{"invoiceNumber": "INV-500", "status": "completed"}]
    invoice = normalize_invoice({"_id": "abc", "number": "INV-500", "status": "overdue"}, payments)
    assert invoice.status == "paid"


def test_pending_payment_does_not_mark_paid() -> None:
    payments = [{"invoiceId": "abc", "status": "pending"}]
    invoice = normalize_invoice({"_id": "abc", "status": "sent"}, payments)
    assert invoice.status == "pending"


def test_cashier_queue_skips_paid_and_archived() -> None:
    raw = [
        {"_id": "1", "number": "INV-1", "status": "draft"},
        {"_id": "2", "number": "INV-2", "status": "paid"},
        {"_id": "3", "number": "INV-3", "status": "sent", "createdAt": "archived-2025-01-01"},
        {"_id": "4", "number": "INV-4", "status": "unpaid"},
    ]
    payments = [{"invoiceId": "4", "status": "paid"}]
    queue = cashier_queue(raw, payments)
    assert [invoice.number for invoice in queue] == ["INV-1"]


def test_pharmacy_sale_shape() -> None:
    sale = {
        "transactionId": "TX-77",
        "customerName": "Juan Dela Cruz",
        "totalAmount": "₱850.00",
        "items": [{"medicationName": "Amoxicillin", "quantity": 3, "price": 250}],
    }
    assert detect_shape(sale) is PHARMACY_SALE
    invoice = normalize_invoice(sale)
    assert invoice.patient_name == "Juan Dela Cruz"
    assert invoice.total == pytest.approx(850)
    assert invoice.items[0].description == "Amoxicillin"
    assert invoice.items[0].amount == pytest.approx(750)
    assert invoice.items[0].category == "Pharmacy"


def test_emr_appointment_detected_by_tag() -> None:
    assert detect_shape({"source": "EMR", "fee": 500}) is EMR_APPOINTMENT


def test_normalize_payment_field_fallbacks() -> None:
    payment = normalize_payment({"_id": "p1", "total": "₱1,500", "invoiceNo": "INV-9", "createdAt": "2025-01-05T14:15:00Z"})
    assert payment.amount == pytest.approx(1500)
    assert payment.subtotal == pytest.approx(1500)
    assert payment.invoice_number == "INV-9"
    assert payment.status == "completed"
    assert payment.time == "02:15:00 PM"


def test_normalize_payment_never_raises_on_bad_numbers() -> None:
    payment = normalize_payment({"amount": "abc", "discount": {"nested": True}, "tax": None})
    assert payment.amount == 0
    assert payment.discount == 0
    assert payment.tax == 0


@pytest.mark.parametrize(
    "raw",
    [
        {
            "_id": "p1",
            "invoiceId": "inv1",
            "invoiceNumber": "INV-1",
            "patientId": "P001",
            "patientName": "Maria Santos",
            "amount": 1096,
            "subtotal": 1250,
            "discount": 250,
            "tax": 96,
            "method": "cash",
            "status": "completed",
            "paymentDate": "2025-01-05T14:15:00Z",
            "reference": "OR-1",
            "cashReceived": 1500,
            "change": 404,
            "processedBy": "cashier1",
            "items": [{"description": "Consultation", "amount": 250}],
        },
        {"_id": "p9", "reference": "GCH-1", "createdAt": "2025-01-05T14:15:00Z", "amount": 500},
    ],
)
def test_payment_normalization_is_idempotent(raw) -> None:
    first = normalize_payment(raw)
    assert normalize_payment(first) == first


def test_reference_only_payment_keeps_its_number() -> None:
    payment = normalize_payment({"_id": "p9", "reference": "GCH-1", "createdAt": "2025-01-05T14:15:00Z"})
    assert payment.invoice_number == "GCH-1"
    assert payment.reference == "GCH-1"
    assert payment.date == "2025-01-05T14:15:00Z"
    assert payment.time == "02:15:00 PM"


def test_compute_invoice_subtotal_fallbacks() -> None:
    assert compute_invoice_subtotal({"totalAmount": "300"}) == pytest.approx(300)
    assert compute_invoice_subtotal({"items": [{"totalPrice": 100}, {"amount": 50}]}) == pytest.approx(150)
    assert compute_invoice_subtotal({}) == 0


def test_resolve_patient_display() -> None:
    patients = normalize_patients([{"_id": "abc", "firstName": "Juan", "lastName": "Dela Cruz"}])
    assert resolve_patient_display(patients, "abc") == "Juan Dela Cruz (P001)"
    assert resolve_patient_display(None, "P123") == "P123"
    assert resolve_patient_display([], "64aa00bb") == "N/A"


def test_lookup_display_id_pads_positional_fallback() -> None:
    patients = [{"_id": "a"}, {"_id": "b", "patientId": "P900"}]
    assert lookup_display_id(patients, "a") == "P001"
    assert is_friendly_patient_id(lookup_display_id(patients, "a"))
    assert lookup_display_id(patients, "b") == "P900"
    assert lookup_display_id(patients, "zzz") is None


def test_normalize_patients_keeps_existing_ids() -> None:
    patients = normalize_patients([{"_id": "a", "patientId": "P900"}, {"_id": "b"}])
    assert [p["patientId"] for p in patients] == ["P900", "P002"]
