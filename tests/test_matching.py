import asyncio

import pytest

from medibill.ledger import BillingLedger
from medibill.matching import (
    classify_item,
    lookup_invoice_sources,
    match_payment,
    settle_invoices,
)
from medibill.models import BillingRecord
from medibill.normalization import normalize_invoice


@pytest.fixture()
def invoices():
    return [
        normalize_invoice({"_id": "a1", "number": "INV-1", "patientNumber": "P001", "total": 500, "status": "draft"}),
        normalize_invoice({"_id": "b1", "number": "INV-2", "patientNumber": "P001", "total": 500, "status": "draft"}),
        normalize_invoice({"_id": "c1", "number": "INV-3", "patientNumber": "P002", "total": 750, "status": "paid"}),
    ]


def test_invoice_id_beats_number(invoices) -> None:
    match = match_payment({"invoiceId": "b1", "invoiceNumber": "INV-1", "patientId": "P001", "amount": 500}, invoices)
    assert match.invoice.id == "b1"
    assert match.rule == "id"


def test_number_beats_patient_amount(invoices) -> None:
    match = match_payment({"invoiceNumber": "INV-2", "patientId": "P001", "amount": 500}, invoices)
    assert match.invoice.number == "INV-2"
    assert match.rule == "number"


def test_patient_amount_takes_first_pending(invoices) -> None:
    match = match_payment({"patientId": "P001", "amount": 500.004}, invoices)
    assert match.invoice.id == "a1"
    assert match.rule == "patient_amount"


def test_patient_amount_requires_tolerance_and_pending(invoices) -> None:
    assert match_payment({"patientId": "P001", "amount": 500.02}, invoices) is None
    assert match_payment({"patientId": "P002", "amount": 750}, invoices) is None


def test_settle_invoices_returns_fresh_copies(invoices) -> None:
    settled = settle_invoices(invoices, [{"invoiceNumber": "INV-1", "status": "completed"}])
    assert settled[0].status == "paid"
    assert invoices[0].status == "pending"
    assert settled[1].status == "pending"


def test_processing_payment_does_not_settle(invoices) -> None:
    settled = settle_invoices(invoices, [{"invoiceNumber": "INV-1", "status": "processing"}])
    assert settled[0].status == "pending"


def test_classify_item_keywords() -> None:
    assert classify_item({"category": "Pharmacy", "description": "Amoxicillin"}).pharmacy
    origin = classify_item({"category": "", "description": "Chest X-Ray"})
    assert origin.emr and not origin.pharmacy
    assert classify_item({"description": "Room and board"}) == classify_item({})


@pytest.fixture()
def lookup_invoice():
    return normalize_invoice(
        {
            "_id": "inv-9",
            "patientNumber": "P001",
            "patientName": "Ana Reyes",
            "items": [{"description": "Consultation", "amount": 500, "category": "consultation"}],
        }
    )


def test_emr_failure_falls_back_to_pharmacy(lookup_invoice) -> None:
    async def failing_emr(patient_id):
        raise ConnectionError("EMR offline")

    async def pharmacy(patient_id):
        return [
            {"_id": "s1", "patientId": "p001", "totalAmount": 300, "items": [{"name": "Paracetamol", "quantity": 1, "price": 300}]},
            {"_id": "s2", "patientId": "P001", "total": 120},
            {"_id": "s3", "patientId": "P777", "total": 90},
        ]

    lookup = asyncio.run(lookup_invoice_sources(lookup_invoice, failing_emr, pharmacy))
    assert lookup.source_type == "pharmacy"
    assert lookup.emr_records == []
    assert [entry["id"] for entry in lookup.pharmacy_records] == ["s1", "s2"]
    assert lookup.pharmacy_records[0]["items"][0]["category"] == "Pharmacy"
    assert lookup.item_origin.emr


def test_emr_records_win_badge(lookup_invoice) -> None:
    async def emr(patient_id):
        return [{"_id": "apt1", "patientId": "P001", "status": "completed"}]

    async def pharmacy(patient_id):
        return [{"_id": "s1", "patientId": "P001", "total": 10}]

    lookup = asyncio.run(lookup_invoice_sources(lookup_invoice, emr, pharmacy))
    assert lookup.source_type == "emr"
    assert len(lookup.pharmacy_records) == 1


def test_no_upstream_records_is_admin(lookup_invoice) -> None:
    lookup = asyncio.run(lookup_invoice_sources(lookup_invoice, None, None))
    assert lookup.source_type == "admin"


def test_id_match_settles_only_that_invoice() -> None:
    invoices = [
        normalize_invoice({"_id": "x1", "number": "INV-1", "status": "draft", "total": 100}),
        normalize_invoice({"_id": "x2", "patientId": "p1", "total": 100, "status": "pending"}),
    ]
    settled = settle_invoices(invoices, [{"invoiceId": "x1", "patientId": "p1", "amount": 100}])
    assert [invoice.status for invoice in settled] == ["paid", "pending"]


def test_description_match_is_whole_token() -> None:
    ledger = BillingLedger()
    ledger.add_invoice_record(invoice_number="INV-1", patient_name="A", patient_id="P001", amount=100)
    target = ledger.add_invoice_record(invoice_number="INV-10", patient_name="B", patient_id="P002", amount=500)
    payment = BillingRecord(
        id="pay", type="payment", number="PAY-1", patient_name="B", patient_id="P009",
        date=target.date, amount=1, status="completed", description="Payment for INV-10",
    )
    match = match_payment(payment, ledger.get_records_by_type("invoice"))
    assert match.invoice.number == "INV-10"
