from datetime import date
from decimal import Decimal

import pytest

from medibill.errors import InvalidTransitionError, ValidationError
from medibill.ledger import BillingLedger, format_payment_method

TODAY = date(2025, 3, 31)


@pytest.fixture()
def ledger() -> BillingLedger:
    return BillingLedger()


def _invoice(ledger, number="INV-100", patient_id="P010", amount=500, record_date="2025-03-30"):
    return ledger.add_invoice_record(
        invoice_number=number,
        patient_name="Lito Lapid",
        patient_id=patient_id,
        amount=amount,
        record_date=record_date,
    )


def _payment(ledger, number="INV-100", patient_id="P010", amount=500, record_date="2025-03-30", **kwargs):
    return ledger.add_payment_record(
        invoice_number=number,
        patient_name="Lito Lapid",
        patient_id=patient_id,
        amount=amount,
        method=kwargs.pop("method", "cash"),
        record_date=record_date,
        **kwargs,
    )


def test_subscribe_delivers_current_records_immediately(ledger: BillingLedger) -> None:
    _invoice(ledger)
    snapshots = []
    ledger.subscribe(snapshots.append)
    assert len(snapshots) == 1
    assert snapshots[0][0].number == "INV-100"


def test_listeners_notified_in_order_with_post_mutation_state(ledger: BillingLedger) -> None:
    calls = []
    ledger.subscribe(lambda records: calls.append(("first", len(records))))
    ledger.subscribe(lambda records: calls.append(("second", len(records))))
    calls.clear()

    _invoice(ledger)
    assert calls == [("first", 1), ("second", 1)]


def test_failing_listener_is_isolated(ledger: BillingLedger) -> None:
    def broken(records):
        raise RuntimeError("listener exploded")

    received = []
    ledger.subscribe(broken)
    ledger.subscribe(received.append)
    _invoice(ledger)
    assert len(received) == 2


def test_unsubscribe_stops_notifications(ledger: BillingLedger) -> None:
    received = []
    unsubscribe = ledger.subscribe(received.append)
    unsubscribe()
    _invoice(ledger)
    assert len(received) == 1


def test_payment_record_maps_status_and_method(ledger: BillingLedger) -> None:
    record = _payment(ledger, method="gcash", status="processing", reference="GCH-1")
    assert record.status == "pending"
    assert record.payment_method == "GCash"
    assert record.number.startswith("PAY-")
    assert record.description == "Payment for INV-100"
    assert format_payment_method("crypto") == "crypto"


def test_invoice_records_start_pending(ledger: BillingLedger) -> None:
    record = _invoice(ledger)
    assert record.status == "pending"
    assert record.date == date(2025, 3, 30)


def test_invalid_record_status_rejected(ledger: BillingLedger) -> None:
    record = _invoice(ledger)
    with pytest.raises(ValidationError):
        ledger.update_record_status(record.id, "archived")


def test_terminal_status_cannot_be_reopened(ledger: BillingLedger) -> None:
    record = _invoice(ledger)
    ledger.update_record_status(record.id, "cancelled")
    ledger.update_record_status(record.id, "cancelled")
    with pytest.raises(InvalidTransitionError):
        ledger.update_record_status(record.id, "completed")


def test_unknown_record(ledger: BillingLedger) -> None:
    with pytest.raises(KeyError):
        ledger.update_record_status("missing", "completed")


def test_automation_settles_invoice_by_number(ledger: BillingLedger) -> None:
    invoice = _invoice(ledger)
    _payment(ledger)
    result = ledger.run_automations(TODAY)
    assert result.settled == [invoice.id]
    assert ledger.get_record(invoice.id).status == "completed"

    again = ledger.run_automations(TODAY)
    assert not again.changed


def test_automation_settles_by_patient_and_amount(ledger: BillingLedger) -> None:
    invoice = _invoice(ledger, number="INV-200", patient_id="P020", amount=750)
    _payment(ledger, number="INV-XYZ", patient_id="P020", amount=750)
    assert ledger.run_automations(TODAY).settled == [invoice.id]


def test_pending_payment_does_not_settle(ledger: BillingLedger) -> None:
    invoice = _invoice(ledger)
    _payment(ledger, status="processing")
    result = ledger.run_automations(TODAY)
    assert result.settled == []
    assert ledger.get_record(invoice.id).status == "pending"


def test_auto_void_boundary(ledger: BillingLedger) -> None:
    recent = _invoice(ledger, number="INV-29", record_date="2025-03-02")
    stale = _invoice(ledger, number="INV-30", record_date="2025-03-01")
    result = ledger.run_automations(TODAY)
    assert result.voided == [stale.id]
    assert ledger.get_record(recent.id).status == "pending"
    assert ledger.get_record(stale.id).status == "cancelled"


def test_automation_without_changes_does_not_notify(ledger: BillingLedger) -> None:
    _invoice(ledger)
    received = []
    ledger.subscribe(received.append)
    ledger.run_automations(TODAY)
    assert len(received) == 1


def test_clear_all_records_can_skip_notification(ledger: BillingLedger) -> None:
    _invoice(ledger)
    received = []
    ledger.subscribe(received.append)
    ledger.clear_all_records(notify=False)
    assert ledger.get_all_records() == []
    assert len(received) == 1


def test_queries(ledger: BillingLedger) -> None:
    _invoice(ledger, number="INV-1", record_date="2025-03-01")
    _invoice(ledger, number="INV-2", patient_id="P099", record_date="2025-03-15")
    _payment(ledger, number="INV-1", record_date="2025-03-31")
    in_range = ledger.get_records_by_date_range("2025-03-01", date(2025, 3, 15))
    assert [r.number for r in in_range] == ["INV-1", "INV-2"]
    assert [r.number for r in ledger.get_records_by_patient("P099")] == ["INV-2"]
    assert len(ledger.get_records_by_type("payment")) == 1


def test_returned_records_are_copies(ledger: BillingLedger) -> None:
    record = _invoice(ledger)
    record.status = "completed"
    ledger.get_all_records()[0].amount = 1
    stored = ledger.get_record(record.id)
    assert stored.status == "pending"
    assert stored.amount == 500


def test_seeded_dashboard_metrics() -> None:
    ledger = BillingLedger(seed_demo_data=True)
    metrics = ledger.dashboard_metrics(as_of=date(2025, 1, 5))
    assert metrics["total_revenue"] == Decimal("58800.00")
    assert metrics["revenue_today"] == Decimal("13800.00")
    assert metrics["pending_invoices"] == 3
    assert metrics["pending_amount"] == Decimal("46860.00")


def test_automation_prefers_exact_number_over_prefix(ledger: BillingLedger) -> None:
    short = _invoice(ledger, number="INV-1", patient_id="P001", amount=100)
    long = _invoice(ledger, number="INV-10", patient_id="P002", amount=500)
    _payment(ledger, number="INV-10", patient_id="P002", amount=500)

    result = ledger.run_automations(TODAY)

    assert result.settled == [long.id]
    assert ledger.get_record(short.id).status == "pending"
    assert ledger.get_record(long.id).status == "completed"


def test_configured_date_formats_are_used() -> None:
    dotted = BillingLedger(date_formats=("%d.%m.%Y",))
    assert _invoice(dotted, record_date="31.03.2025").date == TODAY
    with pytest.raises(ValidationError, match="Unrecognised date"):
        _invoice(BillingLedger(), record_date="31.03.2025")
