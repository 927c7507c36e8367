import asyncio

import aiohttp
import pytest

from medibill.clients import BillingApiClient, unwrap_collection, unwrap_object
from medibill.config import BillingSettings
from medibill.errors import PaymentProcessingError


def _client(**overrides):
    settings = BillingSettings(api_base_url="http://billing.test/api", **overrides)
    return BillingApiClient(settings)


class FakeTransport:
    """Answers ``_request`` calls from a route table keyed by ``(method, url)``."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    async def __call__(self, method, url, **kwargs):
        self.calls.append((method, url))
        answer = self.routes.get((method, url))
        if answer is None:
            raise aiohttp.ClientConnectionError(f"no route for {method} {url}")
        if isinstance(answer, Exception):
            raise answer
        return answer


@pytest.mark.parametrize(
    "payload, expected",
    [
        ([{"_id": "1"}, "junk"], [{"_id": "1"}]),
        ({"data": [{"_id": "2"}]}, [{"_id": "2"}]),
        ({"success": True, "data": [{"_id": "3"}]}, [{"_id": "3"}]),
        ({"success": False, "data": [{"_id": "4"}]}, []),
        ({"message": "nope"}, []),
        (None, []),
    ],
)
def test_unwrap_collection(payload, expected) -> None:
    assert unwrap_collection(payload) == expected


def test_unwrap_object() -> None:
    assert unwrap_object({"data": {"_id": "p1"}}) == {"_id": "p1"}
    assert unwrap_object({"_id": "p2"}) == {"_id": "p2"}
    assert unwrap_object(["not", "an", "object"]) == {}


def test_unconfigured_client_reads_nothing_and_refuses_payments() -> None:
    client = BillingApiClient(BillingSettings(api_base_url=""))
    assert asyncio.run(client.fetch_payments()) == []
    assert asyncio.run(client.fetch_emr_appointments("P001")) == []
    with pytest.raises(PaymentProcessingError, match="not configured"):
        asyncio.run(client.create_payment({"amount": 1}))


def test_invoices_fall_back_when_combined_endpoint_fails() -> None:
    client = _client()
    client._request = FakeTransport({("GET", "http://billing.test/api/invoices"): {"data": [{"_id": "i1"}]}})
    assert asyncio.run(client.fetch_invoices()) == [{"_id": "i1"}]
    assert [url for _, url in client._request.calls] == [
        "http://billing.test/api/invoices/combined",
        "http://billing.test/api/invoices",
    ]


def test_pharmacy_sales_fall_back_to_transactions_feed() -> None:
    client = _client(pharmacy_base_url="http://pharmacy.test/api/")
    client._request = FakeTransport(
        {
            ("GET", "http://billing.test/api/pharmacy/sales"): {"data": []},
            ("GET", "http://pharmacy.test/api/transactions"): [{"_id": "tx1"}],
        }
    )
    assert asyncio.run(client.fetch_pharmacy_sales("P001")) == [{"_id": "tx1"}]


def test_create_payment_tries_billing_path_second() -> None:
    client = _client()
    client._request = FakeTransport(
        {
            ("POST", "http://billing.test/api/payments"): asyncio.TimeoutError(),
            ("POST", "http://billing.test/api/billing/payments"): {"success": True, "data": {"_id": "pay1"}},
        }
    )
    assert asyncio.run(client.create_payment({"amount": 100}))["_id"] == "pay1"


def test_create_payment_raises_when_every_path_fails() -> None:
    client = _client()
    client._request = FakeTransport({})
    with pytest.raises(PaymentProcessingError, match="/billing/payments"):
        asyncio.run(client.create_payment({"amount": 100}))


def test_invoice_status_update_retries_with_patch() -> None:
    client = _client()
    client._request = FakeTransport({("PATCH", "http://billing.test/api/invoices/i1"): {}})
    assert asyncio.run(client.update_invoice_status("i1")) is True
    assert [method for method, _ in client._request.calls] == ["PUT", "PATCH"]

    client._request = FakeTransport({})
    assert asyncio.run(client.update_invoice_status("i1")) is False
