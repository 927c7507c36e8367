import asyncio

import pytest

from medibill.events import NEW_RECORDS, EventBus
from medibill.messages import NotificationFeed
from medibill.reconciliation import ReconciliationPoller


class Upstream:
    """Mutable fake of the upstream systems."""

    def __init__(self):
        self.invoices = [{"_id": "1", "status": "draft"}, {"_id": "2", "status": "sent"}]
        self.payments = []
        self.emr = [{"_id": "a", "status": "scheduled"}, {"_id": "b", "status": "cancelled"}]
        self.pharmacy = [{"_id": "s1"}]

    async def fetch_invoices(self):
        return self.invoices

    async def fetch_payments(self):
        return self.payments

    async def fetch_emr(self):
        return self.emr

    async def fetch_pharmacy(self):
        return self.pharmacy


def _poller(upstream, **kwargs):
    return ReconciliationPoller(
        upstream.fetch_invoices,
        upstream.fetch_payments,
        upstream.fetch_emr,
        upstream.fetch_pharmacy,
        **kwargs,
    )


def test_first_tick_only_sets_baselines() -> None:
    upstream = Upstream()
    feed = NotificationFeed()
    poller = _poller(upstream, feed=feed)
    result = asyncio.run(poller.tick())
    assert result.notifications == []
    assert result.counts == {"invoice": 2, "payment": 0, "emr": 1, "pharmacy": 1}
    assert len(feed) == 0


def test_growth_is_announced_per_source_in_order() -> None:
    upstream = Upstream()
    feed = NotificationFeed()
    bus = EventBus()
    published = []
    bus.subscribe(NEW_RECORDS, published.append)
    poller = _poller(upstream, feed=feed, bus=bus)

    async def scenario():
        await poller.tick()
        upstream.invoices += [{"_id": "3", "status": "unpaid"}, {"_id": "4", "status": "draft"}]
        upstream.pharmacy += [{"_id": "s2"}, {"_id": "s3"}]
        upstream.emr.append({"_id": "c", "status": "cancelled"})
        return await poller.tick()

    result = asyncio.run(scenario())
    assert [(n.source, n.new_count, n.total) for n in result.notifications] == [
        ("invoice", 2, 4),
        ("pharmacy", 2, 3),
    ]
    assert result.notifications[0].message == "2 new invoices received from Admin system"
    assert [n.source for n in published] == ["invoice", "pharmacy"]
    assert [item.kind for item in feed.items()] == ["pharmacy", "invoice"]


def test_zero_baseline_never_notifies() -> None:
    upstream = Upstream()
    poller = _poller(upstream)

    async def scenario():
        await poller.tick()
        upstream.payments = [{"_id": "p1"}, {"_id": "p2"}]
        return await poller.tick()

    result = asyncio.run(scenario())
    assert result.notifications == []
    assert result.counts["payment"] == 2


def test_failing_fetcher_counts_as_empty() -> None:
    upstream = Upstream()

    async def broken():
        raise ConnectionError("pharmacy down")

    poller = ReconciliationPoller(upstream.fetch_invoices, upstream.fetch_payments, upstream.fetch_emr, broken)
    result = asyncio.run(poller.tick())
    assert result.counts["pharmacy"] == 0
    assert result.counts["invoice"] == 2


def test_queue_resolves_friendly_patient_ids() -> None:
    upstream = Upstream()
    upstream.invoices = [{"_id": "1", "status": "draft", "patientId": "64aa00bbccddeeff"}]

    async def patients():
        return [{"_id": "64aa00bbccddeeff", "name": "Maria Santos"}]

    poller = _poller(upstream, fetch_patients=patients)
    result = asyncio.run(poller.tick())
    assert [invoice.patient_id for invoice in poller.queue] == ["P001"]
    assert "patient" not in result.counts


def test_queue_hides_internal_ids_without_patient_list() -> None:
    upstream = Upstream()
    upstream.invoices = [{"_id": "1", "status": "draft", "patientId": "64aa00bbccddeeff"}]
    poller = _poller(upstream)
    asyncio.run(poller.tick())
    assert poller.queue[0].patient_id == ""


def test_alert_callback_and_failing_alert() -> None:
    upstream = Upstream()
    alerts = []

    def alert(notification):
        alerts.append(notification.source)
        raise RuntimeError("speaker unplugged")

    feed = NotificationFeed()
    poller = _poller(upstream, feed=feed, on_alert=alert)

    async def scenario():
        await poller.tick()
        upstream.invoices.append({"_id": "3", "status": "draft"})
        return await poller.tick()

    result = asyncio.run(scenario())
    assert alerts == ["invoice"]
    assert result.notifications[0].message == "1 new invoice received from Admin system"
    assert len(feed) == 1


def test_results_arriving_after_stop_are_discarded() -> None:
    upstream = Upstream()
    poller = _poller(upstream)

    async def scenario():
        release = asyncio.Event()
        original = upstream.invoices

        async def slow_invoices():
            await release.wait()
            return original

        poller._fetchers["invoice"] = slow_invoices
        pending = asyncio.ensure_future(poller.tick())
        await asyncio.sleep(0)
        poller.stop()
        release.set()
        return await pending

    result = asyncio.run(scenario())
    assert result.discarded
    assert result.counts["invoice"] == 0


def test_start_and_stop() -> None:
    upstream = Upstream()

    async def scenario():
        ticked = asyncio.Event()

        async def fake_sleep(interval):
            ticked.set()
            await asyncio.Event().wait()

        poller = _poller(upstream, sleep=fake_sleep)
        task = poller.start()
        assert poller.start() is task
        await ticked.wait()
        assert poller.running
        assert poller.counts["invoice"] == 2

        poller.stop()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert not poller.running

    asyncio.run(scenario())
