import json
import sys
from datetime import date
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app import domain, events  # noqa: E402
from app.config import Settings  # noqa: E402


def _result(state=domain.QueryState.RESOLVED, reason=None) -> domain.AvailabilityResult:
    selection = domain.BookingSelection(product_id="tour-1", date=date(2026, 10, 19), adults=2, children=1)
    packages = []
    if state is domain.QueryState.RESOLVED:
        packages = [domain.PackageOption(package_id="p1", name="Harbour", currency="INR", pricing_type="per_person", slots=[])]
    return domain.AvailabilityResult(state=state, selection=selection, reason=reason, packages=packages)


class _DummyExchange:
    def __init__(self):
        self.published = []

    async def publish(self, message, routing_key):
        self.published.append((routing_key, json.loads(message.body)))


class _DummyChannel:
    def __init__(self, exchange):
        self.exchange = exchange

    async def declare_exchange(self, name, type_, durable=False):
        self.exchange.name = name
        return self.exchange


class _DummyConnection:
    def __init__(self, exchange):
        self.exchange = exchange
        self.closed = False

    async def channel(self):
        return _DummyChannel(self.exchange)

    async def close(self):
        self.closed = True


@pytest.mark.anyio
async def test_publish_is_best_effort_when_rabbitmq_down(monkeypatch):
    async def _boom(*args, **kwargs):
        raise RuntimeError("rabbitmq down")

    monkeypatch.setattr(events.aio_pika, "connect_robust", _boom)

    await events.publish_availability(Settings(events_strict=False), _result())


@pytest.mark.anyio
async def test_strict_mode_raises(monkeypatch):
    async def _boom(*args, **kwargs):
        raise RuntimeError("rabbitmq down")

    monkeypatch.setattr(events.aio_pika, "connect_robust", _boom)

    with pytest.raises(RuntimeError):
        await events.publish_availability(Settings(events_strict=True), _result())


@pytest.mark.anyio
async def test_disabled_events_never_connect(monkeypatch):
    async def _unexpected(*args, **kwargs):
        raise AssertionError("should not connect")

    monkeypatch.setattr(events.aio_pika, "connect_robust", _unexpected)

    await events.publish_availability(Settings(events_enabled=False, events_strict=True), _result())


@pytest.mark.anyio
async def test_routing_key_and_payload(monkeypatch):
    exchange = _DummyExchange()
    conn = _DummyConnection(exchange)

    async def _connect(url):
        return conn

    monkeypatch.setattr(events.aio_pika, "connect_robust", _connect)

    await events.publish_availability(Settings(), _result())
    await events.publish_availability(
        Settings(), _result(domain.QueryState.UNAVAILABLE, domain.UnavailableReason.SOLD_OUT)
    )

    assert exchange.name == "tours.events"
    assert conn.closed
    (k1, m1), (k2, m2) = exchange.published
    assert k1 == "availability.resolved"
    assert m1["type"] == "availability.resolved"
    assert m1["data"]["package_ids"] == ["p1"]
    assert k2 == "availability.unavailable"
    assert m2["data"]["reason"] == "sold_out"
    assert m2["data"]["date"] == "2026-10-19"
