import sys
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.config import Settings  # noqa: E402
from app.main import _session_for, app, get_orchestrator  # noqa: E402
from app.orchestrator import AvailabilityOrchestrator  # noqa: E402
from app.upstream import CatalogClient  # noqa: E402

NOW = datetime(2026, 10, 17, 9, 0, tzinfo=timezone.utc)  # Saturday

PRODUCT = {
    "id": "tour-1",
    "title": "Harbour cruise",
    "type": "TOUR",
    "packages": [
        {
            "id": "p1",
            "name": "Morning",
            "basePrice": 1000,
            "currency": "INR",
            "discountType": "percentage",
            "discountValue": 10,
        }
    ],
}
AVAILABILITY = {
    "availability": [
        {"status": "AVAILABLE", "startDate": "2026-10-19", "endDate": "2026-10-19", "available": 5, "booked": 0},
        {"status": "SOLD_OUT", "startDate": "2026-10-20"},
        {"status": "AVAILABLE", "startDate": "2026-10-26"},
    ]
}
SLOTS = {"slots": [{"times": ["10:00 AM"], "days": ["Monday"], "adultTiers": [], "childTiers": []}]}


def _catalog(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/api/products/tour-1":
        return httpx.Response(200, json=PRODUCT)
    if path == "/api/availability/product/tour-1":
        return httpx.Response(200, json=AVAILABILITY)
    if path == "/api/availability/package/p1/slots":
        return httpx.Response(200, json=SLOTS)
    if path == "/api/products/broken":
        return httpx.Response(503)
    return httpx.Response(404, json={"detail": "not found"})


@pytest.fixture
def client():
    settings = Settings(catalog_api_url="http://catalog.test/api", events_enabled=False, debounce_seconds=0)
    orch = AvailabilityOrchestrator(
        settings,
        CatalogClient(settings, transport=httpx.MockTransport(_catalog)),
        now=lambda: NOW,
    )
    app.dependency_overrides[get_orchestrator] = lambda: orch
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_availability_resolves_monday(client):
    r = client.get("/products/tour-1/availability", params={"date": "2026-10-19", "adults": 2})
    assert r.status_code == 200
    body = r.json()
    assert body["available"] is True
    assert body["state"] == "resolved"
    slot = body["packages"][0]["slots"][0]
    assert slot["adult_price"] == 900
    assert slot["total_price"] == 1800
    assert slot["remaining"] == 5
    assert body["default_choice"] == {"package_id": "p1", "position": 0, "slot_id": None, "time": "10:00 AM"}


def test_availability_sold_out_reports_next_date(client):
    r = client.get("/products/tour-1/availability", params={"date": "2026-10-20", "adults": 2})
    assert r.status_code == 200
    body = r.json()
    assert body["available"] is False
    assert body["reason"] == "sold_out"
    assert body["packages"] == []
    assert body["next_available_date"] == "2026-10-26"


def test_availability_with_zero_adults_is_invalid_party(client):
    r = client.get("/products/tour-1/availability", params={"date": "2026-10-19", "adults": 0, "children": 2})
    assert r.status_code == 200
    assert r.json()["reason"] == "invalid_party"


def test_availability_upstream_failure_is_reported_in_body(client):
    r = client.get("/products/broken/availability", params={"date": "2026-10-19"})
    assert r.status_code == 200
    assert r.json()["reason"] == "upstream_error"


def test_availability_through_booking_session(client):
    r = client.get(
        "/products/tour-1/availability",
        params={"date": "2026-10-19", "adults": 1},
        headers={"X-Booking-Session": "visitor-1"},
    )
    assert r.status_code == 200
    assert r.json()["available"] is True


def test_availability_summary(client):
    r = client.get(
        "/products/tour-1/availability-summary",
        params={"start_date": "2026-10-18", "end_date": "2026-10-20"},
    )
    assert r.status_code == 200
    body = r.json()
    assert [d["status"] for d in body["days"]] == [None, "AVAILABLE", "SOLD_OUT"]
    assert body["next_available_date"] == "2026-10-19"


def test_availability_summary_rejects_bad_ranges(client):
    backwards = client.get(
        "/products/tour-1/availability-summary",
        params={"start_date": "2026-10-20", "end_date": "2026-10-18"},
    )
    assert backwards.status_code == 400

    too_long = client.get(
        "/products/tour-1/availability-summary",
        params={"start_date": "2026-01-01", "end_date": "2027-06-01"},
    )
    assert too_long.status_code == 400


@pytest.mark.parametrize(
    "payload, expected",
    [
        ({"base_price": 1000, "discount_type": "none", "discount_value": 30}, 1000),
        ({"base_price": 1000, "discount_type": "percentage", "discount_value": 12.5}, 875),
        ({"base_price": 100, "discount_type": "fixed", "discount_value": 150}, 0),
    ],
)
def test_effective_price(client, payload, expected):
    r = client.post("/pricing/effective-price", json=payload)
    assert r.status_code == 200
    assert r.json()["effective_price"] == expected


def test_effective_price_rejects_percentage_over_100(client):
    r = client.post("/pricing/effective-price", json={"base_price": 100, "discount_type": "percentage", "discount_value": 120})
    assert r.status_code == 400


def test_quote(client):
    r = client.post(
        "/quote",
        json={"product_id": "tour-1", "package_id": "p1", "date": "2026-10-19", "adults": 2, "children": 1, "slot_position": 0, "time": "10:00 AM"},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 2250
    assert body["currency"] == "INR"


def test_quote_error_mapping(client):
    base = {"product_id": "tour-1", "date": "2026-10-19", "adults": 2}

    assert client.post("/quote", json={**base, "package_id": "nope"}).status_code == 404
    assert client.post("/quote", json={**base, "package_id": "p1", "slot_position": 0, "time": "7:00 PM"}).status_code == 400
    assert client.post("/quote", json={**base, "product_id": "broken", "package_id": "p1"}).status_code == 502
    assert client.post("/quote", json={**base, "package_id": "p1", "adults": 0}).status_code == 422


def test_quote_past_cutoff_conflicts(client):
    r = client.post(
        "/quote",
        json={"product_id": "tour-1", "package_id": "p1", "date": "2026-10-17", "adults": 1, "slot_position": 0, "time": "10:00 AM"},
    )
    assert r.status_code == 409
    assert r.json()["detail"].startswith("Booking closed")


def test_slot_bookable(client):
    open_ = client.get("/slots/bookable", params={"date": "2026-10-19", "time": "10:00 AM"})
    assert open_.json() == {"is_bookable": True, "reason": None}

    closed = client.get("/slots/bookable", params={"date": "2026-10-18", "time": "8:00 AM"})
    assert closed.json()["is_bookable"] is False

    relaxed = client.get("/slots/bookable", params={"date": "2026-10-18", "time": "8:00 AM", "cutoff_hours": 1})
    assert relaxed.json()["is_bookable"] is True

    garbage = client.get("/slots/bookable", params={"date": "2026-10-18", "time": "whenever"})
    assert garbage.json()["reason"] == "Invalid slot date or time"


def test_booking_sessions_follow_the_injected_orchestrator():
    settings = Settings(catalog_api_url="http://catalog.test/api", events_enabled=False)
    first = AvailabilityOrchestrator(settings, CatalogClient(settings, transport=httpx.MockTransport(_catalog)))
    second = AvailabilityOrchestrator(settings, CatalogClient(settings, transport=httpx.MockTransport(_catalog)))

    session = _session_for("visitor-7", first)

    assert _session_for("visitor-7", first) is session
    assert _session_for("visitor-7", second) is not session
