"""
Catalog payloads (camelCase JSON from the catalog backend) -> domain objects.

Parsing is per item: a malformed slot or availability record is logged and
dropped, the rest of the payload still loads.
"""

from __future__ import annotations

import logging
import math
from datetime import date
from typing import Any

from . import domain
from .cutoff import parse_date

logger = logging.getLogger(__name__)

_STATUSES = {"AVAILABLE", "SOLD_OUT", "NOT_OPERATING"}
_DISCOUNT_TYPES = {"none", "percentage", "fixed"}
_MAX_CUTOFF_HOURS = 24 * 366


def _opt_date(raw: Any) -> date | None:
    if not raw:
        return None
    return parse_date(str(raw))


def _opt_int(raw: Any) -> int | None:
    if raw is None or raw == "":
        return None
    return int(raw)


def _opt_float(raw: Any) -> float | None:
    if raw is None or raw == "":
        return None
    return float(raw)


def _cutoff_hours(raw: Any) -> float | None:
    hours = _opt_float(raw)
    if hours is not None and not (math.isfinite(hours) and 0 <= hours <= _MAX_CUTOFF_HOURS):
        raise ValueError(f"cutoffTime out of range: {raw!r}")
    return hours


def _tiers(raw: Any) -> tuple[domain.Tier, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ValueError("tiers must be a list")
    return tuple(domain.Tier(min=int(t["min"]), max=int(t["max"]), price=float(t["price"])) for t in raw)


def parse_slot(raw: dict, position: int) -> domain.SlotConfig:
    # Older slot payloads use "Time" for the list of start times.
    times = raw.get("times", raw.get("Time"))
    days = raw.get("days")
    if not isinstance(times, list) or not isinstance(days, list):
        raise ValueError("slot times and days must be lists")

    return domain.SlotConfig(
        position=position,
        slot_id=str(raw["id"]) if raw.get("id") is not None else None,
        times=tuple(str(t).strip() for t in times if str(t).strip()),
        days=frozenset(str(d).strip() for d in days if str(d).strip()),
        adult_tiers=_tiers(raw.get("adultTiers")),
        child_tiers=_tiers(raw.get("childTiers")),
        cutoff_hours=_cutoff_hours(raw.get("cutoffTime")),
        available=_opt_int(raw.get("available")),
        booked=_opt_int(raw.get("booked")),
    )


def parse_slots(raw_slots: Any) -> list[domain.SlotConfig]:
    if not isinstance(raw_slots, list):
        logger.warning("Ignoring slot payload of type %s", type(raw_slots).__name__)
        return []

    slots: list[domain.SlotConfig] = []
    for i, raw in enumerate(raw_slots):
        try:
            slots.append(parse_slot(raw, position=i))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Dropping malformed slot #%s: %s", i, e)
    return slots


def _age_groups(raw: Any) -> dict[str, domain.AgeGroup]:
    if not isinstance(raw, dict):
        return {}
    groups: dict[str, domain.AgeGroup] = {}
    for name, g in raw.items():
        if not isinstance(g, dict):
            continue
        groups[str(name).lower()] = domain.AgeGroup(
            enabled=bool(g.get("enabled", False)),
            min_age=_opt_int(g.get("min")),
            max_age=_opt_int(g.get("max")),
        )
    return groups


def parse_package(raw: dict) -> domain.Package:
    dtype = str(raw.get("discountType") or "none").strip().lower()
    if dtype not in _DISCOUNT_TYPES:
        dtype = "none"
    # isPerGroup is the storefront's flag for the same thing.
    pricing_type = "per_group" if (raw.get("pricingType") == "per_group" or raw.get("isPerGroup")) else "per_person"

    return domain.Package(
        package_id=str(raw["id"]),
        name=str(raw.get("name") or ""),
        base_price=float(raw.get("basePrice") or 0),
        currency=str(raw.get("currency") or "INR").strip().upper(),
        discount_type=dtype,
        discount_value=float(raw.get("discountValue") or 0),
        pricing_type=pricing_type,
        max_people=_opt_int(raw.get("maxPeople")),
        age_groups=_age_groups(raw.get("ageGroups")),
        is_active=bool(raw.get("isActive", True)),
        start_date=_opt_date(raw.get("startDate")),
        end_date=_opt_date(raw.get("endDate")),
    )


def parse_product(raw: dict) -> domain.Product:
    packages: list[domain.Package] = []
    for i, p in enumerate(raw.get("packages") or []):
        try:
            packages.append(parse_package(p))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Dropping malformed package #%s of product %s: %s", i, raw.get("id"), e)

    status = raw.get("availabilityStatus")
    ptype = str(raw.get("type") or "TOUR").upper()
    return domain.Product(
        product_id=str(raw["id"]),
        title=str(raw.get("title") or ""),
        product_type="EXPERIENCE" if ptype == "EXPERIENCE" else "TOUR",
        capacity=_opt_int(raw.get("capacity")),
        duration=str(raw["duration"]) if raw.get("duration") is not None else None,
        packages=tuple(packages),
        availability_status=status if status in _STATUSES else None,
        next_available_date=_opt_date(raw.get("nextAvailableDate")),
    )


def parse_record(raw: dict) -> domain.AvailabilityRecord:
    status = str(raw.get("status") or "").upper()
    if status not in _STATUSES:
        raise ValueError(f"unknown availability status {raw.get('status')!r}")
    start = _opt_date(raw.get("startDate") or raw.get("date"))
    if start is None:
        raise ValueError("availability record has no date")

    return domain.AvailabilityRecord(
        status=status,
        start_date=start,
        end_date=_opt_date(raw.get("endDate")),
        available=_opt_int(raw.get("available")),
        booked=_opt_int(raw.get("booked")) or 0,
        package_id=str(raw["packageId"]) if raw.get("packageId") else None,
    )


def parse_records(payload: Any) -> list[domain.AvailabilityRecord]:
    raw_records = payload.get("availability") if isinstance(payload, dict) else payload
    if not isinstance(raw_records, list):
        logger.warning("Ignoring availability payload of type %s", type(raw_records).__name__)
        return []

    records: list[domain.AvailabilityRecord] = []
    for i, raw in enumerate(raw_records):
        try:
            records.append(parse_record(raw))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Dropping malformed availability record #%s: %s", i, e)
    return records
