from __future__ import annotations

import logging
from datetime import date, datetime, tzinfo
from typing import Iterable

from .cutoff import DEFAULT_CUTOFF_HOURS, is_slot_bookable
from .domain import WEEKDAYS, AvailabilityRecord, SlotConfig

logger = logging.getLogger(__name__)

_DAY_ALIASES: dict[str, str] = {}
for _name in WEEKDAYS:
    _DAY_ALIASES[_name.lower()] = _name
    _DAY_ALIASES[_name[:3].lower()] = _name


def weekday_name(d: date) -> str:
    # Not strftime("%A"): that follows the process locale.
    return WEEKDAYS[d.weekday()]


def normalize_day(value: str) -> str | None:
    return _DAY_ALIASES.get((value or "").strip().lower())


def runs_on(slot: SlotConfig, d: date) -> bool:
    target = weekday_name(d)
    return any(normalize_day(day) == target for day in slot.days)


def slot_cutoff(slot: SlotConfig, default_cutoff_hours: float = DEFAULT_CUTOFF_HOURS) -> float:
    # A slot saved with cutoff 0 is treated as having none.
    return slot.cutoff_hours or default_cutoff_hours


def bookable_times(
    slot: SlotConfig,
    d: date,
    *,
    now: datetime | None = None,
    tz: tzinfo | None = None,
    default_cutoff_hours: float = DEFAULT_CUTOFF_HOURS,
) -> list[str]:
    cutoff = slot_cutoff(slot, default_cutoff_hours)
    return [t for t in slot.times if is_slot_bookable(d, t, cutoff, now=now, tz=tz).is_bookable]


def remaining_capacity(slot: SlotConfig, record: AvailabilityRecord | None = None) -> int | None:
    """
    Seats left for a slot, or None when no seat count is known.

    Slot-level counts win over the availability record of the package/product.
    """
    if slot.available is not None:
        return slot.available - (slot.booked or 0)
    if record is not None and record.available is not None:
        return record.available - (record.booked or 0)
    return None


def filter_slots(
    slots: Iterable[SlotConfig],
    d: date,
    party_size: int,
    *,
    now: datetime | None = None,
    tz: tzinfo | None = None,
    default_cutoff_hours: float = DEFAULT_CUTOFF_HOURS,
    fallback_record: AvailabilityRecord | None = None,
) -> list[SlotConfig]:
    """
    Slots of a package that can take `party_size` people on date `d`.

    A slot is kept when it runs on the weekday of `d`, at least one of its times is
    still before its booking cutoff, and its remaining capacity fits the party.
    Input order is preserved.
    """
    kept: list[SlotConfig] = []
    for slot in slots:
        if not slot.times or not slot.days:
            continue
        if not runs_on(slot, d):
            continue
        if not bookable_times(slot, d, now=now, tz=tz, default_cutoff_hours=default_cutoff_hours):
            continue
        remaining = remaining_capacity(slot, fallback_record)
        if remaining is not None and remaining < party_size:
            logger.debug("Slot %s excluded: %s seats left for party of %s", slot.position, remaining, party_size)
            continue
        kept.append(slot)
    return kept

