from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo

logger = logging.getLogger(__name__)

DEFAULT_CUTOFF_HOURS = 24

_TIME_FORMATS = ("%I:%M %p", "%I:%M%p", "%I %p", "%I%p", "%H:%M", "%H:%M:%S", "%I:%M:%S %p")


@dataclass(frozen=True)
class Bookability:
    is_bookable: bool
    reason: str | None = None


def parse_date(value: str | date) -> date:
    """
    Parse a booking date. Accepts ISO `yyyy-MM-dd` and the storefront's `MM/dd/yyyy`.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = (value or "").strip()
    if "/" in s:
        return datetime.strptime(s, "%m/%d/%Y").date()
    return date.fromisoformat(s[:10])


def parse_time_literal(value: str) -> time:
    """
    Parse a display time such as "10:00 AM", "9am", "14:30" or "14:30:00".
    """
    s = " ".join((value or "").strip().upper().replace(".", "").split())
    for fmt in _TIME_FORMATS:
        try:
            return datetime.strptime(s, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Unrecognised time literal: {value!r}")


def slot_start(d: date, t: time, tz: tzinfo | None = None) -> datetime:
    return datetime.combine(d, t, tzinfo=tz or timezone.utc)


def is_slot_bookable(
    date_iso: str | date,
    time_literal: str,
    cutoff_hours: float | None = DEFAULT_CUTOFF_HOURS,
    *,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> Bookability:
    """
    Whether a slot can still be booked: `now` must be strictly before
    slot start minus `cutoff_hours`.

    A missing or zero cutoff means the 24 hour default.

    Never raises. Unparsable dates or times, and instants outside the
    representable range, are reported as not bookable.
    """
    hours = max(float(cutoff_hours), 0.0) if cutoff_hours else DEFAULT_CUTOFF_HOURS

    try:
        start = slot_start(parse_date(date_iso), parse_time_literal(time_literal), tz)
        closes_at = start - timedelta(hours=hours)
    except (TypeError, ValueError, OverflowError) as e:
        logger.debug("Cannot evaluate cutoff for %r %r: %s", date_iso, time_literal, e)
        return Bookability(is_bookable=False, reason="Invalid slot date or time")

    current = now or datetime.now(tz=timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=start.tzinfo)

    if current < closes_at:
        return Bookability(is_bookable=True)

    hours_until_slot = math.ceil((start - current).total_seconds() / 3600)
    if hours_until_slot <= 0:
        return Bookability(is_bookable=False, reason="This tour has already started or passed")

    shown = int(hours) if float(hours).is_integer() else hours
    return Bookability(
        is_bookable=False,
        reason=f"Booking closed. Must book at least {shown} hours before tour time",
    )
