from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterable

from . import pricing
from .config import Settings
from .domain import (
    AvailabilityRecord,
    AvailabilityResult,
    AvailabilityStatus,
    BookingSelection,
    Package,
    PackageOption,
    PriceQuote,
    QueryState,
    SlotChoice,
    SlotConfig,
    SlotQuote,
    UnavailableReason,
)
from .cutoff import is_slot_bookable
from .slots import bookable_times, filter_slots, remaining_capacity, slot_cutoff
from .upstream import CatalogClient, UpstreamError

logger = logging.getLogger(__name__)


class BookingClosedError(Exception):
    """The requested slot time is past its booking cutoff."""


_STATUS_REASONS: dict[str, tuple[UnavailableReason, str]] = {
    "SOLD_OUT": (UnavailableReason.SOLD_OUT, "Sold out on the selected date"),
    "NOT_OPERATING": (UnavailableReason.NOT_OPERATING, "Not operating on the selected date"),
}


async def _gather_all(*aws):
    # Unlike plain gather, siblings of a failed call run to completion before the
    # first failure is raised.
    results = await asyncio.gather(*aws, return_exceptions=True)
    for r in results:
        if isinstance(r, BaseException):
            raise r
    return results


def _add_days(d: date, days: int) -> date:
    try:
        return d + timedelta(days=days)
    except OverflowError:
        return date.max


def product_record(records: Iterable[AvailabilityRecord], d: date) -> AvailabilityRecord | None:
    """
    The record that decides product-level status for `d`.

    Records not tied to a package win; a package-annotated record is used only when
    nothing else covers the date.
    """
    covering = [r for r in records if r.covers(d)]
    for r in covering:
        if r.package_id is None:
            return r
    return covering[0] if covering else None


def package_record(records: Iterable[AvailabilityRecord], d: date, package_id: str) -> AvailabilityRecord | None:
    for r in records:
        if r.package_id == package_id and r.covers(d):
            return r
    return None


def next_available_date(records: Iterable[AvailabilityRecord], after: date) -> date | None:
    if after >= date.max:
        return None
    best: date | None = None
    first = after + timedelta(days=1)
    for r in records:
        if r.package_id is not None or r.status != "AVAILABLE":
            continue
        candidate = max(r.start_date, first)
        if candidate > (r.end_date or r.start_date):
            continue
        if best is None or candidate < best:
            best = candidate
    return best


@dataclass(frozen=True)
class AvailabilitySummary:
    days: list[tuple[date, AvailabilityStatus | None]]
    next_available_date: date | None


def summarize_availability(records: list[AvailabilityRecord], start: date, end: date) -> AvailabilitySummary:
    if end < start:
        raise ValueError("end_date must be on or after start_date")
    days: list[tuple[date, AvailabilityStatus | None]] = []
    first_open: date | None = None
    for offset in range((end - start).days + 1):
        d = start + timedelta(days=offset)
        r = product_record(records, d)
        status = r.status if r is not None else None
        days.append((d, status))
        if first_open is None and status == "AVAILABLE":
            first_open = d
    return AvailabilitySummary(days=days, next_available_date=first_open)


class AvailabilityQuery:
    """
    One pass of an availability query through its states.

    Idle -> CheckingProduct -> ResolvingPackages -> Resolved, with Unavailable
    reachable from every non-terminal state. Terminal states are final; a new
    selection starts a new query.
    """

    _TRANSITIONS: dict[QueryState, set[QueryState]] = {
        QueryState.IDLE: {QueryState.CHECKING_PRODUCT, QueryState.UNAVAILABLE},
        QueryState.CHECKING_PRODUCT: {QueryState.RESOLVING_PACKAGES, QueryState.UNAVAILABLE},
        QueryState.RESOLVING_PACKAGES: {QueryState.RESOLVED, QueryState.UNAVAILABLE},
        QueryState.RESOLVED: set(),
        QueryState.UNAVAILABLE: set(),
    }

    def __init__(self, selection: BookingSelection):
        self.selection = selection
        self.state = QueryState.IDLE
        self.history: list[QueryState] = [QueryState.IDLE]

    def advance(self, state: QueryState) -> None:
        if state not in self._TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal availability query transition {self.state.value} -> {state.value}")
        logger.debug("Query %s: %s -> %s", self.selection, self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def unavailable(
        self,
        reason: UnavailableReason,
        message: str,
        next_date: date | None = None,
    ) -> AvailabilityResult:
        self.advance(QueryState.UNAVAILABLE)
        return AvailabilityResult(
            state=self.state,
            selection=self.selection,
            reason=reason,
            message=message,
            next_available_date=next_date,
        )

    def resolved(self, packages: list[PackageOption], default_choice: SlotChoice | None) -> AvailabilityResult:
        self.advance(QueryState.RESOLVED)
        return AvailabilityResult(
            state=self.state,
            selection=self.selection,
            packages=packages,
            default_choice=default_choice,
        )


class AvailabilityOrchestrator:
    """
    Answers "can this product be booked on date D for N adults + M children, and
    with which packages, slots and prices?" for both the admin preview and the
    storefront booking flow.
    """

    def __init__(
        self,
        settings: Settings,
        client: CatalogClient,
        *,
        now: Callable[[], datetime] | None = None,
    ):
        self._settings = settings
        self._client = client
        self._now = now or (lambda: datetime.now(tz=timezone.utc))

    @property
    def settings(self) -> Settings:
        return self._settings

    def now(self) -> datetime:
        return self._now()

    async def check_availability(
        self,
        product_id: str,
        d: date,
        adults: int,
        children: int = 0,
        package_id: str | None = None,
        *,
        include_inactive: bool = False,
    ) -> AvailabilityResult:
        selection = BookingSelection(
            product_id=product_id,
            date=d,
            adults=adults,
            children=children,
            package_id=package_id,
        )
        return await self.resolve(selection, include_inactive=include_inactive)

    async def resolve(self, selection: BookingSelection, *, include_inactive: bool = False) -> AvailabilityResult:
        query = AvailabilityQuery(selection)
        if selection.adults < 1 or selection.children < 0:
            return query.unavailable(UnavailableReason.INVALID_PARTY, "At least one adult is required")

        query.advance(QueryState.CHECKING_PRODUCT)
        d = selection.date
        try:
            product, records = await _gather_all(
                self._client.get_product(selection.product_id),
                self._client.get_product_availability(
                    selection.product_id, d, _add_days(d, self._settings.lookahead_days)
                ),
            )
        except UpstreamError as e:
            logger.warning("Availability lookup failed for product %s on %s: %s", selection.product_id, d, e)
            return query.unavailable(UnavailableReason.UPSTREAM_ERROR, "Availability could not be checked right now")

        record = product_record(records, d)
        upcoming = next_available_date(records, d)
        if record is None:
            return query.unavailable(UnavailableReason.NO_RECORD, "No availability found for the selected date", upcoming)
        if record.status != "AVAILABLE":
            reason, message = _STATUS_REASONS[record.status]
            return query.unavailable(reason, message, upcoming)

        query.advance(QueryState.RESOLVING_PACKAGES)
        if selection.package_id is not None:
            selected = product.find_package(selection.package_id)
            if selected is None:
                return query.unavailable(UnavailableReason.PACKAGE_NOT_FOUND, "Selected package does not exist")
            candidates = [selected]
        else:
            candidates = list(product.packages)

        candidates = [p for p in candidates if self._package_open(p, selection, records, include_inactive)]

        try:
            slot_lists = await _gather_all(*(self._client.get_package_slots(p.package_id, d) for p in candidates))
        except UpstreamError as e:
            logger.warning("Slot lookup failed for product %s on %s: %s", selection.product_id, d, e)
            return query.unavailable(UnavailableReason.UPSTREAM_ERROR, "Availability could not be checked right now")

        now = self._now()
        options: list[PackageOption] = []
        for pkg, slots in zip(candidates, slot_lists):
            seats_record = package_record(records, d, pkg.package_id) or record
            eligible = filter_slots(
                slots,
                d,
                selection.party_size,
                now=now,
                tz=self._settings.tz,
                default_cutoff_hours=self._settings.default_cutoff_hours,
                fallback_record=seats_record,
            )
            if not eligible:
                logger.debug("Package %s has no eligible slots on %s", pkg.package_id, d)
                continue
            options.append(self._price_package(pkg, eligible, selection, seats_record, now))

        if not options:
            if selection.package_id is not None:
                return query.unavailable(
                    UnavailableReason.NO_SLOTS_FOR_PACKAGE, "No time slots for selected package", upcoming
                )
            return query.unavailable(
                UnavailableReason.NO_ELIGIBLE_PACKAGES, "No time slots available for this date", upcoming
            )

        return query.resolved(options, _default_choice(options))

    async def summarize(self, product_id: str, start: date, end: date) -> AvailabilitySummary:
        records = await self._client.get_product_availability(product_id, start, end)
        return summarize_availability(records, start, end)

    async def quote(
        self,
        selection: BookingSelection,
        slot_position: int | None = None,
        time: str | None = None,
    ) -> PriceQuote:
        """
        Price a concrete selection (checkout summary).

        Raises ValueError for bad input, LookupError for unknown packages/slots,
        BookingClosedError when the chosen time is past its cutoff and UpstreamError
        when the catalog cannot be read.
        """
        if selection.package_id is None:
            raise ValueError("package_id is required for a quote")
        if selection.adults < 1 or selection.children < 0:
            raise ValueError("At least one adult is required")

        product = await self._client.get_product(selection.product_id)
        pkg = product.find_package(selection.package_id)
        if pkg is None:
            raise LookupError("Package not found")

        slot: SlotConfig | None = None
        if slot_position is not None:
            slots = await self._client.get_package_slots(pkg.package_id, selection.date)
            slot = next((s for s in slots if s.position == slot_position), None)
            if slot is None:
                raise LookupError("Slot not found")
            if time is not None:
                if time not in slot.times:
                    raise ValueError("time is not offered by this slot")
                cutoff = slot_cutoff(slot, self._settings.default_cutoff_hours)
                check = is_slot_bookable(selection.date, time, cutoff, now=self._now(), tz=self._settings.tz)
                if not check.is_bookable:
                    raise BookingClosedError(check.reason)

        adult, child = pricing.slot_unit_prices(
            pkg, slot, selection.adults, selection.children, self._settings.tier_match_by_count
        )
        return PriceQuote(
            package_id=pkg.package_id,
            currency=pkg.currency,
            pricing_type=pkg.pricing_type,
            adults=selection.adults,
            children=selection.children,
            adult_price=adult,
            child_price=child,
            total=pricing.quote_total(adult, child, selection.adults, selection.children),
            slot_position=slot.position if slot is not None else None,
            time=time if slot is not None else None,
        )

    def _package_open(
        self,
        pkg: Package,
        selection: BookingSelection,
        records: list[AvailabilityRecord],
        include_inactive: bool,
    ) -> bool:
        if not pkg.is_active and not include_inactive:
            return False
        if not pkg.is_valid_on(selection.date):
            return False
        pkg_record = package_record(records, selection.date, pkg.package_id)
        if pkg_record is not None and pkg_record.status != "AVAILABLE":
            return False
        if selection.children > 0 and not pkg.allows_children():
            return False
        if pkg.max_people is not None and selection.party_size > pkg.max_people:
            return False
        return True

    def _price_package(
        self,
        pkg: Package,
        slots: list[SlotConfig],
        selection: BookingSelection,
        seats_record: AvailabilityRecord | None,
        now: datetime,
    ) -> PackageOption:
        quotes: list[SlotQuote] = []
        for slot in slots:
            adult, child = pricing.slot_unit_prices(
                pkg, slot, selection.adults, selection.children, self._settings.tier_match_by_count
            )
            quotes.append(
                SlotQuote(
                    position=slot.position,
                    slot_id=slot.slot_id,
                    times=slot.times,
                    bookable_times=tuple(
                        bookable_times(
                            slot,
                            selection.date,
                            now=now,
                            tz=self._settings.tz,
                            default_cutoff_hours=self._settings.default_cutoff_hours,
                        )
                    ),
                    adult_price=adult,
                    child_price=child,
                    total_price=pricing.quote_total(adult, child, selection.adults, selection.children),
                    remaining=remaining_capacity(slot, seats_record),
                )
            )
        return PackageOption(
            package_id=pkg.package_id,
            name=pkg.name,
            currency=pkg.currency,
            pricing_type=pkg.pricing_type,
            slots=quotes,
        )


def _default_choice(options: list[PackageOption]) -> SlotChoice | None:
    for opt in options:
        for q in opt.slots:
            if q.bookable_times:
                return SlotChoice(package_id=opt.package_id, position=q.position, time=q.bookable_times[0], slot_id=q.slot_id)
    return None


class QuerySession:
    """
    Per-visitor availability state with last-request-wins semantics.

    Every `submit` supersedes the previous one. Input changes are debounced, and a
    result that arrives after a newer submission (or `invalidate`) is dropped
    instead of replacing the newer selection's result.
    """

    def __init__(self, orchestrator: AvailabilityOrchestrator, debounce_seconds: float | None = None):
        self._orchestrator = orchestrator
        self._debounce = orchestrator.settings.debounce_seconds if debounce_seconds is None else debounce_seconds
        self._generation = 0
        self.selection: BookingSelection | None = None
        self.latest: AvailabilityResult | None = None

    @property
    def generation(self) -> int:
        return self._generation

    def invalidate(self) -> int:
        self._generation += 1
        self.latest = None
        return self._generation

    def is_current(self, selection: BookingSelection) -> bool:
        return self.latest is not None and self.latest.selection == selection

    async def submit(self, selection: BookingSelection, *, include_inactive: bool = False) -> AvailabilityResult | None:
        generation = self.invalidate()
        self.selection = selection

        if self._debounce > 0:
            await asyncio.sleep(self._debounce)
            if generation != self._generation:
                logger.debug("Query for %s superseded before it was sent", selection)
                return None

        result = await self._orchestrator.resolve(selection, include_inactive=include_inactive)
        if generation != self._generation:
            logger.debug("Discarding stale availability result for %s", selection)
            return None

        self.latest = result
        return result
