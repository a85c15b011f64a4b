from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Literal

AvailabilityStatus = Literal["AVAILABLE", "SOLD_OUT", "NOT_OPERATING"]
DiscountType = Literal["none", "percentage", "fixed"]
PricingType = Literal["per_person", "per_group"]
ProductType = Literal["TOUR", "EXPERIENCE"]

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


@dataclass(frozen=True)
class Tier:
    """
    Capacity-banded price override for a slot (e.g. "1-10 people: 1200").

    Bounds are inclusive on both ends.
    """

    min: int
    max: int
    price: float

    def covers(self, count: int) -> bool:
        return self.min <= count <= self.max


@dataclass(frozen=True)
class AgeGroup:
    enabled: bool
    min_age: int | None = None
    max_age: int | None = None


@dataclass(frozen=True)
class SlotConfig:
    """
    Recurring weekly time-slot rule attached to a package.

    Slots have no persisted identity in the admin form, so they are addressed by
    `position` within the package list. `slot_id` is kept when the backend sends one.

    `available`/`booked` are the server-resolved seat counts for the slot; None when
    the backend did not annotate the slot (the availability record applies instead).
    """

    position: int
    times: tuple[str, ...]
    days: frozenset[str]
    adult_tiers: tuple[Tier, ...] = ()
    child_tiers: tuple[Tier, ...] = ()
    cutoff_hours: float | None = None  # None -> default cutoff
    slot_id: str | None = None
    available: int | None = None
    booked: int | None = None


@dataclass(frozen=True)
class Package:
    package_id: str
    name: str
    base_price: float
    currency: str = "INR"
    discount_type: DiscountType = "none"
    discount_value: float = 0.0
    pricing_type: PricingType = "per_person"
    max_people: int | None = None
    age_groups: dict[str, AgeGroup] = field(default_factory=dict)
    is_active: bool = True
    # Validity window. If one bound is missing it is treated as open-ended.
    start_date: date | None = None
    end_date: date | None = None

    def is_valid_on(self, d: date) -> bool:
        if self.start_date is not None and d < self.start_date:
            return False
        if self.end_date is not None and d > self.end_date:
            return False
        return True

    def allows_children(self) -> bool:
        group = self.age_groups.get("child")
        # Packages that never configured age groups take children.
        return group is None or group.enabled


@dataclass(frozen=True)
class Product:
    product_id: str
    title: str
    product_type: ProductType = "TOUR"
    capacity: int | None = None
    duration: str | None = None
    packages: tuple[Package, ...] = ()
    availability_status: AvailabilityStatus | None = None
    next_available_date: date | None = None

    def find_package(self, package_id: str) -> Package | None:
        for pkg in self.packages:
            if pkg.package_id == package_id:
                return pkg
        return None


@dataclass(frozen=True)
class AvailabilityRecord:
    """
    Server-owned product (or package) status for a date or an inclusive date range.
    """

    status: AvailabilityStatus
    start_date: date
    end_date: date | None = None
    available: int | None = None
    booked: int = 0
    package_id: str | None = None

    def covers(self, d: date) -> bool:
        end = self.end_date or self.start_date
        return self.start_date <= d <= end


@dataclass(frozen=True)
class BookingSelection:
    product_id: str
    date: date
    adults: int
    children: int = 0
    package_id: str | None = None

    @property
    def party_size(self) -> int:
        return self.adults + self.children


class QueryState(str, Enum):
    IDLE = "idle"
    CHECKING_PRODUCT = "checking_product"
    RESOLVING_PACKAGES = "resolving_packages"
    UNAVAILABLE = "unavailable"
    RESOLVED = "resolved"


class UnavailableReason(str, Enum):
    SOLD_OUT = "sold_out"
    NOT_OPERATING = "not_operating"
    NO_RECORD = "no_record"
    NO_SLOTS_FOR_PACKAGE = "no_slots_for_package"
    NO_ELIGIBLE_PACKAGES = "no_eligible_packages"
    PACKAGE_NOT_FOUND = "package_not_found"
    INVALID_PARTY = "invalid_party"
    UPSTREAM_ERROR = "upstream_error"


@dataclass(frozen=True)
class SlotQuote:
    position: int
    times: tuple[str, ...]
    bookable_times: tuple[str, ...]
    adult_price: float
    child_price: float
    total_price: float
    remaining: int | None = None
    slot_id: str | None = None


@dataclass(frozen=True)
class PackageOption:
    package_id: str
    name: str
    currency: str
    pricing_type: PricingType
    slots: list[SlotQuote]


@dataclass(frozen=True)
class SlotChoice:
    package_id: str
    position: int
    time: str
    slot_id: str | None = None


@dataclass(frozen=True)
class AvailabilityResult:
    state: QueryState
    selection: BookingSelection
    reason: UnavailableReason | None = None
    message: str | None = None
    packages: list[PackageOption] = field(default_factory=list)
    default_choice: SlotChoice | None = None
    next_available_date: date | None = None

    @property
    def is_available(self) -> bool:
        return self.state is QueryState.RESOLVED


@dataclass(frozen=True)
class PriceQuote:
    package_id: str
    currency: str
    pricing_type: PricingType
    adults: int
    children: int
    adult_price: float
    child_price: float
    total: float
    slot_position: int | None = None
    time: str | None = None
