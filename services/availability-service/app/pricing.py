from __future__ import annotations

from typing import Sequence

from .domain import Package, SlotConfig, Tier

# Child price when a slot has no child tier, as a share of the package's effective base price.
CHILD_PRICE_RATIO = 0.5


def effective_price(base_price: float, discount_type: str | None, discount_value: float | None) -> float:
    """
    Post-discount price for a single unit.

    - none: base price unchanged, whatever the discount value
    - percentage: base * (1 - value/100), never below 0. The value is expected in
      [0, 100]; range validation belongs to the admin form, not here.
    - fixed: base - value, never below 0
    """
    dtype = (discount_type or "none").strip().lower()
    if dtype == "none" or discount_value is None:
        return base_price
    if dtype == "percentage":
        return max(base_price * (1 - (discount_value / 100)), 0.0)
    if dtype == "fixed":
        return max(base_price - discount_value, 0.0)
    return base_price


def select_tier(tiers: Sequence[Tier], count: int, match_by_count: bool = False) -> Tier | None:
    if not tiers:
        return None
    if not match_by_count:
        # Tier bounds are not consulted: the first configured tier prices the slot.
        return tiers[0]
    for tier in tiers:
        if tier.covers(count):
            return tier
    return None


def slot_unit_prices(
    package: Package,
    slot: SlotConfig | None,
    adults: int,
    children: int,
    match_by_count: bool = False,
) -> tuple[float, float]:
    """
    Returns (adult_price, child_price) per head for a package/slot pair.

    The package discount is applied on top of the selected tier price when a tier
    exists, otherwise on top of the package base price. Without a child tier,
    children pay half the discounted package base price, even when an adult tier
    sets the adult price.
    """
    adult_tier = select_tier(slot.adult_tiers, adults, match_by_count) if slot else None
    adult_base = adult_tier.price if adult_tier is not None else package.base_price
    adult = effective_price(adult_base, package.discount_type, package.discount_value)

    child_tier = select_tier(slot.child_tiers, children, match_by_count) if slot else None
    if child_tier is not None:
        child = effective_price(child_tier.price, package.discount_type, package.discount_value)
    else:
        base = effective_price(package.base_price, package.discount_type, package.discount_value)
        child = base * CHILD_PRICE_RATIO

    return adult, child


def quote_total(adult_price: float, child_price: float, adults: int, children: int) -> float:
    # pricing_type only labels the price ("per group"); the total is always per head.
    if adults < 0 or children < 0:
        raise ValueError("Party counts must be >= 0")
    return max(adults * adult_price + children * child_price, 0.0)
