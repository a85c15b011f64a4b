from __future__ import annotations

import logging
from datetime import date
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from pydantic import BaseModel, Field

from . import domain, events, pricing
from .config import Settings
from .cutoff import is_slot_bookable
from .orchestrator import AvailabilityOrchestrator, BookingClosedError, QuerySession
from .upstream import CatalogClient, UpstreamError

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Tour Availability Service",
    version="0.1.0",
    description="Availability, time-slot and price resolution for tour/experience products (admin preview and storefront).",
)

_SESSIONS: dict[tuple[AvailabilityOrchestrator, str], QuerySession] = {}  # (orchestrator, X-Booking-Session) -> session
_MAX_SESSIONS = 1000


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache(maxsize=1)
def _default_orchestrator() -> AvailabilityOrchestrator:
    settings = get_settings()
    return AvailabilityOrchestrator(settings, CatalogClient(settings))


def get_orchestrator() -> AvailabilityOrchestrator:
    return _default_orchestrator()


def _session_for(key: str, orchestrator: AvailabilityOrchestrator) -> QuerySession:
    # Sessions are bound to their orchestrator; a swapped dependency gets fresh ones.
    s = _SESSIONS.get((orchestrator, key))
    if s is None:
        if len(_SESSIONS) >= _MAX_SESSIONS:
            _SESSIONS.pop(next(iter(_SESSIONS)))
        s = QuerySession(orchestrator)
        _SESSIONS[(orchestrator, key)] = s
    return s


class SlotQuoteOut(BaseModel):
    position: int
    slot_id: str | None = None
    times: list[str]
    bookable_times: list[str]
    adult_price: float
    child_price: float
    total_price: float
    remaining: int | None = None


class PackageOptionOut(BaseModel):
    package_id: str
    name: str
    currency: str
    pricing_type: domain.PricingType
    slots: list[SlotQuoteOut]


class SlotChoiceOut(BaseModel):
    package_id: str
    position: int
    slot_id: str | None = None
    time: str


class AvailabilityOut(BaseModel):
    product_id: str
    date: date
    adults: int
    children: int
    package_id: str | None = None
    state: domain.QueryState
    available: bool
    reason: domain.UnavailableReason | None = None
    message: str | None = None
    packages: list[PackageOptionOut] = Field(default_factory=list)
    default_choice: SlotChoiceOut | None = None
    next_available_date: date | None = None


class SummaryDayOut(BaseModel):
    date: date
    status: domain.AvailabilityStatus | None = None


class SummaryOut(BaseModel):
    product_id: str
    start_date: date
    end_date: date
    days: list[SummaryDayOut]
    next_available_date: date | None = None


class EffectivePriceIn(BaseModel):
    base_price: float = Field(ge=0)
    discount_type: domain.DiscountType = "none"
    discount_value: float = Field(default=0, ge=0)


class EffectivePriceOut(BaseModel):
    base_price: float
    effective_price: float


class QuoteIn(BaseModel):
    product_id: str = Field(min_length=1)
    package_id: str = Field(min_length=1)
    date: date
    adults: int = Field(default=1, ge=1)
    children: int = Field(default=0, ge=0)
    slot_position: int | None = Field(default=None, ge=0, description="Index of the slot within the package's slot list")
    time: str | None = Field(default=None, description="Selected start time, as listed by the slot")


class QuoteOut(BaseModel):
    package_id: str
    currency: str
    pricing_type: domain.PricingType
    adults: int
    children: int
    adult_price: float
    child_price: float
    total: float
    slot_position: int | None = None
    time: str | None = None


class BookabilityOut(BaseModel):
    is_bookable: bool
    reason: str | None = None


def _money(x: float) -> float:
    return round(float(x), 2)


def _availability_out(result: domain.AvailabilityResult) -> AvailabilityOut:
    sel = result.selection
    choice = result.default_choice
    return AvailabilityOut(
        product_id=sel.product_id,
        date=sel.date,
        adults=sel.adults,
        children=sel.children,
        package_id=sel.package_id,
        state=result.state,
        available=result.is_available,
        reason=result.reason,
        message=result.message,
        packages=[
            PackageOptionOut(
                package_id=p.package_id,
                name=p.name,
                currency=p.currency,
                pricing_type=p.pricing_type,
                slots=[
                    SlotQuoteOut(
                        position=q.position,
                        slot_id=q.slot_id,
                        times=list(q.times),
                        bookable_times=list(q.bookable_times),
                        adult_price=_money(q.adult_price),
                        child_price=_money(q.child_price),
                        total_price=_money(q.total_price),
                        remaining=q.remaining,
                    )
                    for q in p.slots
                ],
            )
            for p in result.packages
        ],
        default_choice=(
            SlotChoiceOut(package_id=choice.package_id, position=choice.position, slot_id=choice.slot_id, time=choice.time)
            if choice
            else None
        ),
        next_available_date=result.next_available_date,
    )


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/products/{product_id}/availability", response_model=AvailabilityOut)
async def check_availability(
    product_id: str,
    on: Annotated[date, Query(alias="date")],
    adults: Annotated[int, Query(ge=0)] = 2,
    children: Annotated[int, Query(ge=0)] = 0,
    package_id: str | None = None,
    preview: bool = False,
    x_booking_session: Annotated[str | None, Header()] = None,
    orchestrator: AvailabilityOrchestrator = Depends(get_orchestrator),
):
    selection = domain.BookingSelection(
        product_id=product_id,
        date=on,
        adults=adults,
        children=children,
        package_id=(package_id or "").strip() or None,
    )

    key = (x_booking_session or "").strip()
    if key:
        result = await _session_for(key, orchestrator).submit(selection, include_inactive=preview)
        if result is None:
            raise HTTPException(status_code=409, detail="Superseded by a newer availability query")
    else:
        result = await orchestrator.resolve(selection, include_inactive=preview)

    await events.publish_availability(orchestrator.settings, result)
    return _availability_out(result)


@app.get("/products/{product_id}/availability-summary", response_model=SummaryOut)
async def availability_summary(
    product_id: str,
    start_date: date,
    end_date: date,
    orchestrator: AvailabilityOrchestrator = Depends(get_orchestrator),
):
    if (end_date - start_date).days > 366:
        raise HTTPException(status_code=400, detail="Date range must not exceed one year")
    try:
        summary = await orchestrator.summarize(product_id, start_date, end_date)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamError as e:
        logger.warning("Availability summary failed for product %s: %s", product_id, e)
        raise HTTPException(status_code=502, detail="Catalog service unavailable")
    return SummaryOut(
        product_id=product_id,
        start_date=start_date,
        end_date=end_date,
        days=[SummaryDayOut(date=d, status=s) for d, s in summary.days],
        next_available_date=summary.next_available_date,
    )


@app.post("/pricing/effective-price", response_model=EffectivePriceOut)
def effective_price(payload: EffectivePriceIn):
    if payload.discount_type == "percentage" and payload.discount_value > 100:
        raise HTTPException(status_code=400, detail="Percentage discount must be between 0 and 100")
    price = pricing.effective_price(payload.base_price, payload.discount_type, payload.discount_value)
    return EffectivePriceOut(base_price=payload.base_price, effective_price=_money(price))


@app.post("/quote", response_model=QuoteOut)
async def create_quote(
    payload: QuoteIn,
    orchestrator: AvailabilityOrchestrator = Depends(get_orchestrator),
):
    selection = domain.BookingSelection(
        product_id=payload.product_id,
        date=payload.date,
        adults=payload.adults,
        children=payload.children,
        package_id=payload.package_id,
    )
    try:
        q = await orchestrator.quote(selection, slot_position=payload.slot_position, time=payload.time)
    except BookingClosedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamError as e:
        logger.warning("Quote failed for product %s: %s", payload.product_id, e)
        raise HTTPException(status_code=502, detail="Catalog service unavailable")

    return QuoteOut(
        package_id=q.package_id,
        currency=q.currency,
        pricing_type=q.pricing_type,
        adults=q.adults,
        children=q.children,
        adult_price=_money(q.adult_price),
        child_price=_money(q.child_price),
        total=_money(q.total),
        slot_position=q.slot_position,
        time=q.time,
    )


@app.get("/slots/bookable", response_model=BookabilityOut)
def slot_bookable(
    on: Annotated[str, Query(alias="date")],
    time: str,
    cutoff_hours: Annotated[float | None, Query(ge=0)] = None,
    orchestrator: AvailabilityOrchestrator = Depends(get_orchestrator),
):
    settings = orchestrator.settings
    check = is_slot_bookable(
        on,
        time,
        cutoff_hours if cutoff_hours is not None else settings.default_cutoff_hours,
        now=orchestrator.now(),
        tz=settings.tz,
    )
    return BookabilityOut(is_bookable=check.is_bookable, reason=check.reason)
