from __future__ import annotations

import logging
import time
from datetime import date
from typing import Any

import httpx

from . import catalog, domain
from .config import Settings

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """Catalog backend unreachable, non-2xx, or returned something that is not JSON."""


class CatalogClient:
    """
    Read-only client for the catalog backend (products, availability, package slots).

    Products are cached briefly; product pages fire many availability queries for
    the same product while a visitor changes dates and party size.
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport
        self._product_cache: dict[str, tuple[domain.Product, float]] = {}  # product_id -> (product, expires_at_epoch_s)

    async def _get_json(self, path: str, params: dict[str, str] | None = None) -> Any:
        url = f"{self._settings.catalog_api_url}{path}"
        try:
            # Ignore HTTP(S)_PROXY env vars for internal service calls.
            async with httpx.AsyncClient(
                timeout=self._settings.request_timeout,
                trust_env=False,
                transport=self._transport,
            ) as client:
                r = await client.get(url, params=params, headers={"accept": "application/json"})
        except httpx.HTTPError as e:
            raise UpstreamError(f"GET {path} failed: {e}") from e

        if r.status_code >= 400:
            raise UpstreamError(f"GET {path} returned {r.status_code}")
        try:
            return r.json()
        except ValueError as e:
            raise UpstreamError(f"GET {path} returned invalid JSON") from e

    async def get_product(self, product_id: str) -> domain.Product:
        now = time.time()
        cached = self._product_cache.get(product_id)
        if cached and cached[1] > now:
            return cached[0]

        data = await self._get_json(f"/products/{product_id}")
        if not isinstance(data, dict) or "id" not in data:
            raise UpstreamError(f"Product {product_id} payload is not an object")
        try:
            product = catalog.parse_product(data)
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(f"Product {product_id} payload is malformed: {e}") from e

        if self._settings.product_cache_ttl > 0:
            self._product_cache[product_id] = (product, now + self._settings.product_cache_ttl)
        return product

    async def get_product_availability(self, product_id: str, start: date, end: date) -> list[domain.AvailabilityRecord]:
        data = await self._get_json(
            f"/availability/product/{product_id}",
            params={"startDate": start.isoformat(), "endDate": end.isoformat()},
        )
        return catalog.parse_records(data)

    async def get_package_slots(self, package_id: str, d: date) -> list[domain.SlotConfig]:
        data = await self._get_json(f"/availability/package/{package_id}/slots", params={"date": d.isoformat()})
        raw_slots = data.get("slots") if isinstance(data, dict) else data
        return catalog.parse_slots(raw_slots)

    def clear_cache(self) -> None:
        self._product_cache.clear()
