from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

import aio_pika

from .config import Settings
from .domain import AvailabilityResult

logger = logging.getLogger(__name__)


def availability_payload(result: AvailabilityResult) -> dict[str, Any]:
    sel = result.selection
    return {
        "product_id": sel.product_id,
        "date": sel.date.isoformat(),
        "adults": sel.adults,
        "children": sel.children,
        "package_id": sel.package_id,
        "state": result.state.value,
        "reason": result.reason.value if result.reason else None,
        "package_ids": [p.package_id for p in result.packages],
    }


async def publish(settings: Settings, routing_key: str, payload: dict[str, Any]) -> None:
    """
    Publish a domain event.

    Best-effort: RabbitMQ is often not running in local/dev environments, so
    failures are logged and do not break availability queries.
    Set EVENTS_STRICT=1 to make failures fatal.
    """
    if not settings.events_enabled:
        return
    try:
        conn = await aio_pika.connect_robust(settings.rabbitmq_url)
        try:
            channel = await conn.channel()
            exchange = await channel.declare_exchange(settings.events_exchange, aio_pika.ExchangeType.TOPIC, durable=True)

            body = json.dumps(
                {
                    "type": routing_key,
                    "time": datetime.now(tz=timezone.utc).isoformat(),
                    "data": payload,
                }
            ).encode("utf-8")

            msg = aio_pika.Message(body=body, content_type="application/json", delivery_mode=aio_pika.DeliveryMode.PERSISTENT)
            await exchange.publish(msg, routing_key=routing_key)
        finally:
            await conn.close()
    except Exception as e:
        if settings.events_strict:
            raise
        logger.warning("Event publish failed (routing_key=%s): %s", routing_key, e)


async def publish_availability(settings: Settings, result: AvailabilityResult) -> None:
    key = "availability.resolved" if result.is_available else "availability.unavailable"
    await publish(settings, key, availability_payload(result))
