"""Composition of long-lived objects.

`create_app_context()` builds everything that must exist once per process
(HTTP clients and their breakers, the Mongo client, the Kafka producer) and
wires the adapters and the use case on top. The FastAPI app keeps the
result on `app.state.context`; nothing here is a module-level singleton.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from pymongo import MongoClient

from . import config
from .audit_log import AuditLogRepository, get_audit_collection
from .booking_adapter import BookingAdapter
from .http_client import HttpClient
from .loyalty_adapter import LoyaltyAdapter
from .process_purchase import ProcessPurchaseUseCase
from .purchase_queue import PurchaseQueue, create_producer

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    loyalty: Any
    process_purchase: ProcessPurchaseUseCase
    webhook_secret: str = ""
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def close(self) -> None:
        for close in self.closers:
            await close()


def _http_client(base_url: str) -> HttpClient:
    return HttpClient(
        base_url=base_url,
        timeout=config.HTTP_TIMEOUT_SECONDS,
        max_retries=config.HTTP_MAX_RETRIES,
        error_threshold_percent=config.CIRCUIT_ERROR_THRESHOLD_PERCENT,
        reset_timeout=config.CIRCUIT_RESET_TIMEOUT_SECONDS,
        rolling_window=config.CIRCUIT_ROLLING_WINDOW_SECONDS,
    )


def create_app_context() -> AppContext:
    """Connect to the backing services and wire the use case."""
    loyalty_http = _http_client(config.LOYALTY_API_BASE_URL)
    booking_http = _http_client(config.BOOKING_API_BASE_URL)

    loyalty = LoyaltyAdapter(loyalty_http, config.LOYALTY_API_TOKEN)
    booking = BookingAdapter(booking_http, config.BOOKING_API_TOKEN)

    mongo = MongoClient(config.MONGO_URI)
    audit_log = AuditLogRepository(
        get_audit_collection(mongo, config.MONGO_DB, config.MONGO_AUDIT_COLLECTION)
    )

    producer = create_producer(config.KAFKA_BOOTSTRAP_SERVERS)
    queue = PurchaseQueue(
        producer,
        config.KAFKA_TOPIC,
        mongo[config.MONGO_DB][config.MONGO_JOBS_COLLECTION],
        flush_timeout=config.KAFKA_FLUSH_TIMEOUT_SECONDS,
    )

    async def close_backends() -> None:
        await asyncio.to_thread(producer.flush, config.KAFKA_FLUSH_TIMEOUT_SECONDS)
        await asyncio.to_thread(mongo.close)

    logger.info("[Context] Wired loyalty=%s booking=%s", config.LOYALTY_API_BASE_URL, config.BOOKING_API_BASE_URL)
    return AppContext(
        loyalty=loyalty,
        process_purchase=ProcessPurchaseUseCase(
            loyalty=loyalty,
            audit_log=audit_log,
            queue=queue,
            booking=booking,
        ),
        webhook_secret=config.BOOKING_WEBHOOK_SECRET,
        closers=[loyalty_http.aclose, booking_http.aclose, close_backends],
    )
