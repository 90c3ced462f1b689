"""Purchase reconciliation use case.

Steps, in order, for one purchase:
    resolve -> audit append -> loyalty forward -> enqueue

A failure at any step stops the pipeline and is returned as `Err(AppError)`.
Side effects of earlier steps stay: an audit entry written before a failed
loyalty call is kept, since the audit trail records intent, not completion.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Protocol

from .errors import AppError, ErrorKind
from .models import AuditLogEntry, Buyer, Purchase, PurchaseItem, PurchaseQueueJob
from .result import Err, Ok, Result

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_SOURCE = "loyalty"

Mode = Literal["direct", "source_augmented"]


class LoyaltyGateway(Protocol):
    async def create_purchase(self, purchase: Purchase) -> None: ...


class BookingGateway(Protocol):
    async def get_purchase(self, external_purchase_id: str) -> Purchase: ...


class AuditLogGateway(Protocol):
    async def append(self, entry: AuditLogEntry) -> None: ...


class PurchaseQueueGateway(Protocol):
    async def enqueue(self, job: PurchaseQueueJob) -> None: ...


@dataclass
class ProcessPurchaseInput:
    """What the caller knows about the purchase.

    In "direct" mode this is the whole purchase. In "source_augmented" mode the
    booking system supplies the rest; amount, currency, buyer and metadata
    from here override it.
    """

    external_purchase_id: str
    buyer_id: str
    amount: float
    currency: str
    items: list[PurchaseItem] = field(default_factory=list)
    purchased_at: datetime | None = None
    metadata: dict[str, Any] | None = None
    mode: Mode = "direct"


class ProcessPurchaseUseCase:
    def __init__(
        self,
        loyalty: LoyaltyGateway,
        audit_log: AuditLogGateway,
        queue: PurchaseQueueGateway,
        booking: BookingGateway | None = None,
        source: str = DEFAULT_AUDIT_SOURCE,
    ) -> None:
        self._loyalty = loyalty
        self._audit_log = audit_log
        self._queue = queue
        self._booking = booking
        self._source = source

    async def execute(self, data: ProcessPurchaseInput) -> Result[dict[str, str], AppError]:
        try:
            purchase = await self._resolve_purchase(data)

            await self._audit_log.append(AuditLogEntry(purchase=purchase, source=self._source))
            await self._loyalty.create_purchase(purchase)
            await self._queue.enqueue(PurchaseQueueJob(purchase=purchase))
        except AppError as e:
            logger.warning("[ProcessPurchase] %s failed: %s (%s)", data.external_purchase_id, e.message, e.kind.value)
            return Err(e)
        except Exception as e:
            logger.exception("[ProcessPurchase] %s failed unexpectedly", data.external_purchase_id)
            return Err(AppError("Failed to process purchase", ErrorKind.INTERNAL_ERROR, 500, cause=e))

        logger.info("[ProcessPurchase] %s queued (mode=%s)", purchase.external_id, data.mode)
        return Ok({"status": "queued"})

    async def _resolve_purchase(self, data: ProcessPurchaseInput) -> Purchase:
        if data.mode == "source_augmented":
            return await self._resolve_from_booking(data)

        _require_items(data.items)
        if data.purchased_at is None:
            raise AppError("purchasedAt is required", ErrorKind.VALIDATION, 400)

        return Purchase(
            id=data.external_purchase_id,
            external_id=data.external_purchase_id,
            buyer=Buyer(id=data.buyer_id),
            amount=data.amount,
            currency=data.currency,
            items=data.items,
            purchased_at=data.purchased_at,
            metadata=data.metadata,
        )

    async def _resolve_from_booking(self, data: ProcessPurchaseInput) -> Purchase:
        if self._booking is None:
            raise AppError("Booking system is not configured", ErrorKind.INTERNAL_ERROR, 500)

        upstream = await self._booking.get_purchase(data.external_purchase_id)
        _require_items(upstream.items)

        # Request fields win; metadata is a shallow merge over the upstream's.
        metadata = {**(upstream.metadata or {}), **(data.metadata or {})}
        return upstream.model_copy(
            update={
                "amount": data.amount,
                "currency": data.currency,
                "buyer": Buyer(id=data.buyer_id),
                "metadata": metadata,
            }
        )


def _require_items(items: list[PurchaseItem]) -> None:
    if not items:
        raise AppError("Purchase items required", ErrorKind.VALIDATION, 400)
