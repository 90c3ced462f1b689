"""Booking/sales system adapter.

The booking system is the source of truth for purchases that arrive through
its webhook. This adapter fetches one purchase and maps its field names onto
the canonical `Purchase`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from .errors import AppError, ErrorKind
from .http_client import RequestDescriptor, RequestExecutor
from .models import Buyer, Purchase, PurchaseItem


def to_purchase(external_purchase_id: str, data: dict[str, Any]) -> Purchase:
    """Map a booking-system purchase document onto `Purchase`."""
    return Purchase(
        id=str(data["id"]),
        external_id=external_purchase_id,
        buyer=Buyer(id=str(data["client_id"])),
        amount=data["total_sum"],
        currency=data["currency"],
        items=[
            PurchaseItem(
                id=str(item["id"]),
                name=item["goods_title"],
                quantity=item["quantity"],
                price=item["price"],
            )
            for item in data.get("items") or []
        ],
        purchased_at=datetime.fromisoformat(data["date"].replace("Z", "+00:00")),
        metadata=data.get("metadata"),
    )


class BookingAdapter:
    def __init__(self, http: RequestExecutor, token: str) -> None:
        self._http = http
        self._token = token

    async def get_purchase(self, external_purchase_id: str) -> Purchase:
        """Fetch a purchase by its booking-system id.

        Raises:
            AppError: UPSTREAM_4XX/404 when the upstream answers with an empty
                body; UPSTREAM_5XX/502 when the body does not map onto a
                `Purchase`; any transport failure as classified by the executor.
        """
        data = await self._http.request(
            RequestDescriptor(
                method="GET",
                url=f"/purchases/{external_purchase_id}",
                headers={"Authorization": f"Bearer {self._token}"},
            )
        )

        if not data:
            raise AppError(
                "Purchase not found in booking system",
                ErrorKind.UPSTREAM_4XX,
                404,
                details={"externalPurchaseId": external_purchase_id},
            )

        try:
            return to_purchase(external_purchase_id, data)
        except (KeyError, TypeError, ValueError) as e:
            raise AppError(
                "Malformed purchase from booking system",
                ErrorKind.UPSTREAM_5XX,
                502,
                details={"externalPurchaseId": external_purchase_id, "reason": str(e)},
                cause=e,
            ) from e
