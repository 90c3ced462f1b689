"""Pydantic models for purchase-middleware.

Two groups live here:
- the canonical domain shapes (`Purchase`, `PurchaseItem`, `Buyer`) that flow
  between the use case, the adapters and the gateways
- the HTTP request/response contracts, which use the camelCase field names
  clients send on the wire
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


# --- Domain ------------------------------------------------------------------


class Buyer(BaseModel):
    id: str


class PurchaseItem(BaseModel):
    id: str
    name: str
    quantity: int = Field(gt=0)
    price: float = Field(ge=0)


class Purchase(BaseModel):
    """Canonical purchase.

    Notes:
        - `amount`/`currency` are what the buyer paid; they are NOT reconciled
          against the item prices.
        - `metadata` is free-form and optional.
    """

    id: str
    external_id: str
    buyer: Buyer
    amount: float
    currency: str
    items: list[PurchaseItem]
    purchased_at: datetime
    metadata: dict[str, Any] | None = None


class AuditLogEntry(BaseModel):
    """Write-once audit record, unique on (purchase.external_id, source)."""

    purchase: Purchase
    source: str


class PurchaseQueueJob(BaseModel):
    """Job published for downstream processing, keyed by purchase.external_id."""

    purchase: Purchase


# --- HTTP contracts ----------------------------------------------------------


class PurchaseItemRequest(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    price: float = Field(ge=0)


class CreatePurchaseRequest(BaseModel):
    """Request body for `POST /api/v1/purchases`."""

    externalPurchaseId: str = Field(min_length=1)
    buyerId: str = Field(min_length=1)
    amount: float = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    items: list[PurchaseItemRequest] = Field(min_length=1)
    purchasedAt: datetime
    metadata: dict[str, Any] | None = None


class BookingWebhookRequest(BaseModel):
    """Request body for `POST /api/v1/webhooks/booking`.

    The booking system is the source of truth for items and purchase date;
    the webhook only carries what the middleware overrides.
    """

    externalPurchaseId: str = Field(min_length=1)
    buyerId: str = Field(min_length=1)
    amount: float = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    metadata: dict[str, Any] | None = None


class PurchaseAcceptedResponse(BaseModel):
    status: Literal["queued"]
    traceId: str | None = None
    requestId: str | None = None


class BuyerLookupRequest(BaseModel):
    phone: str = Field(min_length=1)


class BuyerLookupResponse(BaseModel):
    registered: bool


Gender = Literal["male", "female"]


class RegisterBuyerPayload(BaseModel):
    """Buyer registration input.

    Every field is optional; only the fields that are set are forwarded to the
    loyalty API (see `loyalty_adapter.REGISTER_FIELD_MAP`).
    """

    phone: str | None = None
    referralCode: str | None = None
    cardNumber: str | None = None
    surname: str | None = None
    name: str | None = None
    middleName: str | None = None
    birthDate: str | None = None
    gender: Gender | None = None
    email: str | None = None
    child1BirthDate: str | None = None
    child1Name: str | None = None
    child1Gender: Gender | None = None
    child2BirthDate: str | None = None
    child2Name: str | None = None
    child2Gender: Gender | None = None
    child3BirthDate: str | None = None
    child3Name: str | None = None
    child3Gender: Gender | None = None
    child4BirthDate: str | None = None
    child4Name: str | None = None
    child4Gender: Gender | None = None
    registrationChannel: str | None = None
    registrationPoint: str | None = None
    groupId: str | None = None
    cityId: str | None = None
    phoneChecked: bool | None = None
    refusedReceiveMessages: bool | None = None
    refusedReceiveEmails: bool | None = None
    agreedReceiveElectronicReceipt: bool | None = None
    initPurchaseCount: int | None = None
    initPaymentAmount: float | None = None
    cashierName: str | None = None
    externalId: str | None = None
    promocode: str | None = None
