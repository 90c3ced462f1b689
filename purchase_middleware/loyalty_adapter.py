"""Loyalty program API adapter.

Translates canonical purchases and buyer data into the loyalty API's wire
format. It owns no transport: every call goes through the `RequestExecutor`
it is given, so failures arrive here already classified as `AppError`.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from .http_client import RequestDescriptor, RequestExecutor
from .models import Purchase, RegisterBuyerPayload

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")

# camelCase input field -> loyalty API field. `phone` is handled separately
# because it is normalized first.
REGISTER_FIELD_MAP: dict[str, str] = {
    "referralCode": "referral_code",
    "cardNumber": "card_number",
    "surname": "surname",
    "name": "name",
    "middleName": "middle_name",
    "birthDate": "birth_date",
    "gender": "gender",
    "email": "email",
    "child1BirthDate": "child1_birth_date",
    "child1Name": "child1_name",
    "child1Gender": "child1_gender",
    "child2BirthDate": "child2_birth_date",
    "child2Name": "child2_name",
    "child2Gender": "child2_gender",
    "child3BirthDate": "child3_birth_date",
    "child3Name": "child3_name",
    "child3Gender": "child3_gender",
    "child4BirthDate": "child4_birth_date",
    "child4Name": "child4_name",
    "child4Gender": "child4_gender",
    "registrationChannel": "registration_channel",
    "registrationPoint": "registration_point",
    "groupId": "group_id",
    "cityId": "city_id",
    "phoneChecked": "phone_checked",
    "refusedReceiveMessages": "is_refused_receive_messages",
    "refusedReceiveEmails": "is_refused_receive_emails",
    "agreedReceiveElectronicReceipt": "is_agreed_receive_electronic_receipt",
    "initPurchaseCount": "init_purchase_count",
    "initPaymentAmount": "init_payment_amount",
    "cashierName": "cashier_name",
    "externalId": "external_id",
    "promocode": "promocode",
}


def normalize_phone(phone: str) -> str:
    """Normalize a Russian phone number to its 11-digit "7..." form.

    "8 (913) 939-30-94", "+7 913 939 30 94" and "79139393094" all become
    "79139393094". Numbers of other shapes come back as bare digits, or
    unchanged if they contain no digits at all.
    """
    digits = _NON_DIGITS.sub("", phone)
    if len(digits) == 11 and digits.startswith("8"):
        return "7" + digits[1:]
    if len(digits) == 11 and digits.startswith("7"):
        return digits
    return digits or phone


def build_register_body(payload: RegisterBuyerPayload) -> dict[str, Any]:
    """Build the `/buyer-register` body. Unset fields are omitted, never null."""
    body: dict[str, Any] = {}

    if payload.phone:
        phone = normalize_phone(payload.phone)
        if phone:
            body["phone"] = phone

    values = payload.model_dump(exclude_none=True)
    for field_name, upstream_name in REGISTER_FIELD_MAP.items():
        if field_name in values:
            body[upstream_name] = values[field_name]
    return body


class LoyaltyAdapter:
    def __init__(self, http: RequestExecutor, token: str) -> None:
        self._http = http
        self._token = token

    def _descriptor(self, url: str, payload: dict[str, Any]) -> RequestDescriptor:
        return RequestDescriptor(
            method="POST",
            url=url,
            headers={"Authorization": self._token},
            json=payload,
        )

    async def create_purchase(self, purchase: Purchase) -> None:
        payload = {
            "externalPurchaseId": purchase.external_id,
            "amount": purchase.amount,
            "currency": purchase.currency,
            "buyerId": purchase.buyer.id,
            "purchasedAt": purchase.purchased_at.isoformat(),
            "items": [
                {
                    "id": item.id,
                    "name": item.name,
                    "quantity": item.quantity,
                    "price": item.price,
                }
                for item in purchase.items
            ],
            "metadata": purchase.metadata or {},
        }
        await self._http.request(self._descriptor("/purchases", payload))
        logger.info("[Loyalty] Purchase %s forwarded", purchase.external_id)

    async def is_buyer_registered(self, buyer_id: str) -> bool:
        """True if either legacy flag (`is_register`/`is_registered`) is truthy.

        An empty or non-object response body means "not registered", not an error.
        """
        response = await self._http.request(
            self._descriptor("/buyer-info", {"identificator": normalize_phone(buyer_id)})
        )
        if not isinstance(response, dict):
            return False
        return bool(response.get("is_register") or response.get("is_registered"))

    async def register_buyer(self, payload: RegisterBuyerPayload) -> Any:
        """Register a buyer and return the raw upstream response."""
        return await self._http.request(self._descriptor("/buyer-register", build_register_body(payload)))
