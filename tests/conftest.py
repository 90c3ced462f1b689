"""Shared fakes for purchase-middleware tests."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest
from pymongo import errors

from purchase_middleware.models import Buyer, Purchase, PurchaseItem


class FakeExecutor:
    """Stands in for HttpClient: records descriptors, replays canned answers."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.descriptors: list[Any] = []

    async def request(self, descriptor):
        self.descriptors.append(descriptor)
        response = self.responses.pop(0) if self.responses else None
        if isinstance(response, BaseException):
            raise response
        return response


class FakeCollection:
    """Minimal pymongo collection with unique-key semantics."""

    def __init__(self, unique_fields: tuple[str, ...] = ("_id",)) -> None:
        self.unique_fields = unique_fields
        self.documents: list[dict[str, Any]] = []
        self.indexes: list[Any] = []

    def _key(self, document: dict[str, Any]) -> tuple:
        return tuple(document.get(name) for name in self.unique_fields)

    def create_index(self, keys, **kwargs):
        self.indexes.append((keys, kwargs))
        return kwargs.get("name", "index")

    def insert_one(self, document: dict[str, Any]):
        if any(self._key(doc) == self._key(document) for doc in self.documents):
            raise errors.DuplicateKeyError("E11000 duplicate key error")
        self.documents.append(document)

    def delete_one(self, query: dict[str, Any]):
        self.documents = [
            doc for doc in self.documents if not all(doc.get(k) == v for k, v in query.items())
        ]


class FakeMessage:
    def __init__(self, topic: str) -> None:
        self._topic = topic

    def topic(self) -> str:
        return self._topic

    def partition(self) -> int:
        return 0

    def offset(self) -> int:
        return 42


class FakeProducer:
    """confluent_kafka.Producer look-alike that acks (or fails) on flush."""

    def __init__(self, delivery_error: Any = None, unacked: int = 0) -> None:
        self.delivery_error = delivery_error
        self.unacked = unacked
        self.produced: list[dict[str, Any]] = []
        self._pending: list[tuple[Any, str]] = []

    def produce(self, topic, key=None, value=None, callback=None):
        self.produced.append({"topic": topic, "key": key, "value": value})
        self._pending.append((callback, topic))

    def flush(self, timeout=None):
        for callback, topic in self._pending:
            if callback is not None:
                callback(self.delivery_error, None if self.delivery_error else FakeMessage(topic))
        self._pending.clear()
        return self.unacked


class RecordingGateway:
    """Async gateway double recording calls to one method."""

    def __init__(self, error: BaseException | None = None, result: Any = None) -> None:
        self.calls: list[Any] = []
        self.error = error
        self.result = result

    async def __call__(self, arg):
        self.calls.append(arg)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def purchase() -> Purchase:
    return Purchase(
        id="internal-id",
        external_id="ext-1",
        buyer=Buyer(id="buyer-1"),
        amount=100,
        currency="RUB",
        items=[PurchaseItem(id="item-1", name="Service", quantity=1, price=100)],
        purchased_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        metadata={},
    )
