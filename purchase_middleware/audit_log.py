"""Audit log gateway backed by MongoDB.

Key design choice:
- A unique index on (external_purchase_id, source) makes `append` idempotent:
  the second append of the same purchase from the same source hits
  DuplicateKeyError, which we treat as "already recorded".

The audit trail records intent: an entry is written before the purchase is
forwarded, and it stays even if forwarding fails later.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from pymongo import ASCENDING, MongoClient, errors
from pymongo.collection import Collection

from .models import AuditLogEntry

logger = logging.getLogger(__name__)


def get_audit_collection(client: MongoClient, db_name: str, collection_name: str) -> Collection:
    """Return the audit collection, creating its uniqueness index if needed."""
    collection = client[db_name][collection_name]
    collection.create_index(
        [("external_purchase_id", ASCENDING), ("source", ASCENDING)],
        unique=True,
        name="uniq_external_purchase_source",
    )
    return collection


class AuditLogRepository:
    def __init__(self, collection: Collection) -> None:
        self._collection = collection

    def _insert(self, entry: AuditLogEntry) -> None:
        document = {
            "external_purchase_id": entry.purchase.external_id,
            "source": entry.source,
            "payload": entry.purchase.model_dump(mode="json"),
            "created_at": datetime.now(timezone.utc),
        }
        try:
            self._collection.insert_one(document)
            logger.info("[AuditLog] Recorded %s from %s", entry.purchase.external_id, entry.source)
        except errors.DuplicateKeyError:
            logger.info("[AuditLog] Duplicate entry ignored: %s from %s", entry.purchase.external_id, entry.source)

    async def append(self, entry: AuditLogEntry) -> None:
        """Record the entry once; repeated appends are no-ops."""
        await asyncio.to_thread(self._insert, entry)
