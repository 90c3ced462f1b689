"""Purchase job queue: Kafka for delivery, MongoDB for job-key uniqueness.

Why two stores?
- Kafka happily accepts the same key twice, but callers must be told when a
  purchase was already queued.
- So `enqueue` first claims the job key (`_id = external_id`) in a Mongo
  collection. A DuplicateKeyError there means "already queued" and surfaces as
  VALIDATION/409.
- If publishing to Kafka fails after the claim, the claim is released so the
  job can be submitted again.

Messages are keyed by external_id: same key => same partition => jobs for a
purchase stay ordered.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from confluent_kafka import KafkaException, Producer
from pymongo import errors
from pymongo.collection import Collection

from .errors import AppError, ErrorKind
from .models import PurchaseQueueJob

logger = logging.getLogger(__name__)


def create_producer(bootstrap_servers: str) -> Producer:
    """Create and configure a Confluent Kafka Producer."""
    conf: dict[str, Any] = {
        "bootstrap.servers": bootstrap_servers,
        # Broker-side dedup of producer retries.
        "enable.idempotence": True,
    }
    return Producer(conf)


class PurchaseQueue:
    def __init__(
        self,
        producer: Producer,
        topic: str,
        jobs: Collection,
        flush_timeout: float = 5.0,
    ) -> None:
        self._producer = producer
        self._topic = topic
        self._jobs = jobs
        self._flush_timeout = flush_timeout

    def _claim(self, job_key: str) -> None:
        try:
            self._jobs.insert_one(
                {"_id": job_key, "topic": self._topic, "queued_at": datetime.now(timezone.utc)}
            )
        except errors.DuplicateKeyError as e:
            logger.info("[Queue] Purchase %s already queued", job_key)
            raise AppError("Purchase already queued", ErrorKind.VALIDATION, 409, cause=e) from e

    def _publish(self, job_key: str, job: PurchaseQueueJob) -> None:
        delivery_errors: list[Any] = []

        def on_delivery(err, msg) -> None:
            if err is not None:
                delivery_errors.append(err)
            else:
                logger.info("[Queue] Delivered %s to %s [%s] @ %s", job_key, msg.topic(), msg.partition(), msg.offset())

        payload: bytes = job.model_dump_json().encode("utf-8")
        self._producer.produce(
            topic=self._topic,
            key=job_key.encode("utf-8"),
            value=payload,
            callback=on_delivery,
        )

        # Returns the number of messages still waiting for an ack.
        remaining = self._producer.flush(self._flush_timeout)
        if delivery_errors or remaining:
            reason = delivery_errors[0] if delivery_errors else f"{remaining} message(s) not acknowledged"
            raise AppError(
                "Failed to publish purchase job",
                ErrorKind.INTERNAL_ERROR,
                500,
                details={"externalPurchaseId": job_key, "reason": str(reason)},
            )

    def _enqueue(self, job: PurchaseQueueJob) -> None:
        job_key = job.purchase.external_id
        self._claim(job_key)
        try:
            self._publish(job_key, job)
        except (AppError, KafkaException, BufferError):
            self._jobs.delete_one({"_id": job_key})
            logger.error("[Queue] Publish of %s failed, claim released", job_key)
            raise

    async def enqueue(self, job: PurchaseQueueJob) -> None:
        """Queue the job once.

        Raises:
            AppError: VALIDATION/409 if a job with the same key was already queued.
        """
        await asyncio.to_thread(self._enqueue, job)

