"""purchase-middleware: purchase ingestion and forwarding service.

Purchases arrive over HTTP (directly or as booking-system webhooks), get an
audit record, are forwarded to the loyalty API, and are queued on Kafka for
downstream processing.
"""

__version__ = "0.1.0"
