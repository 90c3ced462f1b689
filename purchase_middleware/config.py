"""purchase-middleware configuration.

This module only reads environment variables. Values are read once at import
and never mutated afterwards; the long-lived objects built from them live in
`context.AppContext`.

All defaults are reasonable for local development. Tokens have no defaults
that would work against a real upstream: set them in the environment.
"""

from __future__ import annotations

import os


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


# --- Service -----------------------------------------------------------------
SERVICE_NAME: str = os.getenv("SERVICE_NAME", "purchase-middleware")

# One of: local, dev, stage, prod. Controls the PROFILE_SETTINGS row below.
APP_ENV: str = os.getenv("APP_ENV", "local")

HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "8000"))

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# Comma separated list; empty means CORS middleware is not installed.
ALLOWED_ORIGINS: list[str] = _split_csv(os.getenv("ALLOWED_ORIGINS", ""))

# mask_error_details: hide message/details of 5xx responses from clients
# docs_enabled: serve /docs and /openapi.json
PROFILE_SETTINGS: dict[str, dict[str, bool]] = {
    "local": {"mask_error_details": False, "docs_enabled": True},
    "dev": {"mask_error_details": True, "docs_enabled": True},
    "stage": {"mask_error_details": True, "docs_enabled": False},
    "prod": {"mask_error_details": True, "docs_enabled": False},
}

if APP_ENV not in PROFILE_SETTINGS:
    raise RuntimeError(f"Unknown APP_ENV={APP_ENV!r}, expected one of {sorted(PROFILE_SETTINGS)}")

MASK_ERROR_DETAILS: bool = PROFILE_SETTINGS[APP_ENV]["mask_error_details"]
DOCS_ENABLED: bool = PROFILE_SETTINGS[APP_ENV]["docs_enabled"]

# --- Upstream APIs -----------------------------------------------------------
# Loyalty program API (purchases, buyer lookup and registration)
LOYALTY_API_BASE_URL: str = os.getenv("LOYALTY_API_BASE_URL", "http://localhost:8081")
LOYALTY_API_TOKEN: str = os.getenv("LOYALTY_API_TOKEN", "")

# Booking/sales system, the source of truth for webhook purchases
BOOKING_API_BASE_URL: str = os.getenv("BOOKING_API_BASE_URL", "http://localhost:8082")
BOOKING_API_TOKEN: str = os.getenv("BOOKING_API_TOKEN", "")

# Shared secret for the booking webhook signature. Empty disables the check.
BOOKING_WEBHOOK_SECRET: str = os.getenv("BOOKING_WEBHOOK_SECRET", "")

# --- Outbound resilience -----------------------------------------------------
# Per-attempt transport timeout
HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "5"))
HTTP_MAX_RETRIES: int = int(os.getenv("HTTP_MAX_RETRIES", "3"))

# The breaker opens when the failure percentage in the rolling window is
# strictly above this value.
CIRCUIT_ERROR_THRESHOLD_PERCENT: float = float(os.getenv("CIRCUIT_ERROR_THRESHOLD_PERCENT", "50"))
CIRCUIT_RESET_TIMEOUT_SECONDS: float = float(os.getenv("CIRCUIT_RESET_TIMEOUT_SECONDS", "30"))
CIRCUIT_ROLLING_WINDOW_SECONDS: float = float(os.getenv("CIRCUIT_ROLLING_WINDOW_SECONDS", "10"))

# --- Kafka -------------------------------------------------------------------
# Kafka bootstrap servers (broker addresses). Example: "172.31.0.202:9092"
KAFKA_BOOTSTRAP_SERVERS: str = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092")

# Topic the purchase jobs are published to
KAFKA_TOPIC: str = os.getenv("KAFKA_TOPIC", "purchases.jobs.v1")

# Seconds to wait for the broker to acknowledge a job
KAFKA_FLUSH_TIMEOUT_SECONDS: float = float(os.getenv("KAFKA_FLUSH_TIMEOUT_SECONDS", "5"))

# --- MongoDB -----------------------------------------------------------------
MONGO_URI: str = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB: str = os.getenv("MONGO_DB", "purchase_middleware")

# Append-only audit trail, unique on (external_purchase_id, source)
MONGO_AUDIT_COLLECTION: str = os.getenv("MONGO_AUDIT_COLLECTION", "audit_logs")

# One document per queued job; `_id` is the job key
MONGO_JOBS_COLLECTION: str = os.getenv("MONGO_JOBS_COLLECTION", "purchase_jobs")
