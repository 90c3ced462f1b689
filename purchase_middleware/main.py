"""purchase-middleware FastAPI application.

Responsibilities:
- Accept purchases (directly, or as booking-system webhooks) and run them
  through `ProcessPurchaseUseCase`.
- Expose the loyalty buyer lookup/registration calls.
- Propagate x-trace-id / x-request-id into every outbound call.

The HTTP layer only translates: request models in, `AppError` out as JSON.
Which error details reach the client is decided here (`mask_error_details`),
never in the core.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from . import config
from .context import AppContext, create_app_context
from .errors import AppError
from .logging_config import configure_logging
from .models import (
    BookingWebhookRequest,
    BuyerLookupRequest,
    BuyerLookupResponse,
    CreatePurchaseRequest,
    PurchaseAcceptedResponse,
    PurchaseItem,
    RegisterBuyerPayload,
)
from .process_purchase import ProcessPurchaseInput
from .security import is_valid_signature
from .tracing import REQUEST_ID_HEADER, TRACE_HEADER, get_request_id, get_trace_id, request_context

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-signature"


def _error_response(request: Request, error: AppError) -> JSONResponse:
    mask = request.app.state.mask_error_details
    request_id = getattr(request.state, "request_id", None)

    if error.status_code >= 500:
        logger.error("[HTTP] %s: %s", error.kind.value, error.message, exc_info=error.cause)
    else:
        logger.warning("[HTTP] %s: %s", error.kind.value, error.message)

    masked = mask and error.status_code >= 500
    body: dict[str, Any] = {
        "code": error.kind.value,
        "message": "Internal server error" if masked else error.message,
    }
    if not masked:
        body["details"] = error.details
    body["requestId"] = request_id
    return JSONResponse(status_code=error.status_code, content=jsonable_encoder(body))


def create_app(context: AppContext | None = None, mask_error_details: bool | None = None) -> FastAPI:
    """Build the application.

    Args:
        context: Pre-built dependencies (tests). When None, the real context is
            created on startup and closed on shutdown.
        mask_error_details: Overrides the APP_ENV profile setting.
    """
    app = FastAPI(
        title=config.SERVICE_NAME,
        docs_url="/docs" if config.DOCS_ENABLED else None,
        openapi_url="/openapi.json" if config.DOCS_ENABLED else None,
    )
    app.state.context = context
    app.state.mask_error_details = config.MASK_ERROR_DETAILS if mask_error_details is None else mask_error_details

    if config.ALLOWED_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.on_event("startup")
    def on_startup() -> None:
        """Connect to the backing services once per process."""
        if app.state.context is None:
            app.state.context = create_app_context()
            app.state.owns_context = True

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        if getattr(app.state, "owns_context", False):
            await app.state.context.close()

    @app.middleware("http")
    async def trace_context(request: Request, call_next):
        """Bind trace/request ids for the whole request and echo them back."""
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        trace_id = request.headers.get(TRACE_HEADER) or request_id
        request.state.request_id = request_id

        with request_context(trace_id=trace_id, request_id=request_id):
            response = await call_next(request)

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers[TRACE_HEADER] = trace_id
        return response

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        return _error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        # 400 rather than FastAPI's 422, matching the VALIDATION error kind.
        return JSONResponse(
            status_code=400,
            content=jsonable_encoder(
                {
                    "code": "VALIDATION",
                    "message": "Request validation failed",
                    "issues": exc.errors(),
                    "requestId": getattr(request.state, "request_id", None),
                }
            ),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("[HTTP] Unhandled error")
        message = "Internal server error" if request.app.state.mask_error_details else str(exc)
        return JSONResponse(
            status_code=500,
            content={
                "code": "INTERNAL_ERROR",
                "message": message,
                "requestId": getattr(request.state, "request_id", None),
            },
        )

    @app.get("/health/live")
    def liveness() -> dict[str, str]:
        """Basic liveness endpoint."""
        return {"status": "ok"}

    @app.get("/health/ready")
    def readiness() -> dict[str, str]:
        return {"status": "ready"}

    async def _process(request: Request, data: ProcessPurchaseInput) -> JSONResponse:
        result = await request.app.state.context.process_purchase.execute(data)
        if not result.ok:
            raise result.error

        # "queued" means accepted into the job queue, not processed downstream.
        body = PurchaseAcceptedResponse(
            status=result.value["status"],
            traceId=get_trace_id(),
            requestId=get_request_id(),
        )
        return JSONResponse(status_code=202, content=body.model_dump())

    @app.post("/api/v1/purchases", status_code=202, response_model=PurchaseAcceptedResponse)
    async def create_purchase(req: CreatePurchaseRequest, request: Request):
        """Direct mode: the request carries the whole purchase."""
        data = ProcessPurchaseInput(
            external_purchase_id=req.externalPurchaseId,
            buyer_id=req.buyerId,
            amount=req.amount,
            currency=req.currency,
            items=[PurchaseItem(**item.model_dump()) for item in req.items],
            purchased_at=req.purchasedAt,
            metadata=req.metadata,
        )
        return await _process(request, data)

    @app.post("/api/v1/webhooks/booking", status_code=202, response_model=PurchaseAcceptedResponse)
    async def booking_webhook(request: Request):
        """Source-augmented mode: items and date come from the booking system."""
        raw = await request.body()

        secret = request.app.state.context.webhook_secret
        if secret:
            signature = request.headers.get(SIGNATURE_HEADER, "")
            if not signature or not is_valid_signature(secret, raw, signature):
                raise HTTPException(status_code=401, detail="Invalid webhook signature")

        try:
            req = BookingWebhookRequest.model_validate_json(raw)
        except ValidationError as e:
            raise RequestValidationError(e.errors()) from e

        data = ProcessPurchaseInput(
            external_purchase_id=req.externalPurchaseId,
            buyer_id=req.buyerId,
            amount=req.amount,
            currency=req.currency,
            metadata=req.metadata,
            mode="source_augmented",
        )
        return await _process(request, data)

    @app.post("/api/v1/buyers/lookup", response_model=BuyerLookupResponse)
    async def lookup_buyer(req: BuyerLookupRequest, request: Request):
        registered = await request.app.state.context.loyalty.is_buyer_registered(req.phone)
        return BuyerLookupResponse(registered=registered)

    @app.post("/api/v1/buyers")
    async def register_buyer(req: RegisterBuyerPayload, request: Request):
        """Register a buyer in the loyalty program; returns the upstream answer."""
        return await request.app.state.context.loyalty.register_buyer(req)

    return app


app = create_app()


def run() -> None:
    """Console entry point: configure logging and serve with uvicorn."""
    import uvicorn

    configure_logging(config.LOG_LEVEL)
    uvicorn.run(app, host=config.HOST, port=config.PORT, log_config=None)


if __name__ == "__main__":
    run()
