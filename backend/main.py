"""
Casa Piñón Ebanistería — Payments & Orders API (FastAPI)

Checkout orders, payment-gateway webhooks (MercadoPago, Bold, ePayco),
redirect-back resolution and idempotent customer notifications.

Run: uvicorn main:app --reload  (from backend/)
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings
from domain.errors import DomainError
from domain.responses import error_response
from routes import health, orders, payments
from services import maintenance

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire one reconciler per process; stop background work and close clients on exit."""
    if settings.database_url.startswith("sqlite"):
        os.makedirs("data", exist_ok=True)
    settings.validate_production_settings()

    from database import init_db
    from services.bold_client import BoldClient
    from services.email_service import EmailSender
    from services.mercadopago_client import MercadoPagoClient
    from services.payment_service import PaymentReconciler
    from services.resolver_metrics import get_resolver_metrics

    await init_db()

    gateway_client = MercadoPagoClient(settings)
    bold_client = BoldClient(settings)
    app.state.reconciler = PaymentReconciler(
        settings,
        email_sender=EmailSender(settings),
        gateway_client=gateway_client,
        metrics=get_resolver_metrics(),
        bold_client=bold_client,
    )
    logger.info(
        f"Payment reconciler ready (env={settings.environment}, "
        f"mercadopago={'on' if gateway_client.configured else 'off'}, "
        f"bold={'on' if bold_client.configured else 'off'}, "
        f"email={'on' if settings.email_configured else 'off'})"
    )

    if settings.maintenance_enabled:
        await maintenance.start()

    try:
        yield
    finally:
        await maintenance.stop()
        await gateway_client.aclose()
        await bold_client.aclose()
        logger.info("Payments API stopped")


app = FastAPI(
    title="Casa Piñón Payments API",
    description="Orders, payment reconciliation and customer notifications for Casa Piñón Ebanistería",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(payments.router)
app.include_router(payments.mercadopago_router)
app.include_router(payments.bold_router)
app.include_router(orders.router)


@app.get("/maintenance/status", tags=["maintenance"])
async def get_maintenance_status():
    return maintenance.get_status()


# ── Error envelope ──────────────────────────────────────────────────
# Every failure leaves as {"success": false, "error": {code, message, details}}.


@app.exception_handler(DomainError)
async def domain_error_handler(request, exc: DomainError):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.code, exc.message, exc.details or None),
        headers=exc.headers,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc: StarletteHTTPException):
    """Framework-raised HTTP errors (404 on unknown routes, 405, ...)."""
    detail = exc.detail
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(
            "http_error",
            detail if isinstance(detail, str) else "Request failed",
            detail if isinstance(detail, dict) else None,
        ),
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc: RequestValidationError):
    errors = jsonable_encoder(exc.errors())
    logger.info(f"Rejected request to {request.url.path}: {len(errors)} validation error(s)")
    return JSONResponse(
        status_code=422,
        content=error_response("validation_error", "Request validation failed", {"errors": errors}),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request, exc):
    """Log the traceback; the client only ever sees a generic 500."""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=error_response("internal_server_error", "Internal server error"),
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", 8000)), log_level="info")
