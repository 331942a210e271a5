"""FastAPI application entry point."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from schoolpay.core.config import settings
from schoolpay.core.logging import setup_logging, log_error
from schoolpay.core.metrics import get_metrics, get_content_type, set_app_info
from schoolpay.core.middleware import (
    MetricsMiddleware,
    CorrelationIdMiddleware,
    RequestLoggingMiddleware,
)
from schoolpay.modules.billing import router as billing_router
from schoolpay.modules.billing.exceptions import BillingError
from schoolpay.modules.billing.schemas import envelope

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## SchoolPay Billing API

Billing for a school management system.

* **Payments** - Student payment obligations, gateway processing, overdue tracking
* **Invoices** - One invoice per payment, numbered `INV-YYYYMMDD-NNNN`
* **Payment Methods** - Stored instruments with one default per student
* **Subscriptions** - Recurring billing with scheduled renewals

Authentication is handled upstream of this service.
    """,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    openapi_tags=[
        {
            "name": "health",
            "description": "Health check and metrics endpoints",
        },
        {
            "name": "billing",
            "description": "Payments, invoices, payment methods and subscriptions",
        },
    ],
)

setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

set_app_info(
    version=settings.VERSION,
    environment="development" if settings.DEBUG else "production",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware, log_request_body=False)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)


# ==================== Exception Handlers ====================

@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    """Answer billing errors with their status and the error envelope."""
    if exc.status_code >= 500:
        log_error(logger, exc.message, exception=exc, path=request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content=envelope(exc.data, success=False, message=exc.message, error=exc.message),
    )


def _describe_validation_errors(exc: RequestValidationError) -> str:
    missing = []
    invalid = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path"))
        field = field or "body"
        if error.get("type") == "missing":
            missing.append(field)
        else:
            invalid.append(f"{field}: {error.get('msg')}")

    parts = []
    if missing:
        parts.append(f"Missing required fields: {', '.join(missing)}")
    if invalid:
        parts.append(f"Invalid fields: {'; '.join(invalid)}")
    return ". ".join(parts)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Answer malformed requests with 400 naming the offending fields."""
    message = _describe_validation_errors(exc)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=envelope(success=False, message=message, error=message),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=envelope(success=False, message=message, error=message),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log_error(logger, "Unhandled error", exception=exc, path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=envelope(success=False, message="Internal server error", error=str(exc)),
    )


# ==================== Operational Endpoints ====================

@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        dict: Health status with "healthy" or "unhealthy" value.
    """
    return {"status": "healthy"}


@app.get("/metrics", tags=["health"], include_in_schema=False)
async def metrics() -> Response:
    """Prometheus metrics in text exposition format."""
    return Response(content=get_metrics(), media_type=get_content_type())


# Include routers
app.include_router(billing_router, prefix=settings.API_V1_PREFIX)
