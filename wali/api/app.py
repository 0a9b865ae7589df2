"""
FastAPI application factory.

* Registers routes for orders, pricing, addresses, payments and admin.
* Starts / stops the background payment reconciler via lifespan events.
* Translates domain errors into ``{"detail", "code"}`` JSON bodies.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from wali.api.middleware import limiter
from wali.api.routes import addresses, admin, orders, payments, pricing
from wali.config import settings
from wali.domain.errors import ValidationError, WaliError
from wali.infrastructure.database import dispose_engine
from wali.infrastructure.redis_client import close_redis
from wali.workers import payment_reconciler as _reconciler

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the payment reconciler on startup; stop it and close pools on shutdown."""
    await _reconciler.start_reconciler_loop()
    yield
    await _reconciler.stop_reconciler_loop()
    await close_redis()
    await dispose_engine()


async def wali_error_handler(request: Request, exc: WaliError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.warning("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": exc.message, "code": exc.code},
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed bodies and parameters get the same 400 body as domain validation."""
    fields = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        name = ".".join(loc) or "requête"
        if name not in fields:
            fields.append(name)
    error = ValidationError(f"Données invalides : {', '.join(fields)}" if fields else None)
    return JSONResponse(
        status_code=error.http_status,
        content={"detail": error.message, "code": error.code},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Une erreur interne est survenue. Veuillez réessayer plus tard.",
            "code": "INTERNAL_ERROR",
        },
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="WALI Livraison API",
        description=(
            "Plateforme de livraison à la demande pour la Côte d'Ivoire : "
            "tarification en FCFA, cycle de vie des commandes, affectation "
            "des livreurs et paiements Mobile Money / carte / espèces."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(WaliError, wali_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Routers
    app.include_router(orders.router, prefix="/api/v1")
    app.include_router(pricing.router, prefix="/api/v1")
    app.include_router(addresses.router, prefix="/api/v1")
    app.include_router(payments.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
