from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from realify.config import settings
from realify.routers import gallery, generation, health, subscription
from realify.routers import stripe as stripe_router_module
from realify.auth.session_auth import close_http_client
from realify.core.database import init_db, close_db
from realify.core.structured_logging import APP_VERSION, setup_logging
from realify.core.errors import RealifyError, referenced_codes
from realify.core.errors.registry import error_registry
from realify.core.errors.middleware import realify_error_handler
from realify.core.log_middleware import CorrelationMiddleware

# Initialize structured logging before any logger calls
setup_logging(log_dir=settings.log_dir, log_level=settings.log_level, json_output=settings.log_json)

logger = logging.getLogger(__name__)

API_TITLE = "Realify API"
API_DESCRIPTION = "Metered AI image generation with Stripe-billed unit plans."

TAGS_METADATA = [
    {"name": "health", "description": "Liveness and component checks"},
    {"name": "generation", "description": "Metered image generation"},
    {"name": "gallery", "description": "Generation history"},
    {"name": "subscription", "description": "Plan and unit balance"},
    {"name": "stripe", "description": "Checkout, portal and webhooks"},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("Starting Realify API v%s (%s)...", APP_VERSION, settings.environment)

    error_registry.load(required=referenced_codes())
    init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down Realify API...")
    await close_http_client()
    close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=APP_VERSION,
        openapi_tags=TAGS_METADATA,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (request_id + correlation_id in every log)
    app.add_middleware(CorrelationMiddleware)

    # Structured error handler for RealifyError
    app.add_exception_handler(RealifyError, realify_error_handler)

    # Catch-all handler so unhandled exceptions return JSON (not bare text)
    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "message": "An unexpected error occurred."},
        )

    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(generation.router, prefix="/api", tags=["generation"])
    app.include_router(gallery.router, prefix="/api", tags=["gallery"])
    app.include_router(subscription.router, prefix="/api", tags=["subscription"])
    app.include_router(stripe_router_module.router, prefix="/api/stripe", tags=["stripe"])

    return app


app = create_app()
