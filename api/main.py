"""
Main FastAPI application for SupportDesk Chat.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from .errors import handoff_error_handler, http_error_handler, validation_error_handler
from .routes import chat, feedback, realtime, staff
from .routes import knowledge as knowledge_routes
from .services import get_services, initialize_services, shutdown_services
from .middleware.metrics import MetricsMiddleware, metrics_endpoint
from .middleware.rate_limit import RateLimitMiddleware
from config.settings import get_settings
from handoff.errors import HandoffError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("SupportDesk Chat starting up...")
    await initialize_services(
        get_settings(),
        responder=getattr(app.state, "responder", None),
        knowledge=getattr(app.state, "knowledge", None),
    )
    logger.info("SupportDesk Chat ready")
    yield
    logger.info("SupportDesk Chat shutting down...")
    await shutdown_services()


def create_app(responder=None, knowledge=None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    `responder` and `knowledge` replace the OpenAI and Pinecone adapters.
    """
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title=settings.api_title,
        description="Customer-support chat with AI replies and live staff hand-off.",
        version=settings.api_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.responder = responder
    app.state.knowledge = knowledge

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Prometheus metrics middleware
    app.add_middleware(MetricsMiddleware)

    # Rate limiting middleware
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_minute=settings.rate_limit_per_minute,
    )

    # --- Error mapping ---
    app.add_exception_handler(HandoffError, handoff_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # --- Routers ---
    app.include_router(chat.router, prefix="/api/v1", tags=["Chat"])
    app.include_router(staff.router, prefix="/api/v1", tags=["Staff"])
    app.include_router(feedback.router, prefix="/api/v1", tags=["Feedback"])
    app.include_router(knowledge_routes.router, prefix="/api/v1", tags=["Knowledge"])
    app.include_router(realtime.router, prefix="/api/v1", tags=["Realtime"])

    # --- Prometheus metrics endpoint ---
    app.get("/metrics", tags=["Monitoring"])(metrics_endpoint)

    # Root endpoint
    @app.get("/")
    async def root():
        return {
            "service": "SupportDesk Chat",
            "version": settings.api_version,
            "status": "operational",
            "docs": "/docs",
        }

    # Health check
    @app.get("/health")
    async def health():
        services = get_services()
        return {
            "status": "healthy" if services.is_ready else "degraded",
            "services": services.health(),
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
