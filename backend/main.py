"""FastAPI backend for TicketForge: async AI ticket generation."""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from ticketforge.config import Settings, get_settings
from ticketforge.errors import InternalError, TicketForgeError
from ticketforge.llm import LLMProvider
from ticketforge.schemas import ErrorDetails, ErrorResponse
from ticketforge.services import Services, build_services

logger = logging.getLogger(__name__)


def _error_body(message: str, error_type: str) -> dict:
    return ErrorResponse(
        error=message,
        details=ErrorDetails(type=error_type, timestamp=datetime.now(timezone.utc)),
    ).model_dump(mode="json")


class HealthResponse(BaseModel):
    status: str
    job_store: str
    workers_running: bool


def create_app(
    settings: Settings | None = None,
    provider: LLMProvider | None = None,
    services: Services | None = None,
) -> FastAPI:
    """Build the app. Tests pass their own settings / provider / services."""
    settings = settings or get_settings()
    logging.basicConfig(level=settings.tf_log_level.upper())
    services = services or build_services(settings, provider=provider)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting TicketForge (provider=%s, models=%s, job store=%s)",
            settings.tf_llm_provider,
            ",".join(settings.model_list),
            services.store.backend_name,
        )
        await services.start()
        try:
            yield
        finally:
            logger.info("Shutting down: draining worker pool")
            await services.stop()

    app = FastAPI(
        title="TicketForge API",
        description="Asynchronous AI ticket generation: polled jobs and live streaming.",
        version="0.4.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )
    app.state.services = services

    # -----------------------------------------------------------------------
    # Error envelopes
    # -----------------------------------------------------------------------
    @app.exception_handler(TicketForgeError)
    async def ticketforge_error_handler(request: Request, exc: TicketForgeError):
        if exc.status_code >= 500:
            logger.warning("%s %s failed: %s (%s)", request.method, request.url.path, exc.error_type, exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.user_message, exc.error_type),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.info("Rejected request to %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=400,
            content=_error_body("Requisição inválida.", "invalid_request"),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        error = InternalError("Erro interno ao processar a requisição.", detail=repr(exc))
        return JSONResponse(
            status_code=error.status_code,
            content=_error_body(error.user_message, error.error_type),
        )

    # -----------------------------------------------------------------------
    # CORS
    # -----------------------------------------------------------------------
    cors_kw: dict = {
        "allow_origins": settings.cors_origin_list,
        "allow_credentials": True,
        "allow_methods": ["*"],
        "allow_headers": ["*"],
    }
    if settings.cors_origin_regex:
        cors_kw["allow_origin_regex"] = settings.cors_origin_regex
    app.add_middleware(CORSMiddleware, **cors_kw)
    logger.info("CORS configured for origins: %s", settings.cors_origin_list)

    # -----------------------------------------------------------------------
    # Health
    # -----------------------------------------------------------------------
    @app.get("/health", response_model=HealthResponse)
    @app.get("/api/health", response_model=HealthResponse)
    async def health():
        """Health check endpoint."""
        return HealthResponse(
            status="ok",
            job_store=services.store.backend_name,
            workers_running=services.pool.running,
        )

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------
    from backend.routes import admin, tickets

    app.include_router(tickets.router, prefix="/api", tags=["tickets"])
    app.include_router(admin.router, prefix="/api", tags=["admin"])
    return app


app = create_app()
