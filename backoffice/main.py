"""
Backoffice API Server

Entry point for the FastAPI application.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backoffice.api.v1 import router as api_v1_router
from backoffice.api.v1.auth import router as auth_router
from backoffice.authz import build_access_control
from backoffice.core.config import get_settings
from backoffice.core.email import build_email_dispatcher
from backoffice.core.errors import BackofficeError
from backoffice.core.logging import configure_logging

log = structlog.get_logger()


async def backoffice_error_handler(request: Request, exc: BackofficeError) -> JSONResponse:
    """Render expected failures in the `{"error": {...}}` envelope."""
    if exc.status >= 500:
        log.warning("request.failed", path=request.url.path, code=exc.code, message=exc.message)
    return JSONResponse(status_code=exc.status, content={"error": exc.to_dict()})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title="PlayHard Backoffice",
        description="Organizations, members and invitations for the PlayHard backoffice.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Built once; invalid statements or roles fail startup here.
    app.state.authz = build_access_control()
    app.state.email = build_email_dispatcher(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_exception_handler(BackofficeError, backoffice_error_handler)

    app.include_router(auth_router, prefix="/auth", tags=["Authentication"])
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    log.info("backoffice.app_created", email_dispatcher=type(app.state.email).__name__)
    return app


app = create_app()
