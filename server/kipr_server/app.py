"""
FastAPI application factory for the KIPR reference service.

This module creates the app with:
- CORS configuration
- A MemoryStore shared by every request
- KiprError -> JSON error body mapping
- The /v1 API routes

Usage:
    uvicorn kipr_server.app:create_app --factory --port 8080
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kipr_sdk import __version__
from kipr_sdk.errors import KiprError, ValidationError
from kipr_sdk.store import MemoryStore

from .config import Settings
from .routes import router

logger = logging.getLogger(__name__)


def create_app(store: MemoryStore | None = None, settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        store: Backing store; a fresh MemoryStore by default
        settings: Service settings; loaded from environment by default
    """
    settings = settings or Settings()
    if store is None:
        store = MemoryStore(hash_iterations=settings.hash_iterations)

    app = FastAPI(
        title="KIPR API",
        description="Reference service for users, organizations, projects, versions and files.",
        version=__version__,
    )
    app.state.store = store
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "If-Match"],
        expose_headers=["ETag"],
    )

    @app.exception_handler(KiprError)
    async def kipr_error_handler(request: Request, exc: KiprError) -> JSONResponse:
        if exc.status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.debug(f"{request.method} {request.url.path} -> {exc.code}")
        return JSONResponse(status_code=exc.status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        error = ValidationError(
            f"Invalid request: {first.get('msg', 'malformed body')}",
            field_name=location or None,
        )
        return JSONResponse(status_code=error.status, content=error.to_dict())

    app.include_router(router)

    logger.info(f"KIPR API {__version__} ready")
    return app
