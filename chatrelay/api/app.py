"""
FastAPI application factory.

Maps every ChatRelayError to ``{error, category, details?}`` with the status
of its category. Body validation failures are reported as validation errors
(400) rather than FastAPI's default 422.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatrelay import __version__
from chatrelay.api.chat import router
from chatrelay.components import ChatComponents
from chatrelay.config.logging import get_logger
from chatrelay.config.settings import Settings, get_settings
from chatrelay.errors import ChatRelayError, ValidationError
from chatrelay.service import ChatService

logger = get_logger(__name__)


async def _relay_error_handler(request: Request, exc: ChatRelayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.url.path}: [{exc.category}] {exc.message}")
    else:
        logger.info(f"{request.url.path}: [{exc.category}] {exc.message}")
    return JSONResponse(exc.to_body(), status_code=exc.status_code)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = ValidationError(
        "Malformed request body.",
        details={"errors": [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()
        ]},
    )
    return JSONResponse(error.to_body(), status_code=error.status_code)


async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"{request.url.path}: unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        {"error": "Internal Server Error", "category": "internal_error"}, status_code=500
    )


def create_app(
    settings: Settings | None = None,
    service: ChatService | None = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Application settings (default: global settings)
        service: Pre-built ChatService, mainly for tests. Built from settings otherwise.
    """
    settings = settings or get_settings()

    app = FastAPI(title="chatrelay", version=__version__)
    app.state.chat_service = service or ChatComponents(settings).create_service()

    if settings.server.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.server.cors_origins,
            allow_methods=["POST", "OPTIONS"],
            allow_headers=["Content-Type"],
        )

    app.add_exception_handler(ChatRelayError, _relay_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unexpected_error_handler)
    app.include_router(router)
    return app
