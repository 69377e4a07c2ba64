"""
FastAPI application entrypoint for the analytics credential broker.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.errors import BrokerError
from app.core.logging import configure_logging

logger = logging.getLogger(__name__)


async def handle_broker_error(request: Request, exc: BrokerError) -> JSONResponse:
    """Render domain errors as ``{ok: false, error, code, retryable, ...}``."""
    if exc.retryable:
        logger.warning("%s on %s: %s", exc.code, request.url.path, exc.message)
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(exc.to_payload(), status_code=int(exc.status_code), headers=headers)


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Analytics Credential Broker",
        version="0.1.0",
        description="Google Analytics OAuth connection, token refresh and usage quotas.",
    )
    app.add_exception_handler(BrokerError, handle_broker_error)
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app", "handle_broker_error"]
