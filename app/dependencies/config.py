"""
FastAPI dependency utilities for injecting configuration.
"""

from http import HTTPStatus
from typing import Annotated

from fastapi import Depends, HTTPException

from app.core.config import AppSettings, get_settings


def get_app_settings() -> AppSettings:
    """FastAPI dependency returning application settings."""
    return get_settings()


def require_diagnostics_enabled(
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> AppSettings:
    """Hide developer diagnostics in production as if the route did not exist."""
    if settings.is_production:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail="Not Found")
    return settings


__all__ = ["get_app_settings", "require_diagnostics_enabled"]
