"""
Request-scoped dependencies: who is calling and on which plan.
"""

from http import HTTPStatus
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from app.core.config import AppSettings
from app.core.errors import NotConnectedError
from app.dependencies.clients import get_identity_resolver
from app.dependencies.config import get_app_settings
from app.models.identity import PluginIdentity, WebIdentity
from app.services.identity import IdentityResolver

PLAN_OVERRIDE_HEADER = "x-aa-premium-override"


def require_web_identity(
    request: Request,
    resolver: Annotated[IdentityResolver, Depends(get_identity_resolver)],
) -> WebIdentity:
    """Browser caller from the session cookie; no cookie means never connected."""
    identity = resolver.from_cookies(request.cookies)
    if identity is None:
        raise NotConnectedError()
    return identity


def require_plugin_identity(
    request: Request,
    resolver: Annotated[IdentityResolver, Depends(get_identity_resolver)],
) -> PluginIdentity:
    """Plugin caller from a valid bearer token."""
    identity = resolver.from_authorization(request.headers.get("authorization"))
    if identity is None:
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED,
            detail="Missing or invalid bearer token.",
            headers={"WWW-Authenticate": 'Bearer error="invalid_token"'},
        )
    return identity


def get_plan_tier(
    request: Request,
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> str:
    """Plan tier for quota limits; the QA override header is ignored in production."""
    plan = settings.usage.default_plan
    if settings.usage.allow_plan_override and not settings.is_production:
        override = (request.headers.get(PLAN_OVERRIDE_HEADER) or "").strip().lower()
        if override in {"1", "true", "premium"}:
            plan = "premium"
    return plan


__all__ = [
    "PLAN_OVERRIDE_HEADER",
    "get_plan_tier",
    "require_plugin_identity",
    "require_web_identity",
]
