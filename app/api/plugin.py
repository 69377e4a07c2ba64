"""
FastAPI routes for the assistant plugin: OAuth endpoints and bearer-token API.
"""

from __future__ import annotations

import base64
import binascii
import logging
import uuid
from http import HTTPStatus
from typing import Annotated, Any, Optional
from urllib.parse import unquote

from fastapi import APIRouter, Depends, Form, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from app.core.config import AppSettings
from app.core.errors import CodeNotFoundOrExpiredError
from app.dependencies import (
    get_analytics_client,
    get_app_settings,
    get_auth_code_broker,
    get_google_oauth_client,
    get_identity_resolver,
    get_oauth_state_store,
    get_plan_tier,
    get_plugin_token_signer,
    get_property_allowance,
    get_token_vault,
    get_usage_guard,
    require_plugin_identity,
)
from app.models.identity import PluginIdentity, describe_identity
from app.schemas import OAuthErrorResponse, PluginTokenResponse, ReportQuery
from app.services.reports import (
    GA4_REPORTS_FEATURE,
    describe_connection,
    run_guarded_report,
    usage_info,
)

router = APIRouter(prefix="/plugin")
logger = logging.getLogger(__name__)

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _oauth_error(
    error: str,
    description: str,
    status_code: HTTPStatus = HTTPStatus.BAD_REQUEST,
    headers: Optional[dict] = None,
) -> JSONResponse:
    body = OAuthErrorResponse(error=error, error_description=description)
    return JSONResponse(
        body.model_dump(),
        status_code=status_code,
        headers={**_NO_STORE, **(headers or {})},
    )


def _split_scopes(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    return [item for item in raw.replace(",", " ").split() if item]


def _basic_credentials(header: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """Client credentials from an HTTP Basic header, form-urlencoded per RFC 6749."""
    if not header or not header.lower().startswith("basic "):
        return None, None
    try:
        decoded = base64.b64decode(header[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None, None
    client_id, sep, client_secret = decoded.partition(":")
    if not sep:
        return None, None
    return unquote(client_id), unquote(client_secret)


@router.get("/oauth/authorize")
async def plugin_authorize(
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    resolver: Annotated[Any, Depends(get_identity_resolver)],
    oauth_client: Annotated[Any, Depends(get_google_oauth_client)],
    state_store: Annotated[Any, Depends(get_oauth_state_store)],
    client_id: str | None = Query(default=None),
    redirect_uri: str | None = Query(default=None),
    state: str | None = Query(default=None),
    scope: str | None = Query(default=None),
    response_type: str = Query(default="code"),
):
    """
    Start plugin authorization by sending the user through Google consent.

    Each authorization mints a fresh plugin user id; its Google credentials
    are stored under that id by the shared callback, which then redirects back
    to ``redirect_uri`` with a single-use code.
    """
    if not resolver.is_known_client(client_id):
        return _oauth_error("invalid_client", "Unknown client_id.")
    if not state or not redirect_uri:
        return _oauth_error("invalid_request", "state and redirect_uri are required.")
    if response_type != "code":
        return _oauth_error("unsupported_response_type", "Only response_type=code is supported.")

    requested = _split_scopes(scope) or list(settings.plugin.scopes)
    unknown = [item for item in requested if item not in settings.plugin.scopes]
    if unknown:
        return _oauth_error("invalid_scope", f"Unsupported scope: {' '.join(unknown)}.")

    identity = PluginIdentity(user_id=uuid.uuid4().hex)
    google_state, code_challenge = await state_store.begin(
        identity,
        plugin_state=state,
        plugin_redirect_uri=redirect_uri,
        scope=" ".join(requested),
    )
    logger.info("Starting plugin authorization for %s", describe_identity(identity))
    return RedirectResponse(
        url=oauth_client.build_authorization_url(
            state=google_state, code_challenge=code_challenge
        ),
        status_code=HTTPStatus.FOUND,
    )


@router.post("/oauth/token")
async def plugin_token(
    request: Request,
    resolver: Annotated[Any, Depends(get_identity_resolver)],
    signer: Annotated[Any, Depends(get_plugin_token_signer)],
    code_broker: Annotated[Any, Depends(get_auth_code_broker)],
    grant_type: Annotated[str, Form()],
    code: Annotated[str | None, Form()] = None,
    redirect_uri: Annotated[str | None, Form()] = None,
    refresh_token: Annotated[str | None, Form()] = None,
    client_id: Annotated[str | None, Form()] = None,
    client_secret: Annotated[str | None, Form()] = None,
):
    """OAuth token endpoint for the ``authorization_code`` and ``refresh_token`` grants."""
    basic_id, basic_secret = _basic_credentials(request.headers.get("authorization"))
    if basic_id is not None:
        client_id, client_secret = basic_id, basic_secret
    if not resolver.authenticate_client(client_id, client_secret):
        return _oauth_error(
            "invalid_client",
            "Client authentication failed.",
            status_code=HTTPStatus.UNAUTHORIZED,
            headers={"WWW-Authenticate": 'Basic realm="plugin"'},
        )

    if grant_type == "authorization_code":
        try:
            grant = await code_broker.redeem(code or "", redirect_uri=redirect_uri)
        except CodeNotFoundOrExpiredError as exc:
            return _oauth_error("invalid_grant", exc.message)
        if not isinstance(grant.identity, PluginIdentity):
            return _oauth_error("invalid_grant", "Authorization code was not issued to the plugin.")
        identity, scope = grant.identity, grant.scope
    elif grant_type == "refresh_token":
        verified = signer.verify(refresh_token or "", expected_kind="refresh")
        if verified is None:
            return _oauth_error("invalid_grant", "Refresh token is invalid or expired.")
        identity, scope = verified.identity, verified.scope
    else:
        return _oauth_error("unsupported_grant_type", f"Unsupported grant_type: {grant_type}.")

    access = signer.issue(identity, scope, kind="access")
    renewed = signer.issue(identity, scope, kind="refresh")
    logger.info("Issued plugin tokens for %s via %s", describe_identity(identity), grant_type)
    body = PluginTokenResponse(
        access_token=access.token,
        expires_in=access.expires_in,
        refresh_token=renewed.token,
        scope=scope,
    )
    return JSONResponse(body.model_dump(), headers=_NO_STORE)


@router.get("/v1/status")
async def plugin_status(
    identity: Annotated[PluginIdentity, Depends(require_plugin_identity)],
    plan: Annotated[str, Depends(get_plan_tier)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    vault: Annotated[Any, Depends(get_token_vault)],
    guard: Annotated[Any, Depends(get_usage_guard)],
) -> dict:
    connection = await describe_connection(vault, identity)
    limit = settings.usage.limit_for(plan, GA4_REPORTS_FEATURE)
    snapshot = await guard.current_usage(identity, GA4_REPORTS_FEATURE, limit)
    return {
        "ok": True,
        **connection.model_dump(by_alias=True, exclude_none=True),
        "plan": plan,
        "usage": usage_info(snapshot).model_dump(by_alias=True),
        "upgradeUrl": settings.usage.upgrade_url,
    }


@router.get("/v1/properties")
async def plugin_properties(
    identity: Annotated[PluginIdentity, Depends(require_plugin_identity)],
    analytics: Annotated[Any, Depends(get_analytics_client)],
) -> dict:
    properties = await analytics.list_properties(identity)
    return {"ok": True, "properties": properties}


@router.post("/v1/query")
async def plugin_query(
    query: ReportQuery,
    identity: Annotated[PluginIdentity, Depends(require_plugin_identity)],
    plan: Annotated[str, Depends(get_plan_tier)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    guard: Annotated[Any, Depends(get_usage_guard)],
    allowance: Annotated[Any, Depends(get_property_allowance)],
    analytics: Annotated[Any, Depends(get_analytics_client)],
) -> dict:
    result = await run_guarded_report(
        identity,
        query,
        plan=plan,
        settings=settings,
        guard=guard,
        allowance=allowance,
        analytics=analytics,
    )
    return result.model_dump(by_alias=True)


__all__ = ["router"]
