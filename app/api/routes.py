"""
FastAPI routes for the browser-facing Google Analytics connection.
"""

from __future__ import annotations

import logging
import secrets
import time
from http import HTTPStatus
from typing import Annotated, Any, Optional
from urllib.parse import urlencode, urlsplit

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from app.api.plugin import router as plugin_router
from app.clients.google_auth import OAuthTokenExchangeError
from app.core.config import AppSettings
from app.core.errors import CredentialCorruptError
from app.core.logging import mask_secret
from app.dependencies import (
    get_analytics_client,
    get_app_settings,
    get_auth_code_broker,
    get_google_oauth_client,
    get_identity_resolver,
    get_oauth_state_store,
    get_plan_tier,
    get_property_allowance,
    get_store,
    get_token_vault,
    get_usage_guard,
    require_diagnostics_enabled,
    require_web_identity,
)
from app.models.identity import PluginIdentity, WebIdentity, describe_identity
from app.models.oauth import CredentialRecord
from app.schemas import ConnectionStatus, OAuthCallbackPayload, ReportQuery
from app.services.oauth_state import InvalidStateError
from app.services.reports import describe_connection, run_guarded_report

router = APIRouter()
router.include_router(plugin_router)
logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "").lower()


def _set_session_cookie(response: Response, session_id: str, settings: AppSettings) -> None:
    response.set_cookie(
        key=settings.session.cookie_name,
        value=session_id,
        max_age=settings.session.cookie_max_age_seconds,
        domain=settings.session.cookie_domain,
        secure=settings.session.cookie_secure,
        httponly=True,
        samesite="lax",
        path="/",
    )


def _safe_redirect_target(candidate: Optional[str], settings: AppSettings) -> Optional[str]:
    """Allow same-site relative paths or URLs under the configured front-end."""
    if not candidate:
        return None
    if candidate.startswith("/") and not candidate.startswith("//"):
        return candidate
    if settings.frontend_base_url:
        base = urlsplit(str(settings.frontend_base_url))
        target = urlsplit(candidate)
        if (target.scheme, target.netloc) == (base.scheme, base.netloc):
            return candidate
    return None


def _append_query(url: str, params: dict) -> str:
    separator = "&" if urlsplit(url).query else "?"
    return f"{url}{separator}{urlencode(params)}"


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/auth/google/authorize", status_code=HTTPStatus.OK)
async def start_google_oauth_flow(
    request: Request,
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    oauth_client: Annotated[Any, Depends(get_google_oauth_client)],
    state_store: Annotated[Any, Depends(get_oauth_state_store)],
    resolver: Annotated[Any, Depends(get_identity_resolver)],
    redirect_to: str | None = Query(
        default=None,
        description="Optional path to return to after connecting.",
    ),
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the Google consent screen.",
    ),
) -> Response:
    """
    Kick off the OAuth flow for the browser session.

    The session cookie is minted here when absent. The state sent to Google is
    an opaque single-use id; the session it belongs to and the PKCE verifier
    stay in the store until the callback consumes them.
    """
    identity = resolver.from_cookies(request.cookies) or WebIdentity(
        session_id=secrets.token_urlsafe(32)
    )
    state, code_challenge = await state_store.begin(
        identity, redirect_to=_safe_redirect_target(redirect_to, settings)
    )
    authorization_url = oauth_client.build_authorization_url(
        state=state, code_challenge=code_challenge
    )

    if redirect or _wants_html(request):
        response: Response = RedirectResponse(
            url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT
        )
    else:
        response = JSONResponse({"authorization_url": authorization_url, "state": state})
    _set_session_cookie(response, identity.session_id, settings)
    return response


async def _complete_google_oauth(
    payload: OAuthCallbackPayload,
    *,
    caller: Optional[WebIdentity],
    oauth_client: Any,
    state_store: Any,
    vault: Any,
    code_broker: Any,
) -> dict:
    """Consume the state, exchange the code and store the credential record."""
    try:
        pending = await state_store.consume(payload.state)
    except InvalidStateError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc)) from exc

    identity = pending.identity
    if isinstance(identity, WebIdentity) and identity != caller:
        logger.warning(
            "OAuth callback for %s arrived without that session's cookie",
            describe_identity(identity),
        )
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="OAuth state does not belong to this browser session.",
        )

    try:
        grant = await oauth_client.exchange_authorization_code(
            payload.code, code_verifier=pending.code_verifier
        )
    except OAuthTokenExchangeError as exc:
        logger.warning(
            "Authorization code exchange rejected for %s (%s)",
            describe_identity(identity),
            exc.error_code or "no error code",
        )
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Failed to exchange authorization code.",
        ) from exc

    record = CredentialRecord.from_grant(grant, now_ms=_now_ms())
    if record.refresh_token is None:
        # Reconnecting without a new consent screen returns no refresh token.
        try:
            previous = await vault.get(identity)
        except CredentialCorruptError:
            previous = None
        if previous is not None and previous.refresh_token:
            record = record.model_copy(update={"refresh_token": previous.refresh_token})
    await vault.put(identity, record)
    logger.info(
        "Stored Google credentials for %s (offline access: %s)",
        describe_identity(identity),
        bool(record.refresh_token),
    )

    result: dict = {"status": "connected", "flow": pending.flow}
    if isinstance(identity, PluginIdentity):
        code = await code_broker.issue(
            identity, pending.scope, redirect_uri=pending.plugin_redirect_uri
        )
        result["redirect_to"] = _append_query(
            pending.plugin_redirect_uri, {"code": code, "state": pending.plugin_state or ""}
        )
    else:
        result["redirect_to"] = pending.redirect_to
    return result


@router.post("/auth/google/callback", status_code=HTTPStatus.OK)
async def handle_google_oauth_callback(
    payload: OAuthCallbackPayload,
    request: Request,
    resolver: Annotated[Any, Depends(get_identity_resolver)],
    oauth_client: Annotated[Any, Depends(get_google_oauth_client)],
    state_store: Annotated[Any, Depends(get_oauth_state_store)],
    vault: Annotated[Any, Depends(get_token_vault)],
    code_broker: Annotated[Any, Depends(get_auth_code_broker)],
) -> dict:
    """Complete the OAuth exchange and return redirect metadata."""
    return await _complete_google_oauth(
        payload,
        caller=resolver.from_cookies(request.cookies),
        oauth_client=oauth_client,
        state_store=state_store,
        vault=vault,
        code_broker=code_broker,
    )


@router.get("/auth/google/callback", status_code=HTTPStatus.OK)
async def handle_google_oauth_callback_get(
    request: Request,
    resolver: Annotated[Any, Depends(get_identity_resolver)],
    oauth_client: Annotated[Any, Depends(get_google_oauth_client)],
    state_store: Annotated[Any, Depends(get_oauth_state_store)],
    vault: Annotated[Any, Depends(get_token_vault)],
    code_broker: Annotated[Any, Depends(get_auth_code_broker)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    state: str = Query(..., description="OAuth state id."),
    code: str | None = Query(default=None, description="Authorization code returned by Google."),
    error: str | None = Query(default=None, description="Error reported by Google."),
    redirect: bool = Query(
        default=False,
        description="When true, redirect browser clients instead of returning JSON.",
    ),
) -> Response:
    if error or not code:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail=f"Google authorization was not granted: {error or 'missing code'}.",
        )
    result = await _complete_google_oauth(
        OAuthCallbackPayload(state=state, code=code),
        caller=resolver.from_cookies(request.cookies),
        oauth_client=oauth_client,
        state_store=state_store,
        vault=vault,
        code_broker=code_broker,
    )

    if result["flow"] == "plugin":
        return RedirectResponse(url=result["redirect_to"], status_code=HTTPStatus.FOUND)

    redirect_target = result.get("redirect_to") or settings.frontend_base_url
    if redirect_target and (redirect or _wants_html(request)):
        return RedirectResponse(
            url=str(redirect_target), status_code=HTTPStatus.TEMPORARY_REDIRECT
        )
    return JSONResponse(content=result)


@router.get("/auth/google/status", status_code=HTTPStatus.OK)
async def google_connection_status(
    request: Request,
    resolver: Annotated[Any, Depends(get_identity_resolver)],
    vault: Annotated[Any, Depends(get_token_vault)],
) -> dict:
    identity = resolver.from_cookies(request.cookies)
    if identity is None:
        status = ConnectionStatus(connected=False, has_tokens=False)
    else:
        status = await describe_connection(vault, identity)
    return status.model_dump(by_alias=True, exclude_none=True)


@router.post("/auth/google/disconnect", status_code=HTTPStatus.OK)
async def disconnect_google(
    request: Request,
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    resolver: Annotated[Any, Depends(get_identity_resolver)],
    vault: Annotated[Any, Depends(get_token_vault)],
) -> Response:
    """Forget the session's credentials and clear its cookie."""
    identity = resolver.from_cookies(request.cookies)
    if identity is not None:
        await vault.delete(identity)
        logger.info("Disconnected Google Analytics for %s", describe_identity(identity))
    response = JSONResponse({"ok": True, "connected": False})
    response.delete_cookie(
        key=settings.session.cookie_name,
        domain=settings.session.cookie_domain,
        path="/",
    )
    return response


@router.get("/ga4/properties", status_code=HTTPStatus.OK)
async def list_ga4_properties(
    identity: Annotated[WebIdentity, Depends(require_web_identity)],
    analytics: Annotated[Any, Depends(get_analytics_client)],
) -> dict:
    properties = await analytics.list_properties(identity)
    return {"ok": True, "properties": properties}


@router.post("/ga4/query", status_code=HTTPStatus.OK)
async def run_ga4_query(
    query: ReportQuery,
    identity: Annotated[WebIdentity, Depends(require_web_identity)],
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


@router.get("/dev/selfcheck", status_code=HTTPStatus.OK)
async def selfcheck(
    request: Request,
    settings: Annotated[AppSettings, Depends(require_diagnostics_enabled)],
    resolver: Annotated[Any, Depends(get_identity_resolver)],
    vault: Annotated[Any, Depends(get_token_vault)],
    store: Annotated[Any, Depends(get_store)],
) -> dict:
    """Configuration and session diagnostics; secrets are only ever masked."""
    identity = resolver.from_cookies(request.cookies)
    report: dict = {
        "environment": settings.environment,
        "cookie": {
            "name": settings.session.cookie_name,
            "present": identity is not None,
            "sessionIdLength": len(identity.session_id) if identity else 0,
            "sessionIdMasked": mask_secret(identity.session_id) if identity else "",
        },
        "store": {
            "backend": type(store).__name__,
            "restConfigured": settings.store.remote_configured,
            "restTokenMasked": mask_secret(settings.store.rest_token),
        },
        "google": {
            "clientIdMasked": mask_secret(settings.google.client_id),
            "clientSecretPresent": bool(settings.google.client_secret),
            "redirectUri": str(settings.google.redirect_uri),
            "scopes": list(settings.oauth.scopes),
        },
        "secrets": {
            "tokenEncryptionSecretPresent": bool(settings.security.token_encryption_secret),
            "stateSecretPresent": bool(settings.security.state_secret),
            "pluginTokenSecretPresent": bool(settings.plugin.token_secret),
        },
    }
    if identity is not None:
        status = await describe_connection(vault, identity)
        report["vault"] = status.model_dump(by_alias=True, exclude_none=True)
    return report


__all__ = ["router"]
