"""
Google OAuth utilities.

These helpers build the consent URL, exchange authorization codes and refresh
access tokens against Google's token endpoint.
"""

from __future__ import annotations

import base64
import secrets
from hashlib import sha256
from typing import Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx
from fastapi import status

from app.core.config import GoogleSettings, OAuthSettings
from app.core.errors import ProviderUnavailableError
from app.models.oauth import TokenGrant
from app.utils.http import transport_errors_as


def generate_pkce_pair() -> Tuple[str, str]:
    """Return a ``(code_verifier, code_challenge)`` pair for the S256 method."""
    verifier = secrets.token_urlsafe(48)
    digest = sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    return verifier, challenge


class OAuthTokenExchangeError(Exception):
    """Raised when the token endpoint rejects a grant (4xx)."""

    def __init__(self, message: str, *, error_code: str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code


class GoogleOAuthClient:
    """Build Google authorization URLs, exchange codes and refresh tokens."""

    AUTH_BASE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"

    def __init__(
        self,
        google_settings: GoogleSettings,
        oauth_settings: OAuthSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._google = google_settings
        self._oauth = oauth_settings
        self._transport = transport

    def build_authorization_url(
        self,
        state: str,
        *,
        code_challenge: Optional[str] = None,
        access_type: str = "offline",
    ) -> str:
        """Construct the Google OAuth consent URL."""
        params = {
            "client_id": self._google.client_id,
            "redirect_uri": str(self._google.redirect_uri),
            "response_type": "code",
            "scope": " ".join(self._oauth.scopes),
            "access_type": access_type,
            "include_granted_scopes": "true",
            # Google only re-issues a refresh token on an explicit consent screen.
            "prompt": "consent",
            "state": state,
        }
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        query = urlencode(params)
        return f"{self.AUTH_BASE_URL}?{query}"

    async def exchange_authorization_code(
        self, code: str, *, code_verifier: Optional[str] = None
    ) -> TokenGrant:
        """Exchange an authorization code for tokens."""
        payload = {
            "code": code,
            "client_id": self._google.client_id,
            "client_secret": self._google.client_secret,
            "redirect_uri": str(self._google.redirect_uri),
            "grant_type": "authorization_code",
        }
        if code_verifier:
            payload["code_verifier"] = code_verifier
        return await self._post_token(payload, operation="Authorization code exchange")

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Refresh the access token using a stored refresh token."""
        payload = {
            "client_id": self._google.client_id,
            "client_secret": self._google.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        return await self._post_token(payload, operation="Token refresh")

    async def _post_token(self, payload: Dict[str, str], *, operation: str) -> TokenGrant:
        with transport_errors_as(ProviderUnavailableError, operation):
            async with httpx.AsyncClient(
                timeout=self._oauth.http_timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(self.TOKEN_URL, data=payload)

        if response.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            raise ProviderUnavailableError(
                f"{operation} failed with status {response.status_code}."
            )

        try:
            token_payload = response.json()
        except ValueError:
            token_payload = {}

        if response.status_code != status.HTTP_200_OK:
            error_code = token_payload.get("error")
            raise OAuthTokenExchangeError(
                f"{operation} rejected: {error_code or response.status_code}",
                error_code=error_code,
            )

        access_token = token_payload.get("access_token")
        expires_in = token_payload.get("expires_in")
        if not access_token or not expires_in:
            raise OAuthTokenExchangeError(f"Incomplete {operation.lower()} payload returned from Google.")

        return TokenGrant(
            access_token=access_token,
            expires_in=int(expires_in),
            refresh_token=token_payload.get("refresh_token"),
            scope=token_payload.get("scope"),
        )


__all__ = [
    "GoogleOAuthClient",
    "OAuthTokenExchangeError",
    "generate_pkce_pair",
]
