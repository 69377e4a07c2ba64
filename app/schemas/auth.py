"""Schemas related to OAuth flows."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class OAuthCallbackPayload(BaseModel):
    """Payload sent to complete the OAuth callback exchange."""

    code: str = Field(..., description="Authorization code returned by Google OAuth.")
    state: str = Field(..., description="Opaque state token issued when starting OAuth.")


class ConnectionStatus(BaseModel):
    """Whether the caller has usable Google credentials; never the token itself."""

    connected: bool
    has_tokens: bool = Field(..., serialization_alias="hasTokens")
    expired: bool = False
    corrupt: bool = False
    scope: Optional[str] = None


class PluginTokenResponse(BaseModel):
    """RFC 6749 token endpoint response issued to the plugin."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: Optional[str] = None
    scope: str


class OAuthErrorResponse(BaseModel):
    error: str
    error_description: Optional[str] = None


__all__ = [
    "ConnectionStatus",
    "OAuthCallbackPayload",
    "OAuthErrorResponse",
    "PluginTokenResponse",
]
