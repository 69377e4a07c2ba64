"""
Domain models for OAuth credential persistence.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from app.models.identity import CallerIdentity


class TokenGrant(BaseModel):
    """Token endpoint response, reduced to the fields the broker uses."""

    access_token: str
    expires_in: int
    refresh_token: Optional[str] = None
    scope: Optional[str] = None


class CredentialRecord(BaseModel):
    """Google OAuth material held by the vault for one caller identity."""

    access_token: str
    refresh_token: Optional[str] = None
    scope: str = ""
    expires_at_ms: int
    saved_at_ms: int

    @classmethod
    def from_grant(cls, grant: TokenGrant, *, now_ms: int) -> "CredentialRecord":
        """Build a record at issuance time; expiry is derived from ``expires_in``."""
        return cls(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            scope=grant.scope or "",
            expires_at_ms=now_ms + grant.expires_in * 1000,
            saved_at_ms=now_ms,
        )

    def refreshed(self, grant: TokenGrant, *, now_ms: int) -> "CredentialRecord":
        """Apply a refresh response, keeping the refresh token unless rotated."""
        return CredentialRecord(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or self.refresh_token,
            scope=grant.scope or self.scope,
            expires_at_ms=now_ms + grant.expires_in * 1000,
            saved_at_ms=now_ms,
        )

    def is_fresh(self, *, now_ms: int, margin_ms: int = 0) -> bool:
        return self.expires_at_ms - margin_ms > now_ms


class AuthorizationGrant(BaseModel):
    """What a single-use plugin authorization code is bound to."""

    identity: CallerIdentity
    scope: str
    issued_at_ms: int
    redirect_uri: Optional[str] = Field(
        None, description="Plugin redirect URI the code was delivered to."
    )


class PendingAuthorization(BaseModel):
    """
    Server-side half of a Google consent round trip.

    Stored under a random state id that is the only thing sent through the
    browser; the PKCE verifier never leaves the server.
    """

    identity: CallerIdentity
    code_verifier: str
    created_at_ms: int
    redirect_to: Optional[str] = None
    plugin_state: Optional[str] = None
    plugin_redirect_uri: Optional[str] = None
    scope: str = ""

    @property
    def flow(self) -> str:
        return self.identity.kind


__all__ = ["AuthorizationGrant", "CredentialRecord", "PendingAuthorization", "TokenGrant"]
