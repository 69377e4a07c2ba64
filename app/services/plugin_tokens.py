"""Signed bearer tokens issued to the plugin client."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from typing import Literal, Optional

import jwt

from app.models.identity import PluginIdentity

TokenKind = Literal["access", "refresh"]

JWT_ALGORITHM = "HS256"
TOKEN_ISSUER = "analytics-credential-broker"


@dataclass(slots=True)
class IssuedToken:
    token: str
    kind: TokenKind
    expires_in: int
    scope: str


@dataclass(slots=True)
class VerifiedToken:
    identity: PluginIdentity
    kind: TokenKind
    scope: str


class PluginTokenSigner:
    """
    Mint and verify self-contained plugin tokens as HS256 JWTs.

    The plugin user id (``sub``), scope, kind (``typ``) and expiry are embedded
    at issuance, so verification needs no store lookup.
    """

    def __init__(
        self,
        *,
        secret: str,
        access_ttl_seconds: int = 3600,
        refresh_ttl_seconds: int = 60 * 60 * 24 * 30,
    ) -> None:
        if not secret:
            raise ValueError("Signing secret must be provided.")
        self._secret = secret
        self._ttls = {"access": access_ttl_seconds, "refresh": refresh_ttl_seconds}

    def issue(self, identity: PluginIdentity, scope: str, *, kind: TokenKind = "access") -> IssuedToken:
        ttl = self._ttls[kind]
        now = int(time.time())
        claims = {
            "iss": TOKEN_ISSUER,
            "sub": identity.user_id,
            "scope": scope,
            "typ": kind,
            "iat": now,
            "exp": now + ttl,
            "jti": secrets.token_hex(8),
        }
        token = jwt.encode(claims, self._secret, algorithm=JWT_ALGORITHM)
        return IssuedToken(token=token, kind=kind, expires_in=ttl, scope=scope)

    def verify(self, token: str, *, expected_kind: TokenKind = "access") -> Optional[VerifiedToken]:
        """Return the embedded claims, or ``None`` for anything not valid right now."""
        if not token:
            return None
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                issuer=TOKEN_ISSUER,
                options={"require": ["exp", "sub", "iss"]},
            )
        except jwt.PyJWTError:
            return None
        subject = claims.get("sub")
        if claims.get("typ") != expected_kind or not isinstance(subject, str) or not subject:
            return None
        return VerifiedToken(
            identity=PluginIdentity(user_id=subject),
            kind=expected_kind,
            scope=str(claims.get("scope") or ""),
        )


__all__ = ["IssuedToken", "JWT_ALGORITHM", "PluginTokenSigner", "TokenKind", "VerifiedToken"]
