"""Resolve the caller identity of an inbound request."""

from __future__ import annotations

import hmac
from typing import Mapping, Optional

from fastapi import Request

from app.models.identity import CallerIdentity, PluginIdentity, WebIdentity
from app.services.plugin_tokens import PluginTokenSigner

_BEARER_PREFIX = "bearer "


def _constant_time_equals(left: str | None, right: str | None) -> bool:
    if not left or not right:
        return False
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


class IdentityResolver:
    """
    Map request cookies or bearer tokens to a :data:`CallerIdentity`.

    Resolution never raises on malformed input and never invents an
    identity: anything unrecognised yields ``None``.
    """

    def __init__(
        self,
        *,
        cookie_name: str,
        token_signer: PluginTokenSigner,
        client_id: str | None,
        client_secret: str | None,
    ) -> None:
        self._cookie_name = cookie_name
        self._signer = token_signer
        self._client_id = client_id
        self._client_secret = client_secret

    @property
    def cookie_name(self) -> str:
        return self._cookie_name

    def from_cookies(self, cookies: Mapping[str, str]) -> Optional[WebIdentity]:
        session_id = (cookies.get(self._cookie_name) or "").strip()
        if not session_id:
            return None
        return WebIdentity(session_id=session_id)

    def from_authorization(self, header: str | None) -> Optional[PluginIdentity]:
        if not header or not header.lower().startswith(_BEARER_PREFIX):
            return None
        verified = self._signer.verify(header[len(_BEARER_PREFIX) :].strip())
        return verified.identity if verified else None

    def resolve(self, request: Request) -> Optional[CallerIdentity]:
        """Bearer token first, then the session cookie."""
        authorization = request.headers.get("authorization")
        if authorization:
            return self.from_authorization(authorization)
        return self.from_cookies(request.cookies)

    def is_known_client(self, client_id: str | None) -> bool:
        return _constant_time_equals(client_id, self._client_id)

    def authenticate_client(self, client_id: str | None, client_secret: str | None) -> bool:
        # Evaluate both comparisons so timing does not reveal which one failed.
        id_ok = self.is_known_client(client_id)
        secret_ok = _constant_time_equals(client_secret, self._client_secret)
        return id_ok and secret_ok


__all__ = ["IdentityResolver"]
