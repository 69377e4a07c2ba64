"""
Single-use authorization codes for the plugin OAuth flow.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Callable, Optional

from pydantic import ValidationError

from app.clients.kv_store import KeyValueStore
from app.core.errors import CodeNotFoundOrExpiredError
from app.models.identity import CallerIdentity, auth_code_key, describe_identity
from app.models.oauth import AuthorizationGrant

logger = logging.getLogger(__name__)

AUTH_CODE_TTL_SECONDS = 600


def _now_ms() -> int:
    return int(time.time() * 1000)


class AuthorizationCodeBroker:
    """Issue and redeem codes binding a plugin token exchange to an identity."""

    _CODE_BYTES = 32

    def __init__(
        self,
        store: KeyValueStore,
        *,
        ttl_seconds: int = AUTH_CODE_TTL_SECONDS,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._clock_ms = clock_ms

    async def issue(
        self,
        identity: CallerIdentity,
        scope: str,
        *,
        redirect_uri: Optional[str] = None,
    ) -> str:
        code = secrets.token_urlsafe(self._CODE_BYTES)
        grant = AuthorizationGrant(
            identity=identity,
            scope=scope,
            issued_at_ms=self._clock_ms(),
            redirect_uri=redirect_uri,
        )
        await self._store.set(
            auth_code_key(code), grant.model_dump_json(), ttl_seconds=self._ttl_seconds
        )
        logger.info("Issued authorization code for %s", describe_identity(identity))
        return code

    async def redeem(
        self, code: str, *, redirect_uri: Optional[str] = None
    ) -> AuthorizationGrant:
        """
        Consume ``code`` and return what it was bound to.

        Only the caller whose ``DEL`` removes the key wins, so concurrent
        redemptions of one code produce exactly one success. Unknown, expired
        and already-used codes fail identically.
        """
        if not code:
            raise CodeNotFoundOrExpiredError()
        key = auth_code_key(code)
        raw = await self._store.get(key)
        if raw is None:
            raise CodeNotFoundOrExpiredError()
        if not await self._store.delete(key):
            logger.warning("Authorization code redeemed concurrently; rejecting late redemption")
            raise CodeNotFoundOrExpiredError()

        try:
            grant = AuthorizationGrant.model_validate_json(raw)
        except ValidationError as exc:
            logger.error("Stored authorization code payload is malformed")
            raise CodeNotFoundOrExpiredError() from exc

        if self._clock_ms() - grant.issued_at_ms > self._ttl_seconds * 1000:
            logger.info("Authorization code outlived its TTL in the store")
            raise CodeNotFoundOrExpiredError()
        if grant.redirect_uri and redirect_uri != grant.redirect_uri:
            logger.warning("Authorization code presented without its bound redirect_uri")
            raise CodeNotFoundOrExpiredError()
        return grant


__all__ = ["AUTH_CODE_TTL_SECONDS", "AuthorizationCodeBroker"]
