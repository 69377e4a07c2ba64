"""
Pending Google consent round trips, stored server-side and consumed once.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Callable, Optional, Tuple

from pydantic import ValidationError

from app.clients.google_auth import generate_pkce_pair
from app.clients.kv_store import KeyValueStore
from app.models.identity import CallerIdentity, describe_identity, oauth_state_key
from app.models.oauth import PendingAuthorization

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class InvalidStateError(ValueError):
    """Raised when a state id is unknown, expired, or was already used."""


class OAuthStateStore:
    """Issue opaque state ids for the consent screen and consume them exactly once."""

    _STATE_BYTES = 24

    def __init__(
        self,
        store: KeyValueStore,
        *,
        ttl_seconds: int = 600,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._clock_ms = clock_ms

    async def begin(
        self,
        identity: CallerIdentity,
        *,
        redirect_to: Optional[str] = None,
        plugin_state: Optional[str] = None,
        plugin_redirect_uri: Optional[str] = None,
        scope: str = "",
    ) -> Tuple[str, str]:
        """Persist a pending authorization; return ``(state_id, code_challenge)``."""
        verifier, challenge = generate_pkce_pair()
        state_id = secrets.token_urlsafe(self._STATE_BYTES)
        pending = PendingAuthorization(
            identity=identity,
            code_verifier=verifier,
            created_at_ms=self._clock_ms(),
            redirect_to=redirect_to,
            plugin_state=plugin_state,
            plugin_redirect_uri=plugin_redirect_uri,
            scope=scope,
        )
        await self._store.set(
            oauth_state_key(state_id), pending.model_dump_json(), ttl_seconds=self._ttl_seconds
        )
        return state_id, challenge

    async def consume(self, state_id: str) -> PendingAuthorization:
        """
        Remove and return the pending authorization for ``state_id``.

        As with authorization codes, only the caller whose ``DEL`` removes the
        key wins; every later presentation of the same state fails.
        """
        if not state_id:
            raise InvalidStateError("Missing OAuth state.")
        key = oauth_state_key(state_id)
        raw = await self._store.get(key)
        if raw is None or not await self._store.delete(key):
            raise InvalidStateError("OAuth state is unknown, expired, or already used.")
        try:
            pending = PendingAuthorization.model_validate_json(raw)
        except ValidationError as exc:
            logger.error("Stored OAuth state payload is malformed")
            raise InvalidStateError("OAuth state is unreadable.") from exc
        if self._clock_ms() - pending.created_at_ms > self._ttl_seconds * 1000:
            raise InvalidStateError("OAuth state has expired.")
        logger.debug("Consumed OAuth state for %s", describe_identity(pending.identity))
        return pending


__all__ = ["InvalidStateError", "OAuthStateStore"]
