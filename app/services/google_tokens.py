"""
Helpers for retrieving and refreshing Google OAuth tokens.

Refreshes are single-flight per identity at two levels:

* inside a process, concurrent callers share one ``asyncio.Task``;
* across processes, the task first takes a short-TTL marker key with
  ``SET NX``. A process that finds the marker held polls the vault until the
  peer's refreshed record appears instead of calling Google itself.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import secrets
import time
from typing import Callable, Dict, Optional

from google.oauth2.credentials import Credentials

from app.clients.google_auth import GoogleOAuthClient, OAuthTokenExchangeError
from app.clients.kv_store import KeyValueStore
from app.core.config import RefreshSettings
from app.core.errors import (
    NoRefreshTokenError,
    NotConnectedError,
    ProviderUnavailableError,
    RefreshFailedError,
    StoreUnavailableError,
)
from app.models.identity import CallerIdentity, describe_identity, refresh_lock_key
from app.models.oauth import CredentialRecord
from app.services.token_vault import TokenVault

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class GoogleTokenService:
    """Hands out access tokens that are valid for at least the safety margin."""

    def __init__(
        self,
        vault: TokenVault,
        store: KeyValueStore,
        oauth_client: GoogleOAuthClient,
        settings: RefreshSettings,
        *,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._vault = vault
        self._store = store
        self._oauth = oauth_client
        self._settings = settings
        self._clock_ms = clock_ms
        self._inflight: Dict[CallerIdentity, asyncio.Task[str]] = {}

    def _is_fresh(self, record: CredentialRecord) -> bool:
        return record.is_fresh(
            now_ms=self._clock_ms(),
            margin_ms=self._settings.safety_margin_seconds * 1000,
        )

    async def get_fresh_access_token(self, identity: CallerIdentity) -> str:
        """
        Return a usable access token for ``identity``.

        Raises ``NotConnectedError``, ``CredentialCorruptError``,
        ``NoRefreshTokenError`` or ``RefreshFailedError``; timeouts surface as
        the retryable ``ProviderUnavailableError``/``StoreUnavailableError``.
        """
        record = await self._vault.get(identity)
        if record is None:
            logger.info("No Google credentials stored for %s", describe_identity(identity))
            raise NotConnectedError()
        if self._is_fresh(record):
            return record.access_token
        if not record.refresh_token:
            logger.info("Access token expired without refresh token for %s", describe_identity(identity))
            raise NoRefreshTokenError()
        return await self._join_refresh(identity)

    async def get_credentials(self, identity: CallerIdentity) -> Credentials:
        """Wrap a fresh access token for Google API client libraries."""
        access_token = await self.get_fresh_access_token(identity)
        # No refresh material here: refreshing must go through this service.
        return Credentials(token=access_token)

    async def _join_refresh(self, identity: CallerIdentity) -> str:
        task = self._inflight.get(identity)
        if task is None:
            task = asyncio.create_task(self._refresh(identity))
            self._inflight[identity] = task
            task.add_done_callback(functools.partial(self._forget, identity))
        # A cancelled waiter must not cancel the refresh other waiters share.
        return await asyncio.shield(task)

    def _forget(self, identity: CallerIdentity, task: asyncio.Task[str]) -> None:
        if self._inflight.get(identity) is task:
            del self._inflight[identity]
        if not task.cancelled():
            task.exception()

    async def _refresh(self, identity: CallerIdentity) -> str:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.wait_timeout_seconds
        lock_key = refresh_lock_key(identity)

        while True:
            lock_token = secrets.token_hex(16)
            acquired = await self._store.set(
                lock_key,
                lock_token,
                ttl_seconds=self._settings.lock_ttl_seconds,
                only_if_absent=True,
            )
            if acquired:
                try:
                    return await self._refresh_locked(identity)
                finally:
                    await self._release(lock_key, lock_token, identity)

            logger.debug("Refresh for %s already in progress elsewhere", describe_identity(identity))
            access_token = await self._wait_for_peer(identity, lock_key, deadline)
            if access_token is not None:
                return access_token

    async def _refresh_locked(self, identity: CallerIdentity) -> str:
        record = await self._vault.get(identity)
        if record is None:
            raise NotConnectedError()
        if self._is_fresh(record):
            return record.access_token
        if not record.refresh_token:
            raise NoRefreshTokenError()

        refreshed_at = self._clock_ms()
        try:
            grant = await self._oauth.refresh_token(record.refresh_token)
        except OAuthTokenExchangeError as exc:
            # The stale record stays in place so a later call can retry.
            logger.warning(
                "Google rejected token refresh for %s (%s)",
                describe_identity(identity),
                exc.error_code or "no error code",
            )
            raise RefreshFailedError() from exc

        updated = record.refreshed(grant, now_ms=refreshed_at)
        await self._vault.put(identity, updated)
        logger.info(
            "Refreshed Google access token for %s (rotated refresh token: %s)",
            describe_identity(identity),
            bool(grant.refresh_token),
        )
        return updated.access_token

    async def _wait_for_peer(
        self, identity: CallerIdentity, lock_key: str, deadline: float
    ) -> Optional[str]:
        """Poll until a peer's refresh lands; ``None`` if its marker vanished first."""
        loop = asyncio.get_running_loop()
        while loop.time() < deadline:
            await asyncio.sleep(self._settings.poll_interval_seconds)
            record = await self._vault.get(identity)
            if record is None:
                raise NotConnectedError()
            if self._is_fresh(record):
                return record.access_token
            if await self._store.get(lock_key) is None:
                return None
        raise ProviderUnavailableError("Timed out waiting for a concurrent token refresh.")

    async def _release(self, lock_key: str, lock_token: str, identity: CallerIdentity) -> None:
        # Check-then-delete is not atomic; a marker taken over after its TTL
        # lapsed can be removed early, which only allows one extra refresh.
        try:
            if await self._store.get(lock_key) == lock_token:
                await self._store.delete(lock_key)
        except StoreUnavailableError:
            logger.warning(
                "Could not release refresh marker for %s; it expires in %ss",
                describe_identity(identity),
                self._settings.lock_ttl_seconds,
            )


__all__ = ["GoogleTokenService"]
