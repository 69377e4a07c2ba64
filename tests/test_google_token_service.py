from __future__ import annotations

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import asyncio

import pytest

from app.clients.google_auth import OAuthTokenExchangeError
from app.core.config import RefreshSettings
from app.core.errors import (
    CredentialCorruptError,
    NoRefreshTokenError,
    NotConnectedError,
    ProviderUnavailableError,
    RefreshFailedError,
)
from app.models.identity import PluginIdentity, WebIdentity, refresh_lock_key
from app.models.oauth import CredentialRecord, TokenGrant
from app.services.google_tokens import GoogleTokenService
from app.services.token_cipher import TokenCipherService
from app.services.token_vault import TokenVault


class DummyOAuthClient:
    def __init__(
        self,
        *,
        grant: TokenGrant | None = None,
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.grant = grant or TokenGrant(access_token="refreshed-access", expires_in=3600)
        self.error = error
        self.gate = gate
        self.calls: list[str] = []

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        self.calls.append(refresh_token)
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0.01)
        if self.error is not None:
            raise self.error
        return self.grant


def _settings(**overrides) -> RefreshSettings:
    values = {
        "safety_margin_seconds": 60,
        "lock_ttl_seconds": 30,
        "wait_timeout_seconds": 1.0,
        "poll_interval_seconds": 0.01,
    }
    values.update(overrides)
    return RefreshSettings(**values)


def _record(clock, *, expires_in_seconds: int, refresh_token: str | None = "refresh-token") -> CredentialRecord:
    return CredentialRecord(
        access_token="initial-token",
        refresh_token=refresh_token,
        scope="analytics.readonly",
        expires_at_ms=clock.ms() + expires_in_seconds * 1000,
        saved_at_ms=clock.ms(),
    )


def _service(vault, store, clock, oauth_client, **settings) -> GoogleTokenService:
    return GoogleTokenService(
        vault=vault,
        store=store,
        oauth_client=oauth_client,
        settings=_settings(**settings),
        clock_ms=clock.ms,
    )


@pytest.mark.asyncio
async def test_returns_stored_token_while_fresh(vault, store, clock) -> None:
    identity = WebIdentity(session_id="sid-1")
    await vault.put(identity, _record(clock, expires_in_seconds=3600))
    oauth_client = DummyOAuthClient()

    token = await _service(vault, store, clock, oauth_client).get_fresh_access_token(identity)

    assert token == "initial-token"
    assert oauth_client.calls == []


@pytest.mark.asyncio
async def test_refreshes_inside_safety_margin(vault, store, clock) -> None:
    identity = WebIdentity(session_id="sid-1")
    await vault.put(identity, _record(clock, expires_in_seconds=30))
    oauth_client = DummyOAuthClient()

    token = await _service(vault, store, clock, oauth_client).get_fresh_access_token(identity)

    assert token == "refreshed-access"
    assert oauth_client.calls == ["refresh-token"]


@pytest.mark.asyncio
async def test_refresh_updates_record_and_keeps_refresh_token(vault, store, clock) -> None:
    identity = PluginIdentity(user_id="u-1")
    await vault.put(identity, _record(clock, expires_in_seconds=-60))
    service = _service(vault, store, clock, DummyOAuthClient())

    credentials = await service.get_credentials(identity)

    assert credentials.token == "refreshed-access"
    stored = await vault.get(identity)
    assert stored is not None
    assert stored.access_token == "refreshed-access"
    assert stored.refresh_token == "refresh-token"
    assert stored.expires_at_ms == clock.ms() + 3600 * 1000
    assert await store.get(refresh_lock_key(identity)) is None


@pytest.mark.asyncio
async def test_rotated_refresh_token_replaces_stored_one(vault, store, clock) -> None:
    identity = WebIdentity(session_id="sid-1")
    await vault.put(identity, _record(clock, expires_in_seconds=-60))
    grant = TokenGrant(access_token="new-access", expires_in=3600, refresh_token="rotated")

    await _service(vault, store, clock, DummyOAuthClient(grant=grant)).get_fresh_access_token(identity)

    stored = await vault.get(identity)
    assert stored is not None and stored.refresh_token == "rotated"


@pytest.mark.asyncio
async def test_missing_record_is_not_connected(vault, store, clock) -> None:
    service = _service(vault, store, clock, DummyOAuthClient())

    with pytest.raises(NotConnectedError):
        await service.get_fresh_access_token(WebIdentity(session_id="nobody"))


@pytest.mark.asyncio
async def test_expired_without_refresh_token(vault, store, clock) -> None:
    identity = WebIdentity(session_id="sid-1")
    await vault.put(identity, _record(clock, expires_in_seconds=-60, refresh_token=None))
    oauth_client = DummyOAuthClient()

    with pytest.raises(NoRefreshTokenError):
        await _service(vault, store, clock, oauth_client).get_fresh_access_token(identity)
    assert oauth_client.calls == []


@pytest.mark.asyncio
async def test_corrupt_record_is_distinct_from_not_connected(store, clock) -> None:
    identity = WebIdentity(session_id="sid-1")
    await TokenVault(store, TokenCipherService(secret="old")).put(
        identity, _record(clock, expires_in_seconds=3600)
    )
    vault = TokenVault(store, TokenCipherService(secret="rotated"))

    with pytest.raises(CredentialCorruptError):
        await _service(vault, store, clock, DummyOAuthClient()).get_fresh_access_token(identity)


@pytest.mark.asyncio
async def test_provider_rejection_leaves_record_untouched(vault, store, clock) -> None:
    identity = WebIdentity(session_id="sid-1")
    original = _record(clock, expires_in_seconds=-60)
    await vault.put(identity, original)
    oauth_client = DummyOAuthClient(
        error=OAuthTokenExchangeError("rejected", error_code="invalid_grant")
    )

    with pytest.raises(RefreshFailedError):
        await _service(vault, store, clock, oauth_client).get_fresh_access_token(identity)

    assert await vault.get(identity) == original
    assert await store.get(refresh_lock_key(identity)) is None


@pytest.mark.asyncio
async def test_provider_outage_is_retryable(vault, store, clock) -> None:
    identity = WebIdentity(session_id="sid-1")
    original = _record(clock, expires_in_seconds=-60)
    await vault.put(identity, original)
    oauth_client = DummyOAuthClient(error=ProviderUnavailableError("Token refresh timed out."))

    with pytest.raises(ProviderUnavailableError) as excinfo:
        await _service(vault, store, clock, oauth_client).get_fresh_access_token(identity)

    assert excinfo.value.retryable is True
    assert await vault.get(identity) == original


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(vault, store, clock) -> None:
    identity = WebIdentity(session_id="sid-1")
    await vault.put(identity, _record(clock, expires_in_seconds=-60))
    oauth_client = DummyOAuthClient()
    service = _service(vault, store, clock, oauth_client)

    tokens = await asyncio.gather(*(service.get_fresh_access_token(identity) for _ in range(10)))

    assert tokens == ["refreshed-access"] * 10
    assert oauth_client.calls == ["refresh-token"]


@pytest.mark.asyncio
async def test_different_identities_refresh_independently(vault, store, clock) -> None:
    first = WebIdentity(session_id="sid-1")
    second = PluginIdentity(user_id="sid-1")
    await vault.put(first, _record(clock, expires_in_seconds=-60))
    await vault.put(second, _record(clock, expires_in_seconds=-60))
    oauth_client = DummyOAuthClient()
    service = _service(vault, store, clock, oauth_client)

    await asyncio.gather(
        service.get_fresh_access_token(first),
        service.get_fresh_access_token(second),
    )

    assert len(oauth_client.calls) == 2


@pytest.mark.asyncio
async def test_failed_refresh_fails_every_waiter(vault, store, clock) -> None:
    identity = WebIdentity(session_id="sid-1")
    await vault.put(identity, _record(clock, expires_in_seconds=-60))
    oauth_client = DummyOAuthClient(error=OAuthTokenExchangeError("rejected"))
    service = _service(vault, store, clock, oauth_client)

    results = await asyncio.gather(
        *(service.get_fresh_access_token(identity) for _ in range(3)),
        return_exceptions=True,
    )

    assert all(isinstance(result, RefreshFailedError) for result in results)
    assert len(oauth_client.calls) == 1


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_shared_refresh(vault, store, clock) -> None:
    identity = WebIdentity(session_id="sid-1")
    await vault.put(identity, _record(clock, expires_in_seconds=-60))
    gate = asyncio.Event()
    oauth_client = DummyOAuthClient(gate=gate)
    service = _service(vault, store, clock, oauth_client)

    first = asyncio.create_task(service.get_fresh_access_token(identity))
    second = asyncio.create_task(service.get_fresh_access_token(identity))
    await asyncio.sleep(0.01)
    first.cancel()
    await asyncio.sleep(0)
    gate.set()

    assert await second == "refreshed-access"
    with pytest.raises(asyncio.CancelledError):
        await first
    assert oauth_client.calls == ["refresh-token"]
    stored = await vault.get(identity)
    assert stored is not None and stored.access_token == "refreshed-access"


@pytest.mark.asyncio
async def test_waits_for_refresh_held_by_another_process(vault, store, clock) -> None:
    identity = WebIdentity(session_id="sid-1")
    await vault.put(identity, _record(clock, expires_in_seconds=-60))
    lock_key = refresh_lock_key(identity)
    await store.set(lock_key, "peer-process", ttl_seconds=30)
    oauth_client = DummyOAuthClient()
    service = _service(vault, store, clock, oauth_client)

    async def peer_refresh() -> None:
        await asyncio.sleep(0.05)
        refreshed = _record(clock, expires_in_seconds=3600).model_copy(
            update={"access_token": "peer-access"}
        )
        await vault.put(identity, refreshed)
        await store.delete(lock_key)

    token, _ = await asyncio.gather(service.get_fresh_access_token(identity), peer_refresh())

    assert token == "peer-access"
    assert oauth_client.calls == []


@pytest.mark.asyncio
async def test_takes_over_when_peer_gives_up_without_refreshing(vault, store, clock) -> None:
    identity = WebIdentity(session_id="sid-1")
    await vault.put(identity, _record(clock, expires_in_seconds=-60))
    lock_key = refresh_lock_key(identity)
    await store.set(lock_key, "peer-process", ttl_seconds=30)
    oauth_client = DummyOAuthClient()
    service = _service(vault, store, clock, oauth_client)

    async def peer_gives_up() -> None:
        await asyncio.sleep(0.05)
        await store.delete(lock_key)

    token, _ = await asyncio.gather(service.get_fresh_access_token(identity), peer_gives_up())

    assert token == "refreshed-access"
    assert oauth_client.calls == ["refresh-token"]


@pytest.mark.asyncio
async def test_gives_up_waiting_on_a_stuck_peer(vault, store, clock) -> None:
    identity = WebIdentity(session_id="sid-1")
    await vault.put(identity, _record(clock, expires_in_seconds=-60))
    await store.set(refresh_lock_key(identity), "peer-process", ttl_seconds=30)
    oauth_client = DummyOAuthClient()
    service = _service(vault, store, clock, oauth_client, wait_timeout_seconds=0.05)

    with pytest.raises(ProviderUnavailableError):
        await service.get_fresh_access_token(identity)
    assert oauth_client.calls == []
