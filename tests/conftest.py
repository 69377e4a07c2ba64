"""Pytest configuration shared across the suite."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import copy
import time
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from app.clients.sqlite_store import SQLiteKeyValueStore
from app.core.config import RefreshSettings
from app.models.oauth import TokenGrant
from app.services.auth_codes import AuthorizationCodeBroker
from app.services.data_limits import PropertyAllowance
from app.services.google_tokens import GoogleTokenService
from app.services.oauth_state import OAuthStateStore
from app.services.token_cipher import TokenCipherService
from app.services.token_vault import TokenVault
from app.services.usage_guard import UsageGuard


class FakeClock:
    """Manually advanced wall clock shared by the store and the services."""

    def __init__(self, start: float = 1_760_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def ms(self) -> int:
        return int(self.now * 1000)

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock) -> SQLiteKeyValueStore:
    return SQLiteKeyValueStore(str(tmp_path / "kv.sqlite3"), clock=clock)


@pytest.fixture
def cipher() -> TokenCipherService:
    return TokenCipherService(secret="vault-secret")


@pytest.fixture
def vault(store, cipher) -> TokenVault:
    return TokenVault(store, cipher)


class DummyOAuthClient:
    def __init__(self) -> None:
        self.states: list[str] = []
        self.challenges: list[str | None] = []
        self.codes: list[str] = []
        self.verifiers: list[str | None] = []
        self.grant = TokenGrant(
            access_token="access-token",
            refresh_token="refresh-token",
            expires_in=3600,
            scope="https://www.googleapis.com/auth/analytics.readonly",
        )

    def build_authorization_url(self, state: str, *, code_challenge: str | None = None) -> str:
        self.states.append(state)
        self.challenges.append(code_challenge)
        return f"https://oauth.example.com/auth?state={state}"

    async def exchange_authorization_code(
        self, code: str, *, code_verifier: str | None = None
    ) -> TokenGrant:
        self.codes.append(code)
        self.verifiers.append(code_verifier)
        return self.grant

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        return self.grant


class DummyAnalyticsClient:
    """Stands in for the Google APIs but still asks the refresh engine for a token."""

    def __init__(self, token_service) -> None:
        self.token_service = token_service
        self.reports: list[tuple[object, str, dict]] = []

    async def list_properties(self, identity) -> list[dict]:
        await self.token_service.get_fresh_access_token(identity)
        return [{"property": "properties/123", "propertyDisplayName": "Demo"}]

    async def run_report(self, identity, *, property_id: str, body: dict) -> dict:
        await self.token_service.get_fresh_access_token(identity)
        self.reports.append((identity, property_id, body))
        return {"rows": [{"metricValues": [{"value": "42"}]}], "rowCount": 1}


@pytest.fixture()
def api_overrides(store, vault, clock):
    """Route the FastAPI app through a temporary store and fake Google clients."""
    from app import dependencies
    from app.core.config import get_settings
    from app.main import app

    settings = copy.deepcopy(get_settings())
    settings.frontend_base_url = None
    settings.usage.free_ga4_reports_per_month = 2

    oauth_client = DummyOAuthClient()
    token_service = GoogleTokenService(
        vault, store, oauth_client, RefreshSettings(), clock_ms=lambda: int(time.time() * 1000)
    )
    analytics = DummyAnalyticsClient(token_service)
    code_broker = AuthorizationCodeBroker(store, clock_ms=clock.ms)
    guard = UsageGuard(
        store,
        upgrade_url=settings.usage.upgrade_url,
        clock=lambda: datetime.fromtimestamp(clock(), timezone.utc),
    )
    state_store = OAuthStateStore(
        store, ttl_seconds=settings.oauth.state_ttl_seconds, clock_ms=clock.ms
    )
    allowance = PropertyAllowance(store, upgrade_url=settings.usage.upgrade_url)

    app.dependency_overrides.update(
        {
            dependencies.get_app_settings: lambda: settings,
            dependencies.get_google_oauth_client: lambda: oauth_client,
            dependencies.get_store: lambda: store,
            dependencies.get_token_vault: lambda: vault,
            dependencies.get_auth_code_broker: lambda: code_broker,
            dependencies.get_usage_guard: lambda: guard,
            dependencies.get_oauth_state_store: lambda: state_store,
            dependencies.get_property_allowance: lambda: allowance,
            dependencies.get_analytics_client: lambda: analytics,
        }
    )

    yield SimpleNamespace(
        app=app,
        settings=settings,
        oauth_client=oauth_client,
        state_store=state_store,
        allowance=allowance,
        analytics=analytics,
        vault=vault,
        store=store,
        clock=clock,
    )

    app.dependency_overrides.clear()
