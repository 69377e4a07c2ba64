"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache

from app.clients import (
    GoogleAnalyticsClient,
    GoogleOAuthClient,
    KeyValueStore,
    RestKeyValueStore,
    SQLiteKeyValueStore,
)
from app.core.config import get_settings
from app.services import (
    AuthorizationCodeBroker,
    GoogleTokenService,
    IdentityResolver,
    OAuthStateStore,
    PluginTokenSigner,
    PropertyAllowance,
    TokenCipherService,
    TokenVault,
    UsageGuard,
)


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_store() -> KeyValueStore:
    """Provide the shared key-value store, falling back to local SQLite."""
    settings = _settings()
    if settings.store.remote_configured:
        return RestKeyValueStore(settings.store)
    return SQLiteKeyValueStore(settings.store.sqlite_path)


@lru_cache()
def get_oauth_state_store() -> OAuthStateStore:
    """Provide the single-use store for pending consent round trips."""
    settings = _settings()
    return OAuthStateStore(get_store(), ttl_seconds=settings.oauth.state_ttl_seconds)


@lru_cache()
def get_google_oauth_client() -> GoogleOAuthClient:
    """Create a singleton Google OAuth client."""
    settings = _settings()
    return GoogleOAuthClient(settings.google, settings.oauth)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    secret = settings.security.token_encryption_secret or settings.google.client_secret
    return TokenCipherService(secret=secret)


@lru_cache()
def get_token_vault() -> TokenVault:
    return TokenVault(get_store(), get_token_cipher_service())


@lru_cache()
def get_google_token_service() -> GoogleTokenService:
    """Provide the refresh engine; one per process so in-flight refreshes are shared."""
    settings = _settings()
    return GoogleTokenService(
        vault=get_token_vault(),
        store=get_store(),
        oauth_client=get_google_oauth_client(),
        settings=settings.refresh,
    )


@lru_cache()
def get_analytics_client() -> GoogleAnalyticsClient:
    """Provide GA4 Admin/Data client instance."""
    return GoogleAnalyticsClient(get_google_token_service())


@lru_cache()
def get_auth_code_broker() -> AuthorizationCodeBroker:
    settings = _settings()
    return AuthorizationCodeBroker(
        get_store(), ttl_seconds=settings.plugin.auth_code_ttl_seconds
    )


@lru_cache()
def get_plugin_token_signer() -> PluginTokenSigner:
    """Provide the signer for plugin bearer tokens."""
    settings = _settings()
    secret = (
        settings.plugin.token_secret
        or settings.security.state_secret
        or settings.google.client_secret
    )
    return PluginTokenSigner(
        secret=secret,
        access_ttl_seconds=settings.plugin.access_token_ttl_seconds,
        refresh_ttl_seconds=settings.plugin.refresh_token_ttl_seconds,
    )


@lru_cache()
def get_identity_resolver() -> IdentityResolver:
    settings = _settings()
    return IdentityResolver(
        cookie_name=settings.session.cookie_name,
        token_signer=get_plugin_token_signer(),
        client_id=settings.plugin.client_id,
        client_secret=settings.plugin.client_secret,
    )


@lru_cache()
def get_property_allowance() -> PropertyAllowance:
    return PropertyAllowance(get_store(), upgrade_url=_settings().usage.upgrade_url)


@lru_cache()
def get_usage_guard() -> UsageGuard:
    """Provide the monthly quota guard."""
    settings = _settings()
    return UsageGuard(
        get_store(),
        consistency=settings.usage.consistency,
        period_ttl_seconds=settings.usage.period_ttl_seconds,
        upgrade_url=settings.usage.upgrade_url,
    )


__all__ = [
    "get_analytics_client",
    "get_auth_code_broker",
    "get_google_oauth_client",
    "get_google_token_service",
    "get_identity_resolver",
    "get_oauth_state_store",
    "get_plugin_token_signer",
    "get_property_allowance",
    "get_store",
    "get_token_cipher_service",
    "get_token_vault",
    "get_usage_guard",
]
