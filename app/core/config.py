"""
Application configuration models and helpers.

Settings are read from the environment, and an optional ``.env`` file in the
working directory, once at process start and passed into clients and services
by the dependency factories; nothing below the dependency layer reads
``os.environ`` directly.
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated, Optional

from pydantic import AnyHttpUrl, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ENV_FILE = ".env"

_SETTINGS_CONFIG = SettingsConfigDict(
    env_file=ENV_FILE,
    env_file_encoding="utf-8",
    populate_by_name=True,
    extra="ignore",
)


def _split_csv(value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
    if isinstance(value, tuple):
        return value
    if isinstance(value, list):
        return tuple(value)
    return tuple(item.strip() for item in value.split(",") if item.strip())


class GoogleSettings(BaseSettings):
    """Configuration required for interacting with Google OAuth."""

    model_config = _SETTINGS_CONFIG

    client_id: str = Field(..., validation_alias="GOOGLE_CLIENT_ID")
    client_secret: str = Field(..., validation_alias="GOOGLE_CLIENT_SECRET")
    redirect_uri: AnyHttpUrl = Field(..., validation_alias="GOOGLE_REDIRECT_URI")


class OAuthSettings(BaseSettings):
    """Google OAuth flow configuration."""

    model_config = _SETTINGS_CONFIG

    state_ttl_seconds: int = Field(600, validation_alias="OAUTH_STATE_TTL")
    http_timeout_seconds: float = Field(10.0, validation_alias="OAUTH_HTTP_TIMEOUT")
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        (
            "openid",
            "https://www.googleapis.com/auth/userinfo.email",
            "https://www.googleapis.com/auth/analytics.readonly",
        ),
        validation_alias="OAUTH_SCOPES",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        return _split_csv(value)


class StoreSettings(BaseSettings):
    """Key-value store connection settings."""

    model_config = _SETTINGS_CONFIG

    rest_url: Optional[str] = Field(
        None,
        validation_alias="KV_REST_API_URL",
        description="Redis REST endpoint. When unset a local SQLite store is used.",
    )
    rest_token: Optional[str] = Field(None, validation_alias="KV_REST_API_TOKEN")
    http_timeout_seconds: float = Field(5.0, validation_alias="KV_HTTP_TIMEOUT")
    sqlite_path: str = Field("var/kv_store.sqlite3", validation_alias="KV_SQLITE_PATH")

    @property
    def remote_configured(self) -> bool:
        return bool(self.rest_url and self.rest_token)


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = _SETTINGS_CONFIG

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )
    state_secret: Optional[str] = Field(
        None,
        validation_alias="APP_STATE_SECRET",
        description="Fallback signing secret for plugin bearer tokens.",
    )


class SessionSettings(BaseSettings):
    """Browser session cookie configuration."""

    model_config = _SETTINGS_CONFIG

    cookie_name: str = Field("aa_sid", validation_alias="SESSION_COOKIE_NAME")
    cookie_max_age_seconds: int = Field(
        60 * 60 * 24 * 365, validation_alias="SESSION_COOKIE_MAX_AGE"
    )
    cookie_domain: Optional[str] = Field(None, validation_alias="COOKIE_DOMAIN")
    cookie_secure: bool = Field(True, validation_alias="SESSION_COOKIE_SECURE")


class PluginSettings(BaseSettings):
    """OAuth client registration for the external assistant plugin."""

    model_config = _SETTINGS_CONFIG

    client_id: Optional[str] = Field(None, validation_alias="PLUGIN_CLIENT_ID")
    client_secret: Optional[str] = Field(None, validation_alias="PLUGIN_CLIENT_SECRET")
    token_secret: Optional[str] = Field(
        None,
        validation_alias="PLUGIN_TOKEN_SECRET",
        description="Secret used to sign plugin bearer tokens.",
    )
    access_token_ttl_seconds: int = Field(3600, validation_alias="PLUGIN_ACCESS_TOKEN_TTL")
    refresh_token_ttl_seconds: int = Field(
        60 * 60 * 24 * 30, validation_alias="PLUGIN_REFRESH_TOKEN_TTL"
    )
    auth_code_ttl_seconds: int = Field(600, validation_alias="PLUGIN_AUTH_CODE_TTL")
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        ("ga4",), validation_alias="PLUGIN_OAUTH_SCOPES"
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        return _split_csv(value)


class RefreshSettings(BaseSettings):
    """Timing knobs for the access token refresh engine."""

    model_config = _SETTINGS_CONFIG

    safety_margin_seconds: int = Field(60, validation_alias="REFRESH_SAFETY_MARGIN")
    lock_ttl_seconds: int = Field(30, validation_alias="REFRESH_LOCK_TTL")
    wait_timeout_seconds: float = Field(15.0, validation_alias="REFRESH_WAIT_TIMEOUT")
    poll_interval_seconds: float = Field(0.25, validation_alias="REFRESH_POLL_INTERVAL")


class UsageConsistency(str, Enum):
    """How strictly the usage guard enforces limits under concurrency."""

    EXACT = "exact"
    BEST_EFFORT = "best_effort"


class UsageSettings(BaseSettings):
    """Monthly quota configuration."""

    model_config = _SETTINGS_CONFIG

    consistency: UsageConsistency = Field(
        UsageConsistency.EXACT, validation_alias="USAGE_CONSISTENCY"
    )
    period_ttl_seconds: int = Field(60 * 60 * 24 * 45, validation_alias="USAGE_PERIOD_TTL")
    upgrade_url: str = Field(
        "https://analyticsassistant.ai/premium", validation_alias="PREMIUM_URL"
    )
    free_ga4_reports_per_month: int = Field(25, validation_alias="FREE_GA4_REPORTS_PER_MONTH")
    premium_ga4_reports_per_month: int = Field(
        3000, validation_alias="PREMIUM_GA4_REPORTS_PER_MONTH"
    )
    free_property_limit: int = Field(1, validation_alias="FREE_PROPERTY_LIMIT")
    premium_property_limit: int = Field(5, validation_alias="PREMIUM_PROPERTY_LIMIT")
    free_lookback_days: Optional[int] = Field(90, validation_alias="FREE_LOOKBACK_DAYS")
    premium_lookback_days: Optional[int] = Field(
        None,
        validation_alias="PREMIUM_LOOKBACK_DAYS",
        description="Unset means the full GA4 history is available.",
    )
    default_plan: str = Field("free", validation_alias="DEFAULT_PLAN")
    allow_plan_override: bool = Field(False, validation_alias="ALLOW_PLAN_OVERRIDE")

    def limit_for(self, plan: str, feature: str) -> int:
        """Return the monthly ceiling for a feature on a plan."""
        limits = {
            ("free", "ga4_reports"): self.free_ga4_reports_per_month,
            ("premium", "ga4_reports"): self.premium_ga4_reports_per_month,
        }
        try:
            return limits[(plan, feature)]
        except KeyError as exc:
            raise ValueError(f"No usage limit configured for {plan}/{feature}.") from exc

    def property_limit_for(self, plan: str) -> int:
        """How many distinct GA4 properties an identity may query on a plan."""
        if plan == "premium":
            return self.premium_property_limit
        return self.free_property_limit

    def lookback_days_for(self, plan: str) -> Optional[int]:
        if plan == "premium":
            return self.premium_lookback_days
        return self.free_lookback_days


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = _SETTINGS_CONFIG

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    frontend_base_url: Optional[HttpUrl] = Field(
        None,
        validation_alias="FRONTEND_BASE_URL",
        description="Optional URL for redirecting users back to the front-end.",
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    google: GoogleSettings = Field(default_factory=GoogleSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    plugin: PluginSettings = Field(default_factory=PluginSettings)
    refresh: RefreshSettings = Field(default_factory=RefreshSettings)
    usage: UsageSettings = Field(default_factory=UsageSettings)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def load_settings(env_file: Optional[str] = ENV_FILE) -> AppSettings:
    """
    Build settings from the environment and ``env_file``.

    Nested groups are created by their own default factories, which never see
    an ``_env_file`` override, so each one is built here with the same file.
    """
    groups = {
        "security": SecuritySettings,
        "oauth": OAuthSettings,
        "google": GoogleSettings,
        "store": StoreSettings,
        "session": SessionSettings,
        "plugin": PluginSettings,
        "refresh": RefreshSettings,
        "usage": UsageSettings,
    }
    values = {name: factory(_env_file=env_file) for name, factory in groups.items()}
    return AppSettings(_env_file=env_file, **values)  # type: ignore[call-arg]


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return load_settings()


__all__ = [
    "AppSettings",
    "GoogleSettings",
    "OAuthSettings",
    "PluginSettings",
    "RefreshSettings",
    "SecuritySettings",
    "SessionSettings",
    "StoreSettings",
    "UsageConsistency",
    "UsageSettings",
    "get_settings",
    "load_settings",
]
