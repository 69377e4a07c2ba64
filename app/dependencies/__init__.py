"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_analytics_client,
    get_auth_code_broker,
    get_google_oauth_client,
    get_google_token_service,
    get_identity_resolver,
    get_oauth_state_store,
    get_plugin_token_signer,
    get_property_allowance,
    get_store,
    get_token_cipher_service,
    get_token_vault,
    get_usage_guard,
)
from .config import get_app_settings, require_diagnostics_enabled
from .identity import (
    PLAN_OVERRIDE_HEADER,
    get_plan_tier,
    require_plugin_identity,
    require_web_identity,
)

__all__ = [
    "PLAN_OVERRIDE_HEADER",
    "get_analytics_client",
    "get_app_settings",
    "get_auth_code_broker",
    "get_google_oauth_client",
    "get_google_token_service",
    "get_identity_resolver",
    "get_oauth_state_store",
    "get_plan_tier",
    "get_plugin_token_signer",
    "get_property_allowance",
    "get_store",
    "get_token_cipher_service",
    "get_token_vault",
    "get_usage_guard",
    "require_diagnostics_enabled",
    "require_plugin_identity",
    "require_web_identity",
]
