"""
Caller identities and the storage key layout derived from them.

An identity is resolved once at the request boundary and then passed
explicitly to the vault, the refresh engine and the usage guard. Keys for
different identity kinds live under disjoint namespaces, so a web session id
and a plugin user id that happen to be the same string never share a record.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field

WEB_CREDENTIALS_NAMESPACE = "ga4_tokens"
PLUGIN_CREDENTIALS_NAMESPACE = "plugin_ga4_tokens"
USAGE_NAMESPACE = "usage"
AUTH_CODE_NAMESPACE = "plugin_auth_code"
REFRESH_LOCK_NAMESPACE = "refresh_lock"
OAUTH_STATE_NAMESPACE = "oauth_state"
PROPERTY_NAMESPACE = "ga4_properties"


def _encode(raw: str) -> str:
    return quote(raw, safe="")


class WebIdentity(BaseModel):
    """Browser caller identified by the session cookie."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["web"] = "web"
    session_id: str = Field(..., min_length=1)

    @property
    def raw_id(self) -> str:
        return self.session_id


class PluginIdentity(BaseModel):
    """API caller authenticated with a plugin bearer token."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["plugin"] = "plugin"
    user_id: str = Field(..., min_length=1)

    @property
    def raw_id(self) -> str:
        return self.user_id


CallerIdentity = Annotated[Union[WebIdentity, PluginIdentity], Field(discriminator="kind")]


def credential_key(identity: WebIdentity | PluginIdentity) -> str:
    """Storage key for the encrypted credential record of an identity."""
    if isinstance(identity, WebIdentity):
        namespace = WEB_CREDENTIALS_NAMESPACE
    else:
        namespace = PLUGIN_CREDENTIALS_NAMESPACE
    return f"{namespace}:{_encode(identity.raw_id)}"


def usage_key(identity: WebIdentity | PluginIdentity, feature: str, period: str) -> str:
    return f"{USAGE_NAMESPACE}:{identity.kind}:{_encode(identity.raw_id)}:{_encode(feature)}:{period}"


def auth_code_key(code: str) -> str:
    return f"{AUTH_CODE_NAMESPACE}:{_encode(code)}"


def refresh_lock_key(identity: WebIdentity | PluginIdentity) -> str:
    return f"{REFRESH_LOCK_NAMESPACE}:{identity.kind}:{_encode(identity.raw_id)}"


def oauth_state_key(state_id: str) -> str:
    return f"{OAUTH_STATE_NAMESPACE}:{_encode(state_id)}"


def property_allowance_key(identity: WebIdentity | PluginIdentity) -> str:
    """Key of the set of GA4 properties an identity has queried."""
    return f"{PROPERTY_NAMESPACE}:{identity.kind}:{_encode(identity.raw_id)}"


def describe_identity(identity: WebIdentity | PluginIdentity) -> str:
    """Log-safe label: the kind plus a short prefix of the raw id."""
    return f"{identity.kind}:{identity.raw_id[:6]}…"


__all__ = [
    "AUTH_CODE_NAMESPACE",
    "CallerIdentity",
    "OAUTH_STATE_NAMESPACE",
    "PLUGIN_CREDENTIALS_NAMESPACE",
    "PROPERTY_NAMESPACE",
    "PluginIdentity",
    "REFRESH_LOCK_NAMESPACE",
    "USAGE_NAMESPACE",
    "WEB_CREDENTIALS_NAMESPACE",
    "WebIdentity",
    "auth_code_key",
    "credential_key",
    "describe_identity",
    "oauth_state_key",
    "property_allowance_key",
    "refresh_lock_key",
    "usage_key",
]
