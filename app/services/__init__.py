"""Service layer exports."""

from .auth_codes import AuthorizationCodeBroker
from .data_limits import PropertyAllowance
from .google_tokens import GoogleTokenService
from .identity import IdentityResolver
from .oauth_state import InvalidStateError, OAuthStateStore
from .plugin_tokens import IssuedToken, PluginTokenSigner, VerifiedToken
from .token_cipher import TokenCipherService
from .token_vault import TokenVault
from .usage_guard import UsageGuard, UsageSnapshot

__all__ = [
    "AuthorizationCodeBroker",
    "GoogleTokenService",
    "IdentityResolver",
    "InvalidStateError",
    "IssuedToken",
    "OAuthStateStore",
    "PluginTokenSigner",
    "PropertyAllowance",
    "TokenCipherService",
    "TokenVault",
    "UsageGuard",
    "UsageSnapshot",
    "VerifiedToken",
]
