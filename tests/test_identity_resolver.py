try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import time

import jwt
import pytest
from starlette.requests import Request

from app.models.identity import PluginIdentity, WebIdentity
from app.services.identity import IdentityResolver
from app.services.plugin_tokens import JWT_ALGORITHM, TOKEN_ISSUER, PluginTokenSigner

SIGNING_SECRET = "plugin-signing-secret-for-tests-0123456789"


@pytest.fixture
def signer() -> PluginTokenSigner:
    return PluginTokenSigner(secret=SIGNING_SECRET, access_ttl_seconds=60)


@pytest.fixture
def resolver(signer) -> IdentityResolver:
    return IdentityResolver(
        cookie_name="aa_sid",
        token_signer=signer,
        client_id="plugin-client",
        client_secret="plugin-secret",
    )


def _request(headers: dict[str, str]) -> Request:
    raw = [(key.lower().encode(), value.encode()) for key, value in headers.items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


def test_session_cookie_resolves_web_identity(resolver) -> None:
    identity = resolver.resolve(_request({"Cookie": "aa_sid=abc123"}))

    assert identity == WebIdentity(session_id="abc123")


def test_missing_cookie_resolves_nothing(resolver) -> None:
    assert resolver.resolve(_request({"Cookie": "other=1"})) is None
    assert resolver.from_cookies({"aa_sid": "   "}) is None


def test_bearer_token_resolves_plugin_identity(resolver, signer) -> None:
    issued = signer.issue(PluginIdentity(user_id="u-42"), "ga4")

    identity = resolver.resolve(_request({"Authorization": f"Bearer {issued.token}"}))

    assert identity == PluginIdentity(user_id="u-42")


def test_invalid_bearer_does_not_fall_back_to_cookie(resolver) -> None:
    request = _request({"Authorization": "Bearer forged", "Cookie": "aa_sid=abc123"})

    assert resolver.resolve(request) is None


def test_refresh_token_is_not_accepted_as_bearer(resolver, signer) -> None:
    issued = signer.issue(PluginIdentity(user_id="u-42"), "ga4", kind="refresh")

    assert resolver.from_authorization(f"Bearer {issued.token}") is None


def test_token_signed_with_other_secret_is_rejected(resolver) -> None:
    other = PluginTokenSigner(secret="someone-else-entirely-0123456789abcdef")
    issued = other.issue(PluginIdentity(user_id="u-42"), "ga4")

    assert resolver.from_authorization(f"Bearer {issued.token}") is None


def test_expired_bearer_is_rejected(resolver) -> None:
    token = jwt.encode(
        {
            "iss": TOKEN_ISSUER,
            "sub": "u-42",
            "scope": "ga4",
            "typ": "access",
            "exp": int(time.time()) - 1,
        },
        SIGNING_SECRET,
        algorithm=JWT_ALGORITHM,
    )

    assert resolver.from_authorization(f"Bearer {token}") is None


def test_bearer_without_subject_is_rejected(resolver) -> None:
    token = jwt.encode(
        {"iss": TOKEN_ISSUER, "typ": "access", "exp": int(time.time()) + 60},
        SIGNING_SECRET,
        algorithm=JWT_ALGORITHM,
    )

    assert resolver.from_authorization(f"Bearer {token}") is None


def test_unsigned_bearer_is_rejected(resolver) -> None:
    token = jwt.encode(
        {"iss": TOKEN_ISSUER, "sub": "u-42", "typ": "access", "exp": int(time.time()) + 60},
        None,
        algorithm="none",
    )

    assert resolver.from_authorization(f"Bearer {token}") is None


def test_issued_tokens_are_standard_jwts(signer) -> None:
    issued = signer.issue(PluginIdentity(user_id="u-42"), "ga4", kind="refresh")

    claims = jwt.decode(
        issued.token, SIGNING_SECRET, algorithms=[JWT_ALGORITHM], issuer=TOKEN_ISSUER
    )

    assert claims["sub"] == "u-42"
    assert claims["typ"] == "refresh"
    assert claims["scope"] == "ga4"
    assert claims["exp"] - claims["iat"] == issued.expires_in


def test_client_authentication(resolver) -> None:
    assert resolver.is_known_client("plugin-client")
    assert not resolver.is_known_client("other")
    assert not resolver.is_known_client(None)
    assert resolver.authenticate_client("plugin-client", "plugin-secret")
    assert not resolver.authenticate_client("plugin-client", "wrong")
    assert not resolver.authenticate_client("other", "plugin-secret")


def test_unconfigured_client_never_authenticates(signer) -> None:
    resolver = IdentityResolver(
        cookie_name="aa_sid", token_signer=signer, client_id=None, client_secret=None
    )

    assert not resolver.is_known_client("")
    assert not resolver.authenticate_client(None, None)
