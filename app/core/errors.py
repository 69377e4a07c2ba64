"""
Error taxonomy shared by the credential vault, refresh engine, code broker
and usage guard.

Every error carries a stable ``code`` that callers switch on, the HTTP status
the API layer renders it with, and whether the caller may simply retry.
"""

from __future__ import annotations

from datetime import datetime
from http import HTTPStatus
from typing import Any, Dict, Optional


class BrokerError(Exception):
    """Base class for failures surfaced to API callers."""

    code = "INTERNAL"
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR
    retryable = False
    default_message = "Request failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)

    def details(self) -> Dict[str, Any]:
        """Extra, non-secret fields included in the error payload."""
        return {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "ok": False,
            "error": self.message,
            "code": self.code,
            "retryable": self.retryable,
        }
        payload.update(self.details())
        return payload


class NotConnectedError(BrokerError):
    code = "NOT_CONNECTED"
    status_code = HTTPStatus.UNAUTHORIZED
    default_message = "Google Analytics is not connected."


class CredentialCorruptError(BrokerError):
    """Stored ciphertext exists but cannot be decrypted with the current key."""

    code = "CORRUPT"
    status_code = HTTPStatus.UNAUTHORIZED
    default_message = "Stored Google credentials are unreadable; reconnect Google Analytics."


class RefreshFailedError(BrokerError):
    code = "REFRESH_FAILED"
    status_code = HTTPStatus.UNAUTHORIZED
    default_message = "Google rejected the token refresh; reconnect Google Analytics."


class NoRefreshTokenError(BrokerError):
    code = "NO_REFRESH_TOKEN"
    status_code = HTTPStatus.UNAUTHORIZED
    default_message = (
        "Google access expired and no offline access was granted; "
        "reconnect Google Analytics and accept offline access."
    )


class CodeNotFoundOrExpiredError(BrokerError):
    code = "CODE_NOT_FOUND_OR_EXPIRED"
    status_code = HTTPStatus.BAD_REQUEST
    default_message = "Authorization code is invalid, expired, or already used."


class RateLimitedError(BrokerError):
    """Monthly quota exhausted for a feature."""

    code = "RATE_LIMITED"
    status_code = HTTPStatus.TOO_MANY_REQUESTS

    def __init__(
        self,
        *,
        feature: str,
        limit: int,
        current: int,
        period: str,
        reset_at: datetime,
        upgrade_url: Optional[str] = None,
    ) -> None:
        super().__init__(f"Monthly limit reached for {feature} ({current}/{limit}).")
        self.feature = feature
        self.limit = limit
        self.current = current
        self.period = period
        self.reset_at = reset_at
        self.upgrade_url = upgrade_url

    def details(self) -> Dict[str, Any]:
        return {
            "limit": self.limit,
            "current": self.current,
            "feature": self.feature,
            "period": self.period,
            "resetAt": self.reset_at.isoformat(),
            "upgradeUrl": self.upgrade_url,
        }


class InvalidDateError(BrokerError):
    code = "INVALID_DATE"
    status_code = HTTPStatus.BAD_REQUEST
    default_message = "Invalid report date supplied."


class PlanRestrictionError(BrokerError):
    """The request asks for data the caller's plan does not include."""

    status_code = HTTPStatus.PAYMENT_REQUIRED

    def __init__(self, message: str, *, plan: str, upgrade_url: Optional[str] = None) -> None:
        super().__init__(message)
        self.plan = plan
        self.upgrade_url = upgrade_url

    def details(self) -> Dict[str, Any]:
        return {"plan": self.plan, "upgradeUrl": self.upgrade_url}


class DateRangeLimitError(PlanRestrictionError):
    code = "DATE_RANGE_LIMIT"

    def __init__(self, *, max_days: int, plan: str, upgrade_url: Optional[str] = None) -> None:
        super().__init__(
            f"The {plan} plan includes GA4 data from the last {max_days} days.",
            plan=plan,
            upgrade_url=upgrade_url,
        )
        self.max_days = max_days

    def details(self) -> Dict[str, Any]:
        return {**super().details(), "maxDays": self.max_days}


class PropertyLimitError(PlanRestrictionError):
    code = "PROPERTY_LIMIT"

    def __init__(self, *, limit: int, plan: str, upgrade_url: Optional[str] = None) -> None:
        noun = "property" if limit == 1 else "properties"
        super().__init__(
            f"The {plan} plan supports {limit} GA4 {noun}.",
            plan=plan,
            upgrade_url=upgrade_url,
        )
        self.limit = limit

    def details(self) -> Dict[str, Any]:
        return {**super().details(), "limit": self.limit}


class TransientUpstreamError(BrokerError):
    """An outbound call timed out or the remote side failed; safe to retry."""

    status_code = HTTPStatus.SERVICE_UNAVAILABLE
    retryable = True


class StoreUnavailableError(TransientUpstreamError):
    code = "STORE_UNAVAILABLE"
    default_message = "Credential store is temporarily unavailable."


class ProviderUnavailableError(TransientUpstreamError):
    code = "PROVIDER_UNAVAILABLE"
    default_message = "Google OAuth is temporarily unavailable; retry shortly."


__all__ = [
    "BrokerError",
    "CodeNotFoundOrExpiredError",
    "CredentialCorruptError",
    "DateRangeLimitError",
    "InvalidDateError",
    "NoRefreshTokenError",
    "NotConnectedError",
    "PlanRestrictionError",
    "PropertyLimitError",
    "ProviderUnavailableError",
    "RateLimitedError",
    "RefreshFailedError",
    "StoreUnavailableError",
    "TransientUpstreamError",
]
