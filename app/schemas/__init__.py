"""Public schema exports."""

from .analytics import DateRange, ReportQuery, ReportResult, UsageInfo
from .auth import (
    ConnectionStatus,
    OAuthCallbackPayload,
    OAuthErrorResponse,
    PluginTokenResponse,
)

__all__ = [
    "ConnectionStatus",
    "DateRange",
    "OAuthCallbackPayload",
    "OAuthErrorResponse",
    "PluginTokenResponse",
    "ReportQuery",
    "ReportResult",
    "UsageInfo",
]
