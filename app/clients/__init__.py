"""Expose constructed client wrappers."""

from .analytics_data import AnalyticsApiError, GoogleAnalyticsClient
from .google_auth import GoogleOAuthClient, OAuthTokenExchangeError
from .kv_store import KeyValueStore, KeyValueStoreError, RestKeyValueStore
from .sqlite_store import SQLiteKeyValueStore

__all__ = [
    "AnalyticsApiError",
    "GoogleAnalyticsClient",
    "GoogleOAuthClient",
    "KeyValueStore",
    "KeyValueStoreError",
    "OAuthTokenExchangeError",
    "RestKeyValueStore",
    "SQLiteKeyValueStore",
]
