"""
Client for a Redis-compatible REST key-value service (Upstash style).

Each command is an independent ``POST`` of a JSON command array; the service
answers ``{"result": ...}`` or ``{"error": "..."}``. Commands are individually
atomic and never composed into transactions.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Protocol

import httpx

from app.core.config import StoreSettings
from app.core.errors import StoreUnavailableError
from app.utils.http import transport_errors_as

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Operations the vault, code broker and usage guard rely on."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: int | None = None,
        only_if_absent: bool = False,
    ) -> bool: ...

    async def delete(self, key: str) -> bool: ...

    async def incr(self, key: str) -> int: ...

    async def decr(self, key: str) -> int: ...

    async def expire(self, key: str, ttl_seconds: int) -> bool: ...


class KeyValueStoreError(StoreUnavailableError):
    """The store answered but reported a command error."""


class RestKeyValueStore:
    """Thin async client over the REST command endpoint."""

    def __init__(
        self,
        settings: StoreSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not settings.rest_url or not settings.rest_token:
            missing = [
                name
                for name, value in (
                    ("KV_REST_API_URL", settings.rest_url),
                    ("KV_REST_API_TOKEN", settings.rest_token),
                )
                if not value
            ]
            raise ValueError(f"Key-value store not configured: missing {', '.join(missing)}")
        self._url = settings.rest_url.rstrip("/")
        self._token = settings.rest_token
        self._timeout = settings.http_timeout_seconds
        self._transport = transport

    async def _command(self, *args: Any) -> Any:
        command: List[str] = [str(arg) for arg in args]
        with transport_errors_as(StoreUnavailableError, f"Store {command[0]}"):
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self._url,
                    json=command,
                    headers={"Authorization": f"Bearer {self._token}"},
                )

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code >= 400 or "error" in payload:
            # Never echo the command: values may be ciphertext or codes.
            logger.warning(
                "Store %s failed with status %s", command[0], response.status_code
            )
            raise KeyValueStoreError(
                f"Store {command[0]} failed: {payload.get('error') or response.status_code}"
            )
        return payload.get("result")

    async def get(self, key: str) -> Optional[str]:
        result = await self._command("GET", key)
        return None if result is None else str(result)

    async def set(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: int | None = None,
        only_if_absent: bool = False,
    ) -> bool:
        args: List[Any] = ["SET", key, value]
        if ttl_seconds is not None:
            args.extend(["EX", int(ttl_seconds)])
        if only_if_absent:
            args.append("NX")
        result = await self._command(*args)
        return result == "OK"

    async def delete(self, key: str) -> bool:
        return int(await self._command("DEL", key) or 0) > 0

    async def incr(self, key: str) -> int:
        return int(await self._command("INCR", key))

    async def decr(self, key: str) -> int:
        return int(await self._command("DECR", key))

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        return int(await self._command("EXPIRE", key, int(ttl_seconds)) or 0) == 1


__all__ = ["KeyValueStore", "KeyValueStoreError", "RestKeyValueStore"]
