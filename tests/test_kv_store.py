try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import json

import httpx
import pytest

from app.clients.kv_store import KeyValueStoreError, RestKeyValueStore
from app.core.config import StoreSettings
from app.core.errors import StoreUnavailableError


def _settings() -> StoreSettings:
    return StoreSettings(rest_url="https://kv.example.com/", rest_token="kv-token")


def _store(handler) -> tuple[RestKeyValueStore, list[list[str]]]:
    commands: list[list[str]] = []

    def _record(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer kv-token"
        assert request.method == "POST"
        assert request.url.host == "kv.example.com"
        commands.append(json.loads(request.content))
        return handler(commands[-1])

    return RestKeyValueStore(_settings(), transport=httpx.MockTransport(_record)), commands


@pytest.mark.asyncio
async def test_get_returns_result_or_none() -> None:
    values = {"present": "value"}
    store, commands = _store(lambda cmd: httpx.Response(200, json={"result": values.get(cmd[1])}))

    assert await store.get("present") == "value"
    assert await store.get("absent") is None
    assert commands == [["GET", "present"], ["GET", "absent"]]


@pytest.mark.asyncio
async def test_set_with_expiry_and_nx() -> None:
    store, commands = _store(lambda cmd: httpx.Response(200, json={"result": None}))

    acquired = await store.set("lock", "token", ttl_seconds=30, only_if_absent=True)

    assert acquired is False
    assert commands == [["SET", "lock", "token", "EX", "30", "NX"]]


@pytest.mark.asyncio
async def test_plain_set_reports_ok() -> None:
    store, commands = _store(lambda cmd: httpx.Response(200, json={"result": "OK"}))

    assert await store.set("key", "value") is True
    assert commands == [["SET", "key", "value"]]


@pytest.mark.asyncio
async def test_counters_and_expiry() -> None:
    replies = iter([{"result": 1}, {"result": 0}, {"result": 1}, {"result": 1}])
    store, commands = _store(lambda cmd: httpx.Response(200, json=next(replies)))

    assert await store.incr("usage") == 1
    assert await store.decr("usage") == 0
    assert await store.expire("usage", 60) is True
    assert await store.delete("usage") is True
    assert [cmd[0] for cmd in commands] == ["INCR", "DECR", "EXPIRE", "DEL"]


@pytest.mark.asyncio
async def test_command_error_raises_without_echoing_values(caplog) -> None:
    store, _ = _store(lambda cmd: httpx.Response(200, json={"error": "WRONGTYPE"}))

    with pytest.raises(KeyValueStoreError) as excinfo:
        await store.set("ga4_tokens:sid", "ciphertext-value")

    assert excinfo.value.retryable is True
    assert "ciphertext-value" not in str(excinfo.value)
    assert "ciphertext-value" not in caplog.text


@pytest.mark.asyncio
async def test_http_error_status_raises_store_unavailable() -> None:
    store, _ = _store(lambda cmd: httpx.Response(502, text="bad gateway"))

    with pytest.raises(StoreUnavailableError):
        await store.get("key")


@pytest.mark.asyncio
async def test_timeout_raises_store_unavailable() -> None:
    def _timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    store = RestKeyValueStore(_settings(), transport=httpx.MockTransport(_timeout))

    with pytest.raises(StoreUnavailableError) as excinfo:
        await store.get("key")
    assert excinfo.value.code == "STORE_UNAVAILABLE"


def test_requires_url_and_token() -> None:
    with pytest.raises(ValueError):
        RestKeyValueStore(StoreSettings(rest_url="https://kv.example.com", rest_token=None))
