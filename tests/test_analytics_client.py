try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import httplib2
import pytest
from google.oauth2.credentials import Credentials
from googleapiclient.errors import HttpError

from app.clients import analytics_data
from app.clients.analytics_data import AnalyticsApiError, GoogleAnalyticsClient, normalize_property
from app.models.identity import WebIdentity


class DummyTokenService:
    def __init__(self) -> None:
        self.identities: list = []

    async def get_credentials(self, identity) -> Credentials:
        self.identities.append(identity)
        return Credentials(token="fresh-access")


class _Request:
    def __init__(self, result=None, error: Exception | None = None) -> None:
        self._result = result
        self._error = error

    def execute(self):
        if self._error is not None:
            raise self._error
        return self._result


class FakeDataService:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[tuple[str, dict]] = []
        self._error = error

    def properties(self):
        return self

    def runReport(self, property: str, body: dict):  # noqa: N802 - Google API naming
        self.calls.append((property, body))
        return _Request({"rowCount": 0}, self._error)


class FakeAdminService:
    def __init__(self, pages: list[dict]) -> None:
        self._pages = pages
        self.page_sizes: list[int] = []

    def accountSummaries(self):  # noqa: N802 - Google API naming
        return self

    def list(self, pageSize: int):  # noqa: N803 - Google API naming
        self.page_sizes.append(pageSize)
        return _Request(self._pages[0])

    def list_next(self, previous, response):
        index = self._pages.index(response) + 1
        return _Request(self._pages[index]) if index < len(self._pages) else None


def test_normalize_property() -> None:
    assert normalize_property("123") == "properties/123"
    assert normalize_property(" properties/456 ") == "properties/456"
    with pytest.raises(ValueError):
        normalize_property("  ")


@pytest.mark.asyncio
async def test_run_report_uses_fresh_credentials(monkeypatch) -> None:
    service = FakeDataService()
    seen: dict = {}

    def fake_build(name, version, credentials, cache_discovery):
        seen.update(name=name, version=version, token=credentials.token, cache=cache_discovery)
        return service

    monkeypatch.setattr(analytics_data, "build", fake_build)
    tokens = DummyTokenService()
    identity = WebIdentity(session_id="sid-1")

    result = await GoogleAnalyticsClient(tokens).run_report(
        identity, property_id="123", body={"metrics": [{"name": "sessions"}]}
    )

    assert result == {"rowCount": 0}
    assert service.calls == [("properties/123", {"metrics": [{"name": "sessions"}]})]
    assert seen == {"name": "analyticsdata", "version": "v1beta", "token": "fresh-access", "cache": False}
    assert tokens.identities == [identity]


@pytest.mark.asyncio
async def test_list_properties_flattens_account_pages(monkeypatch) -> None:
    pages = [
        {
            "accountSummaries": [
                {
                    "name": "accountSummaries/1",
                    "displayName": "Acme",
                    "propertySummaries": [{"property": "properties/10", "displayName": "Web"}],
                }
            ]
        },
        {
            "accountSummaries": [
                {
                    "name": "accountSummaries/2",
                    "displayName": "Beta",
                    "propertySummaries": [{"property": "properties/20", "displayName": "App"}],
                }
            ]
        },
    ]
    monkeypatch.setattr(analytics_data, "build", lambda *args, **kwargs: FakeAdminService(pages))

    properties = await GoogleAnalyticsClient(DummyTokenService()).list_properties(
        WebIdentity(session_id="sid-1")
    )

    assert [item["property"] for item in properties] == ["properties/10", "properties/20"]
    assert properties[0]["accountDisplayName"] == "Acme"


@pytest.mark.asyncio
async def test_google_api_errors_are_wrapped(monkeypatch) -> None:
    error = HttpError(httplib2.Response({"status": 403, "reason": "Forbidden"}), b"{}")
    monkeypatch.setattr(analytics_data, "build", lambda *args, **kwargs: FakeDataService(error))

    with pytest.raises(AnalyticsApiError) as excinfo:
        await GoogleAnalyticsClient(DummyTokenService()).run_report(
            WebIdentity(session_id="sid-1"), property_id="123", body={}
        )

    assert excinfo.value.upstream_status == 403
    assert excinfo.value.to_payload()["code"] == "ANALYTICS_API_ERROR"
