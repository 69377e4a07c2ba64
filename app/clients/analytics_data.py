"""Google Analytics 4 client wrapper for property listing and reports."""

from __future__ import annotations

import asyncio
from http import HTTPStatus
from typing import Any, Dict, List, TYPE_CHECKING

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from app.core.errors import BrokerError
from app.models.identity import CallerIdentity

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from app.services.google_tokens import GoogleTokenService


class AnalyticsApiError(BrokerError):
    code = "ANALYTICS_API_ERROR"
    status_code = HTTPStatus.BAD_GATEWAY

    def __init__(self, message: str, *, upstream_status: int | None = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status

    def details(self) -> Dict[str, Any]:
        return {"upstreamStatus": self.upstream_status}


def normalize_property(property_id: str) -> str:
    """Accept ``123`` or ``properties/123`` and return the resource name."""
    cleaned = property_id.strip()
    if not cleaned:
        raise ValueError("GA4 property id must not be empty.")
    if cleaned.startswith("properties/"):
        return cleaned
    return f"properties/{cleaned}"


class GoogleAnalyticsClient:
    """Query the GA4 Admin and Data APIs with the caller's fresh credentials."""

    def __init__(self, token_service: "GoogleTokenService") -> None:
        self._token_service = token_service

    async def list_properties(self, identity: CallerIdentity) -> List[Dict[str, Any]]:
        """Return the GA4 properties visible to the connected Google account."""
        credentials = await self._token_service.get_credentials(identity)

        def _execute_list() -> List[Dict[str, Any]]:
            service = build("analyticsadmin", "v1beta", credentials=credentials, cache_discovery=False)
            properties: List[Dict[str, Any]] = []
            request = service.accountSummaries().list(pageSize=200)
            while request is not None:
                response = request.execute()
                for account in response.get("accountSummaries", []):
                    for prop in account.get("propertySummaries", []):
                        properties.append(
                            {
                                "account": account.get("name"),
                                "accountDisplayName": account.get("displayName"),
                                "property": prop.get("property"),
                                "propertyDisplayName": prop.get("displayName"),
                            }
                        )
                request = service.accountSummaries().list_next(request, response)
            return properties

        return await self._run(_execute_list, "accountSummaries.list")

    async def run_report(
        self,
        identity: CallerIdentity,
        *,
        property_id: str,
        body: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Run a GA4 ``runReport`` request and return the raw response."""
        credentials = await self._token_service.get_credentials(identity)
        resource = normalize_property(property_id)

        def _execute_report() -> Dict[str, Any]:
            service = build("analyticsdata", "v1beta", credentials=credentials, cache_discovery=False)
            return service.properties().runReport(property=resource, body=body).execute()

        return await self._run(_execute_report, "properties.runReport")

    @staticmethod
    async def _run(func, operation: str) -> Any:
        try:
            return await asyncio.to_thread(func)
        except HttpError as exc:
            upstream = getattr(exc.resp, "status", None)
            raise AnalyticsApiError(
                f"Google Analytics {operation} failed.",
                upstream_status=int(upstream) if upstream else None,
            ) from exc


__all__ = ["AnalyticsApiError", "GoogleAnalyticsClient", "normalize_property"]
