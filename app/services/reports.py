"""
Request-level helpers shared by the web and plugin surfaces: connection
status and quota-guarded GA4 reports.
"""

from __future__ import annotations

import time
from datetime import date, datetime, timezone
from typing import Callable, Optional

from app.clients.analytics_data import GoogleAnalyticsClient
from app.core.config import AppSettings
from app.core.errors import CredentialCorruptError
from app.models.identity import CallerIdentity
from app.models.oauth import CredentialRecord
from app.schemas import ConnectionStatus, ReportQuery, ReportResult, UsageInfo
from app.services.data_limits import PropertyAllowance, enforce_lookback
from app.services.token_vault import TokenVault
from app.services.usage_guard import UsageGuard, UsageSnapshot

GA4_REPORTS_FEATURE = "ga4_reports"


def _now_ms() -> int:
    return int(time.time() * 1000)


async def describe_connection(
    vault: TokenVault,
    identity: CallerIdentity,
    *,
    clock_ms: Callable[[], int] = _now_ms,
) -> ConnectionStatus:
    """Summarise the vault state for an identity without exposing token material."""
    try:
        record: Optional[CredentialRecord] = await vault.get(identity)
    except CredentialCorruptError:
        return ConnectionStatus(connected=False, has_tokens=True, corrupt=True)
    if record is None:
        return ConnectionStatus(connected=False, has_tokens=False)
    expired = not record.is_fresh(now_ms=clock_ms())
    return ConnectionStatus(
        connected=not expired or bool(record.refresh_token),
        has_tokens=True,
        expired=expired,
        scope=record.scope or None,
    )


def usage_info(snapshot: UsageSnapshot) -> UsageInfo:
    return UsageInfo(
        feature=snapshot.feature,
        period=snapshot.period,
        current=snapshot.current,
        limit=snapshot.limit,
        remaining=snapshot.remaining,
        reset_at=snapshot.reset_at.isoformat(),
    )


async def run_guarded_report(
    identity: CallerIdentity,
    query: ReportQuery,
    *,
    plan: str,
    settings: AppSettings,
    guard: UsageGuard,
    allowance: PropertyAllowance,
    analytics: GoogleAnalyticsClient,
    today: Optional[date] = None,
) -> ReportResult:
    """
    Apply the plan's data restrictions, consume one ``ga4_reports`` unit, then
    run the report.

    A query rejected by the lookback or property checks consumes no quota.
    A rejected request never reaches Google; a report that fails after quota
    was granted still counts against the month.
    """
    usage = settings.usage
    enforce_lookback(
        query,
        plan=plan,
        max_days=usage.lookback_days_for(plan),
        today=today or datetime.now(timezone.utc).date(),
        upgrade_url=usage.upgrade_url,
    )
    await allowance.admit(
        identity, query.property_id, plan=plan, limit=usage.property_limit_for(plan)
    )
    limit = usage.limit_for(plan, GA4_REPORTS_FEATURE)
    snapshot = await guard.check_and_increment(identity, GA4_REPORTS_FEATURE, limit)
    report = await analytics.run_report(
        identity, property_id=query.property_id, body=query.to_request_body()
    )
    return ReportResult(report=report, usage=usage_info(snapshot))


__all__ = [
    "GA4_REPORTS_FEATURE",
    "describe_connection",
    "run_guarded_report",
    "usage_info",
]
