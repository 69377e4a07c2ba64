"""
Plan restrictions on what a GA4 report may ask for: how far back its date
ranges reach and how many distinct properties an identity may query.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date, timedelta
from typing import List, Optional

from app.clients.analytics_data import normalize_property
from app.clients.kv_store import KeyValueStore
from app.core.errors import DateRangeLimitError, InvalidDateError, PropertyLimitError
from app.models.identity import CallerIdentity, describe_identity, property_allowance_key
from app.schemas import ReportQuery

logger = logging.getLogger(__name__)

_DAYS_AGO = re.compile(r"^(\d+)daysAgo$")


def resolve_report_date(value: str, today: date) -> date:
    """Resolve a GA4 date (``YYYY-MM-DD``, ``today``, ``yesterday``, ``NdaysAgo``)."""
    cleaned = value.strip()
    if cleaned == "today":
        return today
    if cleaned == "yesterday":
        return today - timedelta(days=1)
    match = _DAYS_AGO.match(cleaned)
    if match:
        return today - timedelta(days=int(match.group(1)))
    try:
        return date.fromisoformat(cleaned)
    except ValueError as exc:
        raise InvalidDateError(f"Invalid report date: {value!r}.") from exc


def enforce_lookback(
    query: ReportQuery,
    *,
    plan: str,
    max_days: Optional[int],
    today: date,
    upgrade_url: Optional[str] = None,
) -> None:
    """Reject date ranges that start before the plan's lookback window."""
    for date_range in query.date_ranges:
        start = resolve_report_date(date_range.start_date, today)
        resolve_report_date(date_range.end_date, today)
        if max_days is None:
            continue
        earliest = today - timedelta(days=max_days - 1)
        if start < earliest:
            raise DateRangeLimitError(max_days=max_days, plan=plan, upgrade_url=upgrade_url)


class PropertyAllowance:
    """
    Track the distinct GA4 properties each identity has queried.

    A property is linked on its first successful admission; once the plan's
    allowance is used up, only already-linked properties are admitted.
    """

    def __init__(self, store: KeyValueStore, *, upgrade_url: Optional[str] = None) -> None:
        self._store = store
        self._upgrade_url = upgrade_url

    async def linked(self, identity: CallerIdentity) -> List[str]:
        raw = await self._store.get(property_allowance_key(identity))
        if not raw:
            return []
        try:
            properties = json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable property allowance for %s", describe_identity(identity))
            return []
        return [item for item in properties if isinstance(item, str)]

    async def admit(
        self, identity: CallerIdentity, property_id: str, *, plan: str, limit: int
    ) -> List[str]:
        """Admit ``property_id`` for the identity or raise :class:`PropertyLimitError`."""
        resource = normalize_property(property_id)
        properties = await self.linked(identity)
        if resource in properties:
            return properties
        if len(properties) >= limit:
            logger.info(
                "Property allowance exhausted for %s (%d/%d)",
                describe_identity(identity),
                len(properties),
                limit,
            )
            raise PropertyLimitError(limit=limit, plan=plan, upgrade_url=self._upgrade_url)
        properties.append(resource)
        await self._store.set(property_allowance_key(identity), json.dumps(properties))
        logger.info("Linked %s to %s", resource, describe_identity(identity))
        return properties


__all__ = ["PropertyAllowance", "enforce_lookback", "resolve_report_date"]
