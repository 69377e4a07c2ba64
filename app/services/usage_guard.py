"""
Monthly usage quotas per identity and feature.

The guard is plan-agnostic: callers pass the numeric ceiling. Counters live
under ``usage:<kind>:<id>:<feature>:<YYYY-MM>``; a new month is a new key.

Consistency is explicit configuration:

``EXACT``
    Read, then ``INCR``. If the increment lands above the limit, a concurrent
    request was admitted first; the increment is undone with ``DECR`` and the
    request is rejected. Never admits more than ``limit`` operations.
``BEST_EFFORT``
    Read, then ``SET current + 1``. Requests racing on the same counter can
    both pass, so a burst of N concurrent requests can over-admit by up to
    N - 1. For stores without an atomic increment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

from app.clients.kv_store import KeyValueStore
from app.core.config import UsageConsistency
from app.core.errors import RateLimitedError
from app.models.identity import CallerIdentity, describe_identity, usage_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def period_label(moment: datetime) -> str:
    """Calendar month of ``moment`` in UTC, e.g. ``2025-11``."""
    moment = moment.astimezone(timezone.utc)
    return f"{moment.year:04d}-{moment.month:02d}"


def period_reset_at(moment: datetime) -> datetime:
    """First instant of the month after ``moment`` (UTC)."""
    moment = moment.astimezone(timezone.utc)
    if moment.month == 12:
        return datetime(moment.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(moment.year, moment.month + 1, 1, tzinfo=timezone.utc)


@dataclass(slots=True)
class UsageSnapshot:
    feature: str
    period: str
    current: int
    limit: int
    reset_at: datetime

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current)


class UsageGuard:
    """Check-and-increment quota enforcement backed by the key-value store."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        consistency: UsageConsistency = UsageConsistency.EXACT,
        period_ttl_seconds: int = 60 * 60 * 24 * 45,
        upgrade_url: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._consistency = consistency
        self._period_ttl_seconds = period_ttl_seconds
        self._upgrade_url = upgrade_url
        self._clock = clock

    @property
    def consistency(self) -> UsageConsistency:
        return self._consistency

    async def current_usage(self, identity: CallerIdentity, feature: str, limit: int) -> UsageSnapshot:
        """Read the counter without consuming quota."""
        now = self._clock()
        period = period_label(now)
        current = await self._read(usage_key(identity, feature, period))
        return UsageSnapshot(feature, period, current, limit, period_reset_at(now))

    async def check_and_increment(
        self, identity: CallerIdentity, feature: str, limit: int
    ) -> UsageSnapshot:
        """Consume one unit of quota or raise :class:`RateLimitedError`."""
        now = self._clock()
        period = period_label(now)
        reset_at = period_reset_at(now)
        key = usage_key(identity, feature, period)

        current = await self._read(key)
        if current >= limit:
            self._reject(identity, feature, limit, current, period, reset_at)

        if self._consistency is UsageConsistency.EXACT:
            updated = await self._store.incr(key)
            if updated == 1:
                await self._store.expire(key, self._period_ttl_seconds)
            if updated > limit:
                restored = await self._store.decr(key)
                self._reject(identity, feature, limit, restored, period, reset_at)
        else:
            updated = current + 1
            await self._store.set(key, str(updated), ttl_seconds=self._period_ttl_seconds)

        return UsageSnapshot(feature, period, updated, limit, reset_at)

    async def protected(
        self,
        identity: CallerIdentity,
        feature: str,
        limit: int,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        """Run ``operation`` only once quota has been granted for it."""
        await self.check_and_increment(identity, feature, limit)
        return await operation()

    async def _read(self, key: str) -> int:
        raw = await self._store.get(key)
        return int(raw) if raw else 0

    def _reject(
        self,
        identity: CallerIdentity,
        feature: str,
        limit: int,
        current: int,
        period: str,
        reset_at: datetime,
    ) -> None:
        logger.warning(
            "RATE_LIMITED %s feature=%s usage=%s/%s period=%s",
            describe_identity(identity),
            feature,
            current,
            limit,
            period,
        )
        raise RateLimitedError(
            feature=feature,
            limit=limit,
            current=current,
            period=period,
            reset_at=reset_at,
            upgrade_url=self._upgrade_url,
        )


__all__ = ["UsageGuard", "UsageSnapshot", "period_label", "period_reset_at"]
