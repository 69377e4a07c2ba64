"""Schemas for GA4 reporting endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class DateRange(BaseModel):
    start_date: str = Field("28daysAgo", serialization_alias="startDate")
    end_date: str = Field("today", serialization_alias="endDate")


class ReportQuery(BaseModel):
    """A GA4 ``runReport`` request scoped to one property."""

    property_id: str = Field(..., description="GA4 property id, with or without 'properties/'.")
    metrics: List[str] = Field(..., min_length=1)
    dimensions: List[str] = Field(default_factory=list)
    date_ranges: List[DateRange] = Field(default_factory=lambda: [DateRange()])
    limit: Optional[int] = Field(None, ge=1, le=100000)

    @field_validator("property_id")
    @classmethod
    def _strip_property(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("property_id must not be empty")
        return value

    def to_request_body(self) -> Dict[str, Any]:
        """Render the Data API request body."""
        body: Dict[str, Any] = {
            "metrics": [{"name": name} for name in self.metrics],
            "dimensions": [{"name": name} for name in self.dimensions],
            "dateRanges": [item.model_dump(by_alias=True) for item in self.date_ranges],
        }
        if self.limit is not None:
            body["limit"] = str(self.limit)
        return body


class UsageInfo(BaseModel):
    feature: str
    period: str
    current: int
    limit: int
    remaining: int
    reset_at: str = Field(..., serialization_alias="resetAt")


class ReportResult(BaseModel):
    ok: bool = True
    report: Dict[str, Any]
    usage: UsageInfo


__all__ = ["DateRange", "ReportQuery", "ReportResult", "UsageInfo"]
