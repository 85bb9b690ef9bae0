from datetime import date
from typing import Any

from pydantic import BaseModel, Field

from lendops.shared.enums import AnalyticsDomain


class SnapshotRunRequest(BaseModel):
    snapshot_date: date | None = None
    domains: list[AnalyticsDomain] | None = None
    deadline_seconds: float | None = Field(default=None, gt=0)


class DomainSnapshotOut(BaseModel):
    domain: AnalyticsDomain
    status: str
    error: str | None = None


class SnapshotRunOut(BaseModel):
    snapshot_date: date
    ok: bool
    domains: list[DomainSnapshotOut]


class SnapshotSeriesOut(BaseModel):
    domain: AnalyticsDomain
    start: date
    end: date
    rows: list[dict[str, Any]]


class CacheTagsOut(BaseModel):
    event_type: str
    tags: list[str]
