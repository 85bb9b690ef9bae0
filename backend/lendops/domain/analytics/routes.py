from __future__ import annotations

from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from lendops.core.config import settings
from lendops.core.db.session import get_db, get_session_local
from lendops.domain.analytics.cache import AnalyticsCache, get_analytics_cache
from lendops.domain.analytics.invalidation import get_cache_tags_for_event, tag_for
from lendops.domain.analytics.schemas import (
    CacheTagsOut,
    DomainSnapshotOut,
    SnapshotRunOut,
    SnapshotRunRequest,
    SnapshotSeriesOut,
)
from lendops.domain.analytics.services import snapshots
from lendops.shared.cancellation import CancellationToken
from lendops.shared.enums import AnalyticsDomain


router = APIRouter(prefix="/analytics", tags=["Analytics"])


def get_snapshot_session_factory():
    return get_session_local()


@router.get("/invalidation-map", response_model=CacheTagsOut)
def cache_tags_for_event(event_type: str):
    return CacheTagsOut(event_type=event_type, tags=sorted(get_cache_tags_for_event(event_type)))


@router.post("/snapshots/run", response_model=SnapshotRunOut)
def run_snapshots(
    payload: SnapshotRunRequest,
    session_factory=Depends(get_snapshot_session_factory),
    cache: AnalyticsCache = Depends(get_analytics_cache),
):
    token = CancellationToken(deadline_seconds=payload.deadline_seconds)
    result = snapshots.compute_all(
        session_factory,
        payload.snapshot_date,
        cancel_token=token,
        cache=cache,
        domains=payload.domains,
    )
    return SnapshotRunOut(
        snapshot_date=result.snapshot_date,
        ok=result.ok,
        domains=[DomainSnapshotOut(domain=d, status=r.status, error=r.error) for d, r in result.domains.items()],
    )


@router.get("/{domain}/snapshots/{snapshot_date}")
def get_snapshot(domain: AnalyticsDomain, snapshot_date: date, db: Session = Depends(get_db)) -> dict:
    row = snapshots.get_snapshot(db, domain, snapshot_date)
    if row is None:
        raise HTTPException(status_code=404, detail="Snapshot not found")
    return snapshots.snapshot_to_dict(row)


@router.get("/{domain}/series", response_model=SnapshotSeriesOut)
def get_series(
    domain: AnalyticsDomain,
    start: date | None = None,
    end: date | None = None,
    fields: list[str] | None = Query(default=None),
    db: Session = Depends(get_db),
    cache: AnalyticsCache = Depends(get_analytics_cache),
):
    end = end or date.today()
    start = start or end - timedelta(days=settings.analytics_default_window_days)
    key = (start, end, tuple(fields) if fields else None)
    rows = cache.get_or_compute(tag_for(domain), key, lambda: snapshots.get_series(db, domain, start, end, fields))
    return SnapshotSeriesOut(domain=domain, start=start, end=end, rows=rows)
