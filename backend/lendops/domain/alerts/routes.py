from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from lendops.core.db.session import get_db
from lendops.domain.alerts import service
from lendops.domain.alerts.enums import AlertSeverity, AlertStatus
from lendops.domain.alerts.schemas import AlertOut


router = APIRouter(prefix="/alerts", tags=["Alerts"])


@router.get("", response_model=list[AlertOut])
def list_alerts(
    status: AlertStatus | None = None,
    severity: AlertSeverity | None = None,
    organization_id: str | None = None,
    limit: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
):
    return service.list_alerts(db, status=status, severity=severity, organization_id=organization_id, limit=limit)


@router.post("/{alert_id}/read", response_model=AlertOut)
def mark_read(alert_id: uuid.UUID, db: Session = Depends(get_db)):
    return service.mark_read(db, alert_id)


@router.post("/{alert_id}/archive", response_model=AlertOut)
def archive(alert_id: uuid.UUID, db: Session = Depends(get_db)):
    return service.archive(db, alert_id)
