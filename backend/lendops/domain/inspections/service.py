from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from lendops.core.config import settings
from lendops.core.events.bus import EventBus
from lendops.core.events.types import EventTypes
from lendops.domain.inspections.enums import InspectionStatus
from lendops.domain.inspections.models import Inspection
from lendops.domain.loans.models import Loan
from lendops.shared.exceptions import NotFound, ValidationError
from lendops.shared.utils import utcnow

logger = structlog.get_logger(__name__)

AGGREGATE_TYPE = "Inspection"


@dataclass(frozen=True)
class InspectionScanResult:
    due: int
    overdue: int


def _payload(inspection: Inspection) -> dict:
    return {
        "inspectionId": inspection.id,
        "loanId": inspection.loan_id,
        "drawId": inspection.draw_id,
        "organizationId": inspection.organization_id,
        "scheduledDate": inspection.scheduled_date,
    }


def schedule_inspection(
    db: Session,
    bus: EventBus,
    loan_id: uuid.UUID,
    scheduled_date: date,
    *,
    draw_id: str | None = None,
    actor_id: str | None = None,
) -> Inspection:
    def _op(session: Session) -> Inspection:
        loan = session.get(Loan, loan_id)
        if loan is None:
            raise NotFound(f"Loan {loan_id} not found")
        inspection = Inspection(
            id=uuid.uuid4(),
            organization_id=loan.organization_id,
            loan_id=loan.id,
            draw_id=draw_id,
            scheduled_date=scheduled_date,
            status=InspectionStatus.scheduled,
            created_by=actor_id,
            updated_by=actor_id,
        )
        session.add(inspection)
        session.flush()
        bus.publish(
            session,
            EventTypes.INSPECTION_SCHEDULED,
            inspection.id,
            AGGREGATE_TYPE,
            _payload(inspection),
            metadata={"userId": actor_id, "organizationId": loan.organization_id},
        )
        return inspection

    return bus.commit_and_dispatch(db, _op)


def complete_inspection(
    db: Session,
    bus: EventBus,
    inspection_id: uuid.UUID,
    completed_date: date | None = None,
    *,
    findings: str | None = None,
    actor_id: str | None = None,
) -> Inspection:
    completed_date = completed_date or date.today()

    def _op(session: Session) -> Inspection:
        inspection = session.get(Inspection, inspection_id)
        if inspection is None:
            raise NotFound(f"Inspection {inspection_id} not found")
        if inspection.status == InspectionStatus.completed:
            raise ValidationError(f"Inspection {inspection_id} is already completed")
        inspection.status = InspectionStatus.completed
        inspection.completed_date = completed_date
        inspection.findings = findings
        inspection.updated_by = actor_id
        session.flush()
        bus.publish(
            session,
            EventTypes.INSPECTION_COMPLETED,
            inspection.id,
            AGGREGATE_TYPE,
            {**_payload(inspection), "completedDate": completed_date},
            metadata={"userId": actor_id, "organizationId": inspection.organization_id},
        )
        return inspection

    return bus.commit_and_dispatch(db, _op)


def check_overdue_inspections(
    db: Session,
    bus: EventBus,
    as_of: date | None = None,
    grace_days: int | None = None,
) -> InspectionScanResult:
    """
    Scheduled scan: ``Inspection.Due`` for inspections scheduled today and
    ``Inspection.Overdue`` (plus status ``overdue``) once the grace period
    has passed. Each event fires at most once per inspection.
    """
    as_of = as_of or date.today()
    grace = settings.inspection_overdue_grace_days if grace_days is None else grace_days
    cutoff = as_of - timedelta(days=grace)

    def _op(session: Session) -> InspectionScanResult:
        open_inspections = list(
            session.scalars(
                select(Inspection)
                .where(
                    Inspection.status.in_([InspectionStatus.scheduled, InspectionStatus.overdue]),
                    Inspection.scheduled_date <= as_of,
                )
                .order_by(Inspection.scheduled_date.asc(), Inspection.id.asc())
            )
        )
        due = overdue = 0
        for inspection in open_inspections:
            meta = {"source": "monitor", "organizationId": inspection.organization_id}
            if inspection.scheduled_date == as_of and inspection.due_notified_at is None:
                inspection.due_notified_at = utcnow()
                session.flush()
                bus.publish(session, EventTypes.INSPECTION_DUE, inspection.id, AGGREGATE_TYPE, _payload(inspection), metadata=meta)
                due += 1
            elif inspection.scheduled_date < cutoff and inspection.overdue_notified_at is None:
                inspection.status = InspectionStatus.overdue
                inspection.overdue_notified_at = utcnow()
                session.flush()
                bus.publish(
                    session,
                    EventTypes.INSPECTION_OVERDUE,
                    inspection.id,
                    AGGREGATE_TYPE,
                    {**_payload(inspection), "daysOverdue": (as_of - inspection.scheduled_date).days},
                    metadata=meta,
                )
                overdue += 1
        return InspectionScanResult(due=due, overdue=overdue)

    result = bus.commit_and_dispatch(db, _op)
    logger.info("inspection_scan", as_of=as_of.isoformat(), due=result.due, overdue=result.overdue)
    return result
