from __future__ import annotations

import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from lendops.core.config import settings
from lendops.core.events.payloads import UnknownPayload
from lendops.core.events.types import DomainEvent
from lendops.domain.alerts.enums import AlertSeverity, AlertStatus
from lendops.domain.alerts.models import Alert
from lendops.domain.alerts.rules import get_alert_rule
from lendops.shared.exceptions import InvalidTransition, NotFound
from lendops.shared.utils import utcnow

logger = structlog.get_logger(__name__)

ALLOWED_STATUS_TRANSITIONS = {
    AlertStatus.unread: frozenset({AlertStatus.read, AlertStatus.archived}),
    AlertStatus.read: frozenset({AlertStatus.archived}),
    AlertStatus.archived: frozenset(),
}


def _by_source_event(db: Session, event_id: uuid.UUID) -> Alert | None:
    return db.scalar(select(Alert).where(Alert.source_event_id == event_id))


def handle_event(db: Session, event: DomainEvent) -> Alert | None:
    """
    Turn a qualifying event into one alert.

    Returns None when no rule matches or the payload does not have the shape
    registered for its event type. A second delivery of the same event
    returns the alert created by the first one.
    """
    rule = get_alert_rule(event.event_type)
    if rule is None:
        return None
    payload = event.typed_payload()
    if isinstance(payload, UnknownPayload):
        logger.warning("alert_payload_unrecognized", event_id=str(event.id), event_type=event.event_type)
        return None
    if not rule.applies_to(payload):
        return None

    existing = _by_source_event(db, event.id)
    if existing is not None:
        return existing

    entity_type, entity_id = rule.entity_for(event, payload)
    alert = Alert(
        id=uuid.uuid4(),
        organization_id=event.metadata.organization_id or getattr(payload, "organization_id", None),
        entity_type=entity_type,
        entity_id=entity_id,
        code=rule.code,
        message=rule.message(payload),
        severity=rule.severity,
        status=AlertStatus.unread,
        source_event_id=event.id,
        alert_metadata={
            "eventType": event.event_type,
            **event.metadata.model_dump(mode="json", by_alias=True, exclude_none=True),
        },
        created_at=utcnow(),
    )
    # Concurrent duplicate deliveries collide on the unique source_event_id;
    # the losing handler attempt is retried by the bus and returns the winner above.
    db.add(alert)
    db.flush()

    logger.info("alert_created", alert_id=str(alert.id), code=rule.code, severity=rule.severity.value, event_id=str(event.id))
    return alert


def list_alerts(
    db: Session,
    *,
    status: AlertStatus | None = None,
    severity: AlertSeverity | None = None,
    organization_id: str | None = None,
    limit: int | None = None,
) -> list[Alert]:
    """Alerts newest first. ``limit`` defaults to the configured page size and is capped."""
    limit = settings.alert_list_default_limit if limit is None else limit
    limit = max(1, min(limit, settings.alert_list_max_limit))

    stmt = select(Alert)
    if status is not None:
        stmt = stmt.where(Alert.status == status)
    if severity is not None:
        stmt = stmt.where(Alert.severity == severity)
    if organization_id is not None:
        stmt = stmt.where(Alert.organization_id == organization_id)
    stmt = stmt.order_by(Alert.created_at.desc(), Alert.id.desc()).limit(limit)
    return list(db.scalars(stmt))


def get_alert(db: Session, alert_id: uuid.UUID) -> Alert:
    alert = db.get(Alert, alert_id)
    if alert is None:
        raise NotFound(f"Alert {alert_id} not found")
    return alert


def _set_status(db: Session, alert_id: uuid.UUID, target: AlertStatus) -> Alert:
    alert = get_alert(db, alert_id)
    current = AlertStatus(alert.status)
    if current == target:
        return alert
    if target not in ALLOWED_STATUS_TRANSITIONS[current]:
        raise InvalidTransition(current.value, target.value, entity="alert")

    now = utcnow()
    alert.status = target
    if target == AlertStatus.read:
        alert.read_at = now
    else:
        alert.archived_at = now
        alert.read_at = alert.read_at or now
    db.commit()
    db.refresh(alert)
    return alert


def mark_read(db: Session, alert_id: uuid.UUID) -> Alert:
    return _set_status(db, alert_id, AlertStatus.read)


def archive(db: Session, alert_id: uuid.UUID) -> Alert:
    return _set_status(db, alert_id, AlertStatus.archived)
