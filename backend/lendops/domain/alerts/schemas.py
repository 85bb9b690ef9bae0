import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from lendops.domain.alerts.enums import AlertSeverity, AlertStatus


class AlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: uuid.UUID
    organization_id: str | None
    entity_type: str
    entity_id: str
    code: str
    message: str
    severity: AlertSeverity
    status: AlertStatus
    source_event_id: uuid.UUID
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="alert_metadata")
    created_at: datetime
    read_at: datetime | None
    archived_at: datetime | None
