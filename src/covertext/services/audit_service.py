"""Audit Service — append-only trail of every engine decision."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from covertext.domain.enums import AuditEventType
from covertext.domain.models import AuditEvent, Request

logger = logging.getLogger(__name__)


class AuditService:
    """Appends AuditEvent rows in the caller's transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_event(
        self,
        agency_id: str,
        event_type: AuditEventType | str,
        metadata: dict | None = None,
        request: Request | None = None,
    ) -> AuditEvent:
        event_type = event_type.value if isinstance(event_type, AuditEventType) else event_type
        event = AuditEvent(
            agency_id=agency_id,
            request_id=request.id if request is not None else None,
            event_type=event_type,
            event_metadata=dict(metadata or {}),
        )
        self.db.add(event)
        await self.db.flush()

        logger.debug("Audit %s agency=%s request=%s", event_type, agency_id, event.request_id)
        return event
