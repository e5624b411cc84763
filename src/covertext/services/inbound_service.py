"""Inbound ingestion — tenant resolution, de-duplication and the unit of work.

InboundService.receive() is the only caller of ConversationManager. For each
provider event it:

1. Resolves the agency that owns the receiving number.
2. Serializes on (agency, sender) so one sender's messages run in order.
3. Drops the event if its provider message id was already logged.
4. Persists the inbound MessageLog and runs the conversation engine.
5. Commits, or rolls back when the engine raised.

Provider failures are the exception to rollback: the outbound log rows
written before the failure are committed together with an audit event and
the event is acknowledged as ``delivery_failed``. The provider message id is
now logged, so a redelivery of the same event is dropped as a duplicate.
"""

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from covertext.app.config import Settings
from covertext.conversation.contracts import InboundEvent, InboundResult
from covertext.domain.enums import AuditEventType, MessageDirection
from covertext.domain.errors import SMSDeliveryError, UnknownAgencyError
from covertext.domain.models import Agency, MessageLog, utcnow
from covertext.services.audit_service import AuditService
from covertext.services.conversation_manager import ConversationConfig, ConversationManager
from covertext.services.outbound_messenger import MessageProvider, OutboundMessenger

logger = logging.getLogger(__name__)


class KeyedLocks:
    """asyncio.Lock per key, discarded once nobody holds or waits on it."""

    def __init__(self):
        self._locks: dict[tuple, asyncio.Lock] = {}
        self._users: dict[tuple, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: tuple):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


# Shared by every request handled in this process
sender_locks = KeyedLocks()


class InboundService:
    """Ingests provider events into the conversation engine."""

    def __init__(
        self,
        db: AsyncSession,
        provider: MessageProvider | None = None,
        config: ConversationConfig | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
        locks: KeyedLocks | None = None,
    ):
        self.db = db
        self.messenger = OutboundMessenger(db, provider)
        self.config = config
        self.settings = settings
        self.clock = clock
        self.locks = locks if locks is not None else sender_locks

    async def resolve_agency(self, to_phone: str) -> Agency:
        result = await self.db.execute(
            select(Agency).where(Agency.phone_sms == to_phone, Agency.active.is_(True))
        )
        agency = result.scalar_one_or_none()
        if agency is None:
            raise UnknownAgencyError(to_phone)
        return agency

    async def get_active_agency(self, agency_id: str) -> Agency | None:
        result = await self.db.execute(
            select(Agency).where(Agency.id == agency_id, Agency.active.is_(True))
        )
        return result.scalar_one_or_none()

    async def is_duplicate(self, provider_message_id: str) -> bool:
        result = await self.db.execute(
            select(MessageLog.id)
            .where(MessageLog.provider_message_id == provider_message_id)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def receive(self, event: InboundEvent) -> InboundResult:
        """Process one inbound event end to end and commit the outcome."""
        if event.agency_id:
            agency = await self.get_active_agency(event.agency_id)
            if agency is None:
                raise UnknownAgencyError(event.to_phone)
        else:
            agency = await self.resolve_agency(event.to_phone)

        async with self.locks.hold((agency.id, event.from_phone)):
            if await self.is_duplicate(event.provider_message_id):
                logger.info(
                    "Duplicate inbound %s from %s ignored",
                    event.provider_message_id, event.from_phone,
                )
                return InboundResult(action="duplicate", agency_id=agency.id)

            return await self._process(agency, event)

    async def _process(self, agency: Agency, event: InboundEvent) -> InboundResult:
        message_log = MessageLog(
            agency_id=agency.id,
            direction=MessageDirection.INBOUND.value,
            from_phone=event.from_phone,
            to_phone=event.to_phone,
            body=event.body,
            provider_message_id=event.provider_message_id,
            media_count=event.media_count,
            created_at=self.clock(),
        )
        self.db.add(message_log)
        await self.db.flush()
        logger.info(
            "Inbound SMS %s from %s to agency %s: %s",
            event.provider_message_id, event.from_phone, agency.id, event.body[:100],
        )

        manager = ConversationManager(
            self.db,
            messenger=self.messenger,
            config=self.config,
            settings=self.settings,
            clock=self.clock,
        )
        try:
            outcome = await manager.process_inbound(message_log.id)
        except SMSDeliveryError as e:
            state = manager.session.state if manager.session is not None else None
            logger.error(
                "Reply for inbound %s not accepted by provider: %s",
                event.provider_message_id, e,
            )
            await AuditService(self.db).record_event(
                agency.id,
                AuditEventType.DELIVERY_FAILED,
                {
                    "message_log_id": message_log.id,
                    "from_phone": event.from_phone,
                    "error": str(e),
                    "status_code": e.status_code,
                },
            )
            await self.db.commit()
            return InboundResult(
                action="delivery_failed",
                message_log_id=message_log.id,
                agency_id=agency.id,
                state=state,
            )
        except Exception:
            logger.exception("Inbound %s failed, rolling back", event.provider_message_id)
            await self.db.rollback()
            raise

        await self.db.commit()
        return InboundResult(
            action=outcome.action,
            message_log_id=message_log.id,
            agency_id=agency.id,
            state=outcome.state,
        )
