"""Outbound Messenger — sends SMS/MMS and records every attempt.

Every send writes an outbound MessageLog from the agency's number, even when
the provider fails: the row is written with no provider id and the
SMSDeliveryError is re-raised so the caller decides between retry and failure.
MMS sends also create a Delivery row that the status webhook updates later.
"""

import logging
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from covertext.domain.enums import DeliveryMethod, DeliveryStatus, MessageDirection
from covertext.domain.errors import SMSDeliveryError
from covertext.domain.models import Agency, Delivery, MessageLog, Request
from covertext.services.sms_service import TelnyxClient

logger = logging.getLogger(__name__)


class MessageProvider(Protocol):
    async def send_message(
        self,
        from_phone: str,
        to_phone: str,
        text: str,
        media_urls: list[str] | None = None,
    ) -> str | None:
        ...


class OutboundMessenger:
    """Dispatches replies through a provider and logs them."""

    def __init__(self, db: AsyncSession, provider: MessageProvider | None = None):
        self.db = db
        self.provider = provider or TelnyxClient()

    async def send_sms(
        self,
        agency: Agency,
        to_phone: str,
        body: str,
        request: Request | None = None,
    ) -> MessageLog:
        """Send a plain SMS and return its MessageLog."""
        try:
            provider_id = await self.provider.send_message(agency.phone_sms, to_phone, body)
        except SMSDeliveryError as e:
            logger.error("SMS send to %s failed: %s", to_phone, e)
            await self._log(agency, to_phone, body, request, provider_id=None, media_count=0)
            raise

        return await self._log(agency, to_phone, body, request, provider_id=provider_id, media_count=0)

    async def send_mms(
        self,
        agency: Agency,
        to_phone: str,
        body: str,
        media_url: str,
        request: Request | None = None,
    ) -> MessageLog:
        """Send an MMS with one attachment; also records a Delivery."""
        try:
            provider_id = await self.provider.send_message(
                agency.phone_sms, to_phone, body, media_urls=[media_url],
            )
        except SMSDeliveryError as e:
            logger.error("MMS send to %s failed: %s", to_phone, e)
            await self._log(agency, to_phone, body, request, provider_id=None, media_count=1)
            await self._delivery(request, DeliveryStatus.FAILED, provider_id=None)
            raise

        message_log = await self._log(
            agency, to_phone, body, request, provider_id=provider_id, media_count=1,
        )
        await self._delivery(request, DeliveryStatus.QUEUED, provider_id=provider_id)
        return message_log

    async def _log(
        self,
        agency: Agency,
        to_phone: str,
        body: str,
        request: Request | None,
        provider_id: str | None,
        media_count: int,
    ) -> MessageLog:
        message_log = MessageLog(
            agency_id=agency.id,
            request_id=request.id if request is not None else None,
            direction=MessageDirection.OUTBOUND.value,
            from_phone=agency.phone_sms,
            to_phone=to_phone,
            body=body,
            provider_message_id=provider_id,
            media_count=media_count,
        )
        self.db.add(message_log)
        await self.db.flush()
        return message_log

    async def _delivery(
        self,
        request: Request | None,
        status: DeliveryStatus,
        provider_id: str | None,
    ) -> Delivery:
        delivery = Delivery(
            request_id=request.id if request is not None else None,
            method=DeliveryMethod.MMS.value,
            status=status.value,
            provider_message_id=provider_id,
        )
        self.db.add(delivery)
        await self.db.flush()
        return delivery
