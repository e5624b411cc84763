"""Telnyx inbound webhook — hands received SMS to the conversation engine.

Processing runs inline so that messages from one sender are handled in the
order Telnyx delivers them. Responses:

- 200 for processed, duplicate, delivery_failed and ignored events
- 400 for payloads that don't match the Telnyx schema
- 401 when the Telnyx ed25519 signature is missing, stale or wrong
- 404 when no agency owns the receiving number

A reply Telnyx refuses is still a 200 (``delivery_failed``): the inbound
message is logged by then, so a redelivery would only be dropped as a
duplicate.
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from covertext.app.config import get_settings
from covertext.domain.errors import UnknownAgencyError, WebhookSignatureError
from covertext.domain.schemas import InboundMessage, TelnyxWebhook, WebhookAck
from covertext.infra.database import get_db
from covertext.infra.telnyx_signature import SIGNATURE_HEADER, TIMESTAMP_HEADER, verify_signature
from covertext.services.inbound_service import InboundService
from covertext.services.outbound_messenger import MessageProvider
from covertext.services.sms_service import TelnyxClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/telnyx", tags=["webhooks"])


def get_message_provider() -> MessageProvider:
    """FastAPI dependency: the outbound provider replies are sent through."""
    return TelnyxClient()


async def verify_telnyx_signature(request: Request) -> None:
    """Reject the request unless it carries a valid Telnyx signature."""
    settings = get_settings()
    if settings.telnyx_skip_signature:
        return

    if not settings.telnyx_public_key:
        logger.error("No Telnyx public key configured")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Webhook signature cannot be verified",
        )

    try:
        verify_signature(
            await request.body(),
            request.headers.get(SIGNATURE_HEADER),
            request.headers.get(TIMESTAMP_HEADER),
            settings.telnyx_public_key,
            settings.telnyx_signature_tolerance_seconds,
        )
    except WebhookSignatureError as e:
        logger.warning(
            "Telnyx signature rejected from %s: %s",
            request.client.host if request.client else "?", e,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        ) from e


async def read_webhook(request: Request) -> tuple[TelnyxWebhook, dict]:
    """Parse the raw body into the Telnyx envelope; 400 on anything malformed."""
    try:
        raw = await request.json()
        return TelnyxWebhook.model_validate(raw), raw
    except (json.JSONDecodeError, ValidationError) as e:
        logger.error("Invalid Telnyx payload: %s", e)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook payload",
        ) from e


@router.post("/inbound", response_model=WebhookAck, dependencies=[Depends(verify_telnyx_signature)])
async def telnyx_inbound(
    request: Request,
    db: AsyncSession = Depends(get_db),
    provider: MessageProvider = Depends(get_message_provider),
):
    """Handle a Telnyx ``message.received`` event."""
    webhook, raw = await read_webhook(request)

    event_type = webhook.data.event_type
    if event_type != "message.received":
        logger.info("Ignoring Telnyx event type: %s", event_type)
        return WebhookAck(action="ignored")

    try:
        message = InboundMessage.model_validate(raw["data"].get("payload"))
    except ValidationError as e:
        logger.error("Invalid message.received payload: %s", e)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid message payload",
        ) from e

    service = InboundService(db, provider=provider)
    try:
        result = await service.receive(message.to_event())
    except UnknownAgencyError as e:
        logger.warning("No agency found for number: %s", e.to_phone)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown number") from e

    return WebhookAck(action=result.action, state=result.state)
