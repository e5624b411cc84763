"""Telnyx status webhook — records the final delivery status of MMS sends.

Always answers 200: a status callback we can't use is logged, never retried.
"""

import json
import logging

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from covertext.app.routes.telnyx_inbound import verify_telnyx_signature
from covertext.domain.enums import DeliveryStatus
from covertext.domain.models import Delivery, utcnow
from covertext.domain.schemas import TelnyxWebhook, WebhookAck
from covertext.infra.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/telnyx", tags=["webhooks"])


@router.post("/status", response_model=WebhookAck, dependencies=[Depends(verify_telnyx_signature)])
async def telnyx_status(request: Request, db: AsyncSession = Depends(get_db)):
    """Handle Telnyx ``message.finalized`` callbacks."""
    try:
        webhook = TelnyxWebhook.model_validate(await request.json())
    except (json.JSONDecodeError, ValidationError) as e:
        logger.error("Invalid Telnyx status payload: %s", e)
        return WebhookAck(action="invalid")

    event_type = webhook.data.event_type
    logger.info("Telnyx status event: %s", event_type)

    payload = webhook.data.payload
    if event_type != "message.finalized" or payload is None:
        return WebhookAck(action="ignored")

    result = await db.execute(
        select(Delivery).where(Delivery.provider_message_id == payload.id)
    )
    delivery = result.scalars().first()
    if delivery is None:
        logger.warning("No delivery found for Telnyx message %s", payload.id)
        return WebhookAck(action="not_found")

    delivery.status = DeliveryStatus.from_provider(payload.delivery_status).value
    delivery.last_status_at = utcnow()
    await db.commit()

    logger.info("Delivery %s for message %s is now %s", delivery.id, payload.id, delivery.status)
    return WebhookAck(action="updated", state=delivery.status)
