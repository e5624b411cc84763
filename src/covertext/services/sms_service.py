"""SMS/MMS provider client for the Telnyx v2 Messaging API.

Endpoints used:
- POST /v2/messages — send outbound SMS, or MMS when media_urls is present

Without an API key the client runs in stub mode: the send is logged and no
provider id is returned, so local development and tests never hit Telnyx.
"""

import logging

import httpx

from covertext.app.config import Settings, get_settings
from covertext.domain.errors import SMSDeliveryError

logger = logging.getLogger(__name__)


class TelnyxClient:
    """Send messages via the Telnyx API."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self.base_url = self.settings.telnyx_api_base.rstrip("/")
        self._transport = transport

    @property
    def _configured(self) -> bool:
        return self.settings.telnyx_configured

    async def send_message(
        self,
        from_phone: str,
        to_phone: str,
        text: str,
        media_urls: list[str] | None = None,
    ) -> str | None:
        """Send one message and return the provider message id.

        Raises SMSDeliveryError on any transport error or non-2xx response.
        """
        if not self._configured:
            logger.warning("Telnyx not configured — message not sent to %s", to_phone)
            return None

        payload: dict = {"from": from_phone, "to": to_phone, "text": text}
        if media_urls:
            payload["media_urls"] = media_urls
        if self.settings.telnyx_messaging_profile_id:
            payload["messaging_profile_id"] = self.settings.telnyx_messaging_profile_id

        url = f"{self.base_url}/messages"
        logger.info(
            "Telnyx send: to=%s media=%d msg_len=%d",
            to_phone, len(media_urls or []), len(text),
        )

        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                resp = await client.post(
                    url,
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self.settings.telnyx_api_key}",
                        "Accept": "application/json",
                    },
                )
        except httpx.TimeoutException as e:
            logger.error("Telnyx request timed out for %s", to_phone)
            raise SMSDeliveryError("timeout") from e
        except httpx.HTTPError as e:
            logger.error("Telnyx transport error for %s: %s", to_phone, e)
            raise SMSDeliveryError(str(e)) from e

        if not 200 <= resp.status_code < 300:
            logger.error("Telnyx send failed (%d): %s", resp.status_code, resp.text[:300])
            raise SMSDeliveryError(resp.text[:300], status_code=resp.status_code)

        try:
            message_id = resp.json()["data"]["id"]
        except (ValueError, KeyError, TypeError) as e:
            raise SMSDeliveryError(f"Unexpected response body: {resp.text[:300]}") from e

        logger.info("Message sent to %s via Telnyx (id=%s)", to_phone, message_id)
        return message_id
