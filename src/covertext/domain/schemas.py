"""Pydantic v2 schemas for provider webhooks and API responses."""

from pydantic import BaseModel, ConfigDict, Field

from covertext.conversation.contracts import InboundEvent


# ---------------------------------------------------------------------------
# Telnyx webhooks
# ---------------------------------------------------------------------------


class TelnyxEndpoint(BaseModel):
    """A phone number on a Telnyx message (``from`` or one of ``to``)."""

    model_config = ConfigDict(extra="ignore")

    phone_number: str
    status: str | None = None


class TelnyxMedia(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str | None = None
    content_type: str | None = None


class TelnyxMessagePayload(BaseModel):
    """``data.payload`` of a Telnyx messaging event."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    from_: TelnyxEndpoint | None = Field(default=None, alias="from")
    to: list[TelnyxEndpoint] = Field(default_factory=list)
    text: str | None = None
    media: list[TelnyxMedia] = Field(default_factory=list)

    @property
    def to_phone(self) -> str | None:
        return self.to[0].phone_number if self.to else None

    @property
    def delivery_status(self) -> str:
        """Final per-recipient status of an outbound message."""
        if self.to and self.to[0].status:
            return self.to[0].status
        return "unknown"


class TelnyxEventData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_type: str
    id: str | None = None
    payload: TelnyxMessagePayload | None = None


class TelnyxWebhook(BaseModel):
    """Envelope of every Telnyx messaging webhook."""

    model_config = ConfigDict(extra="ignore")

    data: TelnyxEventData


class InboundMessage(TelnyxMessagePayload):
    """A ``message.received`` payload with the fields ingestion requires."""

    from_: TelnyxEndpoint = Field(alias="from")
    to: list[TelnyxEndpoint] = Field(min_length=1)

    def to_event(self) -> InboundEvent:
        return InboundEvent(
            from_phone=self.from_.phone_number,
            to_phone=self.to_phone,
            body=self.text or "",
            provider_message_id=self.id,
            media_count=len(self.media),
        )


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class WebhookAck(BaseModel):
    ok: bool = True
    action: str | None = None
    state: str | None = None
