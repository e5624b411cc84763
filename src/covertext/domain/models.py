"""SQLAlchemy ORM models for CoverText.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- JSON for structured data (no JSONB)
- DateTime for timestamps, always written as UTC from Python
"""

import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)

from covertext.infra.database import Base


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Tenant / policyholders
# ---------------------------------------------------------------------------


class Agency(Base):
    """Insurance agency (tenant) with its own sending number."""

    __tablename__ = "agencies"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    phone_sms = Column(String(20), unique=True, nullable=False, index=True)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Contact(Base):
    """Policyholder who can text the agency's number."""

    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint("agency_id", "mobile_phone_e164", name="uq_contacts_agency_phone"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    mobile_phone_e164 = Column(String(20), nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Policy(Base):
    __tablename__ = "policies"

    id = Column(String(36), primary_key=True, default=_uuid)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=False, index=True)
    label = Column(String(255), nullable=False)
    policy_type = Column(String(30), nullable=False)  # auto, homeowners, ...
    expires_on = Column(Date, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Document(Base):
    """File attached to a policy. file_path is relative to the uploads directory."""

    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=_uuid)
    policy_id = Column(String(36), ForeignKey("policies.id"), nullable=False, index=True)
    kind = Column(String(30), nullable=False, default="auto_id_card")
    file_path = Column(String(500), nullable=True)
    content_type = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def has_file(self) -> bool:
        return bool(self.file_path)


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


class ConversationSession(Base):
    """Per-(agency, sender) menu state with a sliding expiry."""

    __tablename__ = "conversation_sessions"
    __table_args__ = (
        UniqueConstraint("agency_id", "from_phone_e164", name="uq_conversation_sessions_agency_phone"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=False, index=True)
    from_phone_e164 = Column(String(20), nullable=False)
    state = Column(String(40), nullable=False, default="awaiting_intent_selection")
    context = Column(JSON, default=dict)
    last_activity_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def is_expired(self, now: datetime) -> bool:
        expires_at = as_utc(self.expires_at)
        return expires_at is not None and expires_at < now


class MessageLog(Base):
    """Append-only record of every inbound and outbound SMS/MMS."""

    __tablename__ = "message_logs"

    id = Column(String(36), primary_key=True, default=_uuid)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=False, index=True)
    request_id = Column(String(36), ForeignKey("requests.id"), nullable=True, index=True)
    direction = Column(String(10), nullable=False)  # inbound, outbound
    from_phone = Column(String(20), nullable=True)
    to_phone = Column(String(20), nullable=True)
    body = Column(Text, nullable=True)
    provider_message_id = Column(String(100), nullable=True, index=True)
    media_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=utcnow, index=True)


class Request(Base):
    """A fulfilled (or failed) self-service ask."""

    __tablename__ = "requests"

    id = Column(String(36), primary_key=True, default=_uuid)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=False, index=True)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=True, index=True)
    request_type = Column(String(30), nullable=False)
    status = Column(String(20), nullable=False)
    fulfilled_at = Column(DateTime, nullable=True)
    selected_ref = Column(String(36), nullable=True)
    inbound_body = Column(Text, nullable=True)
    failure_reason = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Delivery(Base):
    """Lifecycle of one media send tied to a Request."""

    __tablename__ = "deliveries"

    id = Column(String(36), primary_key=True, default=_uuid)
    request_id = Column(String(36), ForeignKey("requests.id"), nullable=True, index=True)
    method = Column(String(10), nullable=False)
    status = Column(String(20), nullable=False)
    provider_message_id = Column(String(100), nullable=True, index=True)
    last_status_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=False, index=True)
    request_id = Column(String(36), ForeignKey("requests.id"), nullable=True, index=True)
    event_type = Column(String(50), nullable=False, index=True)
    event_metadata = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime, default=utcnow)


class SmsOptOut(Base):
    """A phone number that texted STOP to an agency."""

    __tablename__ = "sms_opt_outs"
    __table_args__ = (
        UniqueConstraint("agency_id", "phone_e164", name="uq_sms_opt_outs_agency_phone"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=False, index=True)
    phone_e164 = Column(String(20), nullable=False)
    opted_out_at = Column(DateTime, nullable=False, default=utcnow)
    last_block_notice_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def should_send_block_notice(self, now: datetime, interval: timedelta) -> bool:
        """At most one "you're opted out" notice per rolling interval."""
        last = as_utc(self.last_block_notice_at)
        return last is None or last < now - interval

    def mark_block_notice_sent(self, now: datetime) -> None:
        self.last_block_notice_at = now
