"""Shared test infrastructure for the CoverText test suite.

Provides:
- db_session: async SQLite in-memory session with all tables created
- clock: controllable UTC clock shared by the engine under test
- fake_provider: records outbound sends instead of calling Telnyx
- make_agency / make_contact / make_policy / make_document: row factories
- make_inbound: persisted inbound MessageLog, ready for process_inbound()
- send_sms: push a text through InboundService as a given sender
- telnyx_webhook_payload: factory for Telnyx webhook JSON
"""

import uuid
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import Base first, then models to register all tables
from covertext.infra.database import Base

import covertext.domain.models  # noqa: F401

from covertext.app.config import Settings
from covertext.conversation.contracts import InboundEvent
from covertext.domain.errors import SMSDeliveryError
from covertext.domain.models import Agency, Contact, Document, MessageLog, Policy
from covertext.services.conversation_manager import ConversationConfig
from covertext.services.inbound_service import InboundService, KeyedLocks

AGENCY_PHONE = "+15550001000"
CUSTOMER_PHONE = "+15559876543"
START_TIME = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Database session fixture
# ---------------------------------------------------------------------------

@pytest.fixture
async def db_session():
    """Async SQLite in-memory session with all tables created.

    Creates a fresh engine + tables for each test, yields a session,
    then rolls back and tears down.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


# ---------------------------------------------------------------------------
# Clock, settings and provider
# ---------------------------------------------------------------------------

class FakeClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, now: datetime = START_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings():
    """Settings isolated from any local .env."""
    return Settings(
        _env_file=None,
        telnyx_api_key="",
        telnyx_public_key="",
        public_base_url="https://files.covertext.test",
    )


class FakeProvider:
    """Records sends; set ``fail`` to make every send raise SMSDeliveryError."""

    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False
        self._counter = 0

    async def send_message(self, from_phone, to_phone, text, media_urls=None):
        if self.fail:
            raise SMSDeliveryError("provider down", status_code=503)
        self._counter += 1
        self.sent.append({
            "from": from_phone,
            "to": to_phone,
            "text": text,
            "media_urls": media_urls,
        })
        return f"msg-out-{self._counter}"

    @property
    def texts(self) -> list[str]:
        return [message["text"] for message in self.sent]

    @property
    def last_text(self) -> str | None:
        return self.sent[-1]["text"] if self.sent else None


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def config():
    return ConversationConfig()


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_agency(db_session):
    """Factory that creates and commits an Agency.

    Usage:
        agency = await make_agency(phone_sms="+15550001000")
    """
    async def _factory(name: str = "Reliable Insurance", phone_sms: str = AGENCY_PHONE) -> Agency:
        agency = Agency(id=str(uuid.uuid4()), name=name, phone_sms=phone_sms, active=True)
        db_session.add(agency)
        await db_session.commit()
        return agency

    return _factory


@pytest.fixture
def make_contact(db_session):
    async def _factory(
        agency: Agency,
        mobile_phone_e164: str = CUSTOMER_PHONE,
        first_name: str = "Alice",
        last_name: str = "Johnson",
    ) -> Contact:
        contact = Contact(
            id=str(uuid.uuid4()),
            agency_id=agency.id,
            mobile_phone_e164=mobile_phone_e164,
            first_name=first_name,
            last_name=last_name,
        )
        db_session.add(contact)
        await db_session.commit()
        return contact

    return _factory


@pytest.fixture
def make_policy(db_session):
    """Factory that creates Policy rows in a stable menu order.

    Each call gets a created_at one minute after the previous one.
    """
    created = {"at": START_TIME - timedelta(days=365)}

    async def _factory(
        contact: Contact,
        label: str = "2018 Honda Accord",
        policy_type: str = "auto",
        expires_on: date = date(2026, 9, 15),
    ) -> Policy:
        created["at"] += timedelta(minutes=1)
        policy = Policy(
            id=str(uuid.uuid4()),
            contact_id=contact.id,
            label=label,
            policy_type=policy_type,
            expires_on=expires_on,
            created_at=created["at"],
        )
        db_session.add(policy)
        await db_session.commit()
        return policy

    return _factory


@pytest.fixture
def make_document(db_session):
    async def _factory(
        policy: Policy,
        file_path: str | None = "cards/honda.pdf",
        kind: str = "auto_id_card",
    ) -> Document:
        document = Document(
            id=str(uuid.uuid4()),
            policy_id=policy.id,
            kind=kind,
            file_path=file_path,
            content_type="application/pdf",
        )
        db_session.add(document)
        await db_session.commit()
        return document

    return _factory


@pytest.fixture
def make_inbound(db_session, clock):
    """Factory that persists an inbound MessageLog (flushed, not committed)."""
    async def _factory(
        agency: Agency,
        body: str,
        from_phone: str = CUSTOMER_PHONE,
        created_at: datetime | None = None,
    ) -> MessageLog:
        message_log = MessageLog(
            id=str(uuid.uuid4()),
            agency_id=agency.id,
            direction="inbound",
            from_phone=from_phone,
            to_phone=agency.phone_sms,
            body=body,
            provider_message_id=f"msg-in-{uuid.uuid4()}",
            media_count=0,
            created_at=created_at or clock(),
        )
        db_session.add(message_log)
        await db_session.flush()
        return message_log

    return _factory


# ---------------------------------------------------------------------------
# End-to-end ingestion helper
# ---------------------------------------------------------------------------

@pytest.fixture
def inbound_service(db_session, fake_provider, config, clock, test_settings):
    return InboundService(
        db_session,
        provider=fake_provider,
        config=config,
        settings=test_settings,
        clock=clock,
        locks=KeyedLocks(),
    )


@pytest.fixture
def send_sms(inbound_service):
    """Push a text through ingestion + engine as if Telnyx delivered it.

    Usage:
        result = await send_sms("card")
    """
    async def _send(
        body: str,
        from_phone: str = CUSTOMER_PHONE,
        to_phone: str = AGENCY_PHONE,
        provider_message_id: str | None = None,
    ):
        event = InboundEvent(
            from_phone=from_phone,
            to_phone=to_phone,
            body=body,
            provider_message_id=provider_message_id or f"msg-in-{uuid.uuid4()}",
        )
        return await inbound_service.receive(event)

    return _send


# ---------------------------------------------------------------------------
# Telnyx webhook payload factory
# ---------------------------------------------------------------------------

@pytest.fixture
def telnyx_webhook_payload():
    """Factory that builds Telnyx messaging webhook JSON.

    Usage:
        payload = telnyx_webhook_payload("+15559876543", "card")
    """
    def _factory(
        from_number: str = CUSTOMER_PHONE,
        text: str = "menu",
        to_number: str = AGENCY_PHONE,
        event_type: str = "message.received",
        message_id: str | None = None,
        media: list[dict] | None = None,
        to_status: str | None = None,
    ) -> dict:
        to_entry = {"phone_number": to_number}
        if to_status:
            to_entry["status"] = to_status
        return {
            "data": {
                "event_type": event_type,
                "id": str(uuid.uuid4()),
                "payload": {
                    "id": message_id or f"msg-in-{uuid.uuid4()}",
                    "from": {"phone_number": from_number},
                    "to": [to_entry],
                    "text": text,
                    "media": media or [],
                },
            },
        }

    return _factory
