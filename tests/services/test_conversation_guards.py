"""Guard pipeline tests: STOP / START / HELP, opt-out gate and inbound rate limit.

A message handled by a guard never creates or mutates a ConversationSession.
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from covertext.conversation import templates
from covertext.conversation.contracts import InboundEvent
from covertext.domain.models import AuditEvent, ConversationSession, MessageLog, SmsOptOut
from covertext.services.conversation_manager import ConversationConfig
from covertext.services.inbound_service import InboundService, KeyedLocks

CUSTOMER = "+15559876543"


async def _audit_events(db, event_type: str) -> list[AuditEvent]:
    result = await db.execute(select(AuditEvent).where(AuditEvent.event_type == event_type))
    return list(result.scalars().all())


async def _session_for(db, phone: str = CUSTOMER) -> ConversationSession | None:
    result = await db.execute(
        select(ConversationSession).where(ConversationSession.from_phone_e164 == phone)
    )
    return result.scalar_one_or_none()


async def _opt_outs(db) -> list[SmsOptOut]:
    result = await db.execute(select(SmsOptOut))
    return list(result.scalars().all())


@pytest.fixture
async def agency(make_agency):
    return await make_agency()


# ===========================================================================
# STOP / START / HELP
# ===========================================================================


class TestStop:
    async def test_stop_creates_opt_out_and_confirms(self, db_session, agency, send_sms, fake_provider):
        result = await send_sms("  STOP ")

        assert result.action == "opted_out"
        opt_outs = await _opt_outs(db_session)
        assert len(opt_outs) == 1
        assert opt_outs[0].phone_e164 == CUSTOMER
        assert opt_outs[0].agency_id == agency.id
        assert fake_provider.texts == [templates.STOP_CONFIRM]
        assert len(await _audit_events(db_session, "sms.opted_out")) == 1
        assert await _session_for(db_session) is None

    async def test_repeated_stop_upserts(self, db_session, agency, send_sms, clock):
        await send_sms("stop")
        clock.advance(minutes=5)
        await send_sms("stop")

        opt_outs = await _opt_outs(db_session)
        assert len(opt_outs) == 1

    async def test_stop_is_exact_match(self, db_session, agency, send_sms):
        await send_sms("please stop")
        assert await _opt_outs(db_session) == []


class TestStart:
    async def test_start_removes_opt_out(self, db_session, agency, send_sms, fake_provider):
        await send_sms("STOP")
        result = await send_sms("Start")

        assert result.action == "opted_in"
        assert await _opt_outs(db_session) == []
        assert fake_provider.last_text == templates.START_CONFIRM
        assert len(await _audit_events(db_session, "sms.opt_in")) == 1

    async def test_start_without_opt_out_still_confirms(self, db_session, agency, send_sms, fake_provider):
        result = await send_sms("start")

        assert result.action == "opted_in"
        assert fake_provider.texts == [templates.START_CONFIRM]
        assert await _audit_events(db_session, "sms.opt_in") == []


class TestHelp:
    async def test_help_sends_help_text_without_session(self, db_session, agency, send_sms, fake_provider):
        result = await send_sms("HELP")

        assert result.action == "help_sent"
        assert fake_provider.texts == [templates.HELP]
        assert len(await _audit_events(db_session, "sms.help_requested")) == 1
        assert await _session_for(db_session) is None

    async def test_help_does_not_touch_existing_session(self, db_session, agency, send_sms, clock):
        await send_sms("hello")
        session = await _session_for(db_session)
        state, context, expires_at = session.state, dict(session.context), session.expires_at

        clock.advance(minutes=2)
        await send_sms("help")

        session = await _session_for(db_session)
        assert session.state == state
        assert session.context == context
        assert session.expires_at == expires_at


# ===========================================================================
# Opt-out gate
# ===========================================================================


class TestOptOutGate:
    async def test_block_notice_at_most_once_per_24h(self, db_session, agency, send_sms, fake_provider, clock):
        await send_sms("STOP")
        fake_provider.sent.clear()

        first = await send_sms("card")
        assert first.action == "opted_out_blocked"
        assert fake_provider.texts == [templates.OPTED_OUT_BLOCK_NOTICE]

        for _ in range(5):
            clock.advance(hours=3)
            result = await send_sms("card")
            assert result.action == "opted_out_silent"
        assert len(fake_provider.sent) == 1

        clock.advance(hours=9, minutes=1)  # just past 24h since the notice
        result = await send_sms("card")
        assert result.action == "opted_out_blocked"
        assert len(fake_provider.sent) == 2
        assert len(await _audit_events(db_session, "sms.opted_out_blocked")) == 2

    async def test_opted_out_sender_gets_no_session(self, db_session, agency, send_sms):
        await send_sms("STOP")
        await send_sms("card")
        assert await _session_for(db_session) is None

    async def test_other_agency_not_affected(self, db_session, agency, make_agency, send_sms, fake_provider):
        await make_agency(name="Westside", phone_sms="+15550002000")
        await send_sms("STOP")
        fake_provider.sent.clear()

        result = await send_sms("hello", to_phone="+15550002000")
        assert result.action == "routed"
        assert fake_provider.texts == [templates.GLOBAL_MENU]


# ===========================================================================
# Inbound rate limit
# ===========================================================================


class TestRateLimit:
    async def test_tenth_allowed_eleventh_limited(self, db_session, agency, send_sms, fake_provider, clock):
        for i in range(10):
            result = await send_sms(f"hello {i}")
            assert result.action == "routed"
            clock.advance(minutes=1)

        fake_provider.sent.clear()
        result = await send_sms("hello again")

        assert result.action == "rate_limited"
        assert fake_provider.texts == [templates.RATE_LIMITED]
        events = await _audit_events(db_session, "sms.rate_limited")
        assert len(events) == 1
        assert events[0].event_metadata["recent_count"] == 11

    async def test_messages_outside_window_do_not_count(self, db_session, agency, send_sms, clock):
        await send_sms("first")
        clock.advance(hours=1, minutes=1)

        for i in range(10):
            result = await send_sms(f"hello {i}")
            assert result.action == "routed"
            clock.advance(seconds=1)

        # The 11th inside the trailing hour trips the limit
        result = await send_sms("one more")
        assert result.action == "rate_limited"

    async def test_rate_limit_counts_per_sender(self, db_session, agency, send_sms):
        for i in range(11):
            await send_sms(f"hello {i}", from_phone="+15551110000")

        result = await send_sms("hello", from_phone="+15552220000")
        assert result.action == "routed"

    async def test_rate_limited_message_does_not_mutate_session(self, db_session, agency, send_sms, clock):
        for i in range(10):
            await send_sms(f"hello {i}")
        session = await _session_for(db_session)
        snapshot = (session.state, dict(session.context), session.last_activity_at)

        clock.advance(seconds=30)
        result = await send_sms("card")

        assert result.action == "rate_limited"
        session = await _session_for(db_session)
        assert (session.state, session.context, session.last_activity_at) == snapshot

    async def test_threshold_comes_from_config(self, db_session, agency, fake_provider, clock):
        service = InboundService(
            db_session,
            provider=fake_provider,
            config=ConversationConfig(inbound_rate_limit=2, inbound_rate_window=timedelta(minutes=5)),
            clock=clock,
            locks=KeyedLocks(),
        )
        actions = []
        for i in range(3):
            result = await service.receive(InboundEvent(
                from_phone=CUSTOMER,
                to_phone=agency.phone_sms,
                body="hello",
                provider_message_id=f"cfg-{i}",
            ))
            actions.append(result.action)

        assert actions == ["routed", "routed", "rate_limited"]
        count = await db_session.scalar(
            select(func.count()).select_from(MessageLog).where(MessageLog.direction == "inbound")
        )
        assert count == 3
