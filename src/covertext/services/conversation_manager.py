"""Conversation Manager — runs one inbound SMS through the menu engine.

Flow per message:

1. Guards (STOP, START, HELP, opt-out gate, inbound rate limit). The first
   guard that handles the message ends processing; no session is touched.
2. Find or create the sender's ConversationSession.
3. Reset it if expired, then slide the expiry window.
4. Route on the session state: intent selection, option selection, or reset.
5. Fulfill a valid selection (Request + reply + audit) and mark complete.

Every reply goes through OutboundMessenger and every decision is audited.
One manager handles one message at a time; the caller owns the transaction.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from covertext.app.config import Settings, get_settings
from covertext.conversation import templates
from covertext.conversation.contracts import (
    CONTINUE,
    GuardResult,
    IntentResult,
    ProcessResult,
    SessionContext,
)
from covertext.conversation.intent_router import CONFIDENCE_THRESHOLD, normalize, route_intent
from covertext.domain.enums import (
    AuditEventType,
    ConversationEvent,
    ConversationState,
    Intent,
    MessageDirection,
    PolicyType,
    RequestStatus,
    RequestType,
)
from covertext.domain.errors import SMSDeliveryError
from covertext.domain.models import (
    Agency,
    Contact,
    ConversationSession,
    MessageLog,
    Request,
    SmsOptOut,
    as_utc,
    utcnow,
)
from covertext.services.audit_service import AuditService
from covertext.services.conversation_state_machine import (
    INITIAL_STATE,
    SELECTION_STATES,
    next_state,
)
from covertext.services.fulfillment import (
    CardResolver,
    ExpirationResolver,
    PolicyDirectory,
    build_options,
)
from covertext.services.outbound_messenger import OutboundMessenger

logger = logging.getLogger(__name__)

STOP_WORD = "stop"
START_WORD = "start"
HELP_WORD = "help"
RESET_WORDS = frozenset({"menu", "cancel", "restart"})

# Numeric shortcuts accepted only at the main menu
SHORTCUT_CARD = "1"
SHORTCUT_EXPIRATION = "2"
SHORTCUT_OTHER = "3"


@dataclass(frozen=True)
class ConversationConfig:
    """Engine thresholds, built from Settings or passed in directly."""
    session_expiry: timedelta = timedelta(minutes=15)
    menu_rate_limit: timedelta = timedelta(seconds=60)
    inbound_rate_limit: int = 10
    inbound_rate_window: timedelta = timedelta(hours=1)
    block_notice_interval: timedelta = timedelta(hours=24)
    confidence_threshold: float = CONFIDENCE_THRESHOLD

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConversationConfig":
        return cls(
            session_expiry=timedelta(minutes=settings.session_expiry_minutes),
            menu_rate_limit=timedelta(seconds=settings.menu_rate_limit_seconds),
            inbound_rate_limit=settings.inbound_rate_limit,
            inbound_rate_window=timedelta(minutes=settings.inbound_rate_window_minutes),
            block_notice_interval=timedelta(hours=settings.block_notice_interval_hours),
        )


class ConversationManager:
    """Applies guards, session bookkeeping, routing and fulfillment."""

    def __init__(
        self,
        db: AsyncSession,
        messenger: OutboundMessenger | None = None,
        config: ConversationConfig | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.config = config or ConversationConfig.from_settings(self.settings)
        self.messenger = messenger or OutboundMessenger(db)
        self.audit = AuditService(db)
        self.directory = PolicyDirectory(db)
        self.clock = clock

        self.message_log: MessageLog | None = None
        self.agency: Agency | None = None
        self.session: ConversationSession | None = None
        self.context = SessionContext()
        self.now: datetime | None = None

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def process_inbound(self, message_log_id: str) -> ProcessResult:
        """Process a persisted, de-duplicated inbound MessageLog."""
        await self._load(message_log_id)

        for guard in (
            self._handle_stop,
            self._handle_start,
            self._handle_help,
            self._check_opt_out,
            self._check_rate_limit,
        ):
            result = await guard()
            if result.is_handled:
                logger.info(
                    "Inbound %s from %s handled by guard: %s",
                    message_log_id, self.phone, result.action,
                )
                return ProcessResult(action=result.action)

        await self._find_or_create_session()
        if self.session.is_expired(self.now):
            self._handle_session_expiry()
        await self._touch_session()

        await self._route_and_respond()

        logger.info(
            "Inbound %s from %s routed: session=%s state=%s",
            message_log_id, self.phone, self.session.id, self.session.state,
        )
        return ProcessResult(action="routed", session_id=self.session.id, state=self.session.state)

    async def _load(self, message_log_id: str) -> None:
        self.message_log = await self.db.get(MessageLog, message_log_id)
        if self.message_log is None:
            raise LookupError(f"MessageLog {message_log_id} not found")
        self.agency = await self.db.get(Agency, self.message_log.agency_id)
        if self.agency is None:
            raise LookupError(f"Agency {self.message_log.agency_id} not found")
        self.session = None
        self.context = SessionContext()
        self.now = self.clock()

    @property
    def phone(self) -> str:
        return self.message_log.from_phone

    @property
    def body(self) -> str:
        return normalize(self.message_log.body)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    async def _handle_stop(self) -> GuardResult:
        if self.body != STOP_WORD:
            return CONTINUE

        opt_out = await self._find_opt_out()
        if opt_out is None:
            opt_out = SmsOptOut(agency_id=self.agency.id, phone_e164=self.phone)
            self.db.add(opt_out)
        opt_out.opted_out_at = self.now
        await self.db.flush()

        await self._reply(templates.STOP_CONFIRM)
        await self._audit(AuditEventType.OPTED_OUT, phone_e164=self.phone)
        return GuardResult.handled("opted_out")

    async def _handle_start(self) -> GuardResult:
        if self.body != START_WORD:
            return CONTINUE

        opt_out = await self._find_opt_out()
        if opt_out is not None:
            await self.db.delete(opt_out)
            await self.db.flush()
            await self._reply(templates.START_CONFIRM)
            await self._audit(AuditEventType.OPT_IN, phone_e164=self.phone)
        else:
            await self._reply(templates.START_CONFIRM)
        return GuardResult.handled("opted_in")

    async def _handle_help(self) -> GuardResult:
        if self.body != HELP_WORD:
            return CONTINUE

        await self._reply(templates.HELP)
        await self._audit(AuditEventType.HELP_REQUESTED, phone_e164=self.phone)
        return GuardResult.handled("help_sent")

    async def _check_opt_out(self) -> GuardResult:
        opt_out = await self._find_opt_out()
        if opt_out is None:
            return CONTINUE

        if not opt_out.should_send_block_notice(self.now, self.config.block_notice_interval):
            return GuardResult.handled("opted_out_silent")

        await self._reply(templates.OPTED_OUT_BLOCK_NOTICE)
        opt_out.mark_block_notice_sent(self.now)
        await self.db.flush()
        await self._audit(AuditEventType.OPTED_OUT_BLOCKED, phone_e164=self.phone)
        return GuardResult.handled("opted_out_blocked")

    async def _check_rate_limit(self) -> GuardResult:
        recent_count = await self._recent_inbound_count()
        if recent_count <= self.config.inbound_rate_limit:
            return CONTINUE

        await self._reply(templates.RATE_LIMITED)
        await self._audit(
            AuditEventType.RATE_LIMITED,
            phone_e164=self.phone,
            recent_count=recent_count,
        )
        return GuardResult.handled("rate_limited")

    async def _find_opt_out(self) -> SmsOptOut | None:
        result = await self.db.execute(
            select(SmsOptOut).where(
                SmsOptOut.agency_id == self.agency.id,
                SmsOptOut.phone_e164 == self.phone,
            )
        )
        return result.scalar_one_or_none()

    async def _recent_inbound_count(self) -> int:
        """Inbound messages from this sender in the trailing window, current one included."""
        window_start = self.now - self.config.inbound_rate_window
        result = await self.db.execute(
            select(func.count())
            .select_from(MessageLog)
            .where(
                MessageLog.agency_id == self.agency.id,
                MessageLog.from_phone == self.phone,
                MessageLog.direction == MessageDirection.INBOUND.value,
                MessageLog.created_at >= window_start,
                MessageLog.created_at <= self.now,
            )
        )
        return result.scalar_one()

    # ------------------------------------------------------------------
    # Session bookkeeping
    # ------------------------------------------------------------------

    async def _select_session(self) -> ConversationSession | None:
        result = await self.db.execute(
            select(ConversationSession).where(
                ConversationSession.agency_id == self.agency.id,
                ConversationSession.from_phone_e164 == self.phone,
            )
        )
        return result.scalar_one_or_none()

    async def _find_or_create_session(self) -> None:
        session = await self._select_session()
        if session is None:
            session = ConversationSession(
                agency_id=self.agency.id,
                from_phone_e164=self.phone,
                state=INITIAL_STATE.value,
                context={},
            )
            try:
                async with self.db.begin_nested():
                    self.db.add(session)
                    await self.db.flush()
                logger.info("Created conversation session for %s", self.phone)
            except IntegrityError:
                # Another worker created it first; the unique constraint wins
                logger.info("Session for %s created concurrently, reloading", self.phone)
                session = await self._select_session()
                if session is None:
                    raise

        self.session = session
        self.context = SessionContext.from_dict(session.context)

    def _handle_session_expiry(self) -> None:
        logger.info("Session %s expired, resetting", self.session.id)
        self.context = SessionContext()
        self._transition(ConversationEvent.RESET)

    async def _touch_session(self) -> None:
        self.session.last_activity_at = self.now
        self.session.expires_at = self.now + self.config.session_expiry
        await self._save_session()

    async def _save_session(self) -> None:
        self.session.context = self.context.to_dict()
        await self.db.flush()

    def _transition(self, event: ConversationEvent) -> None:
        previous = self.session.state
        self.session.state = next_state(previous, event).value
        logger.debug(
            "Session %s: %s --%s--> %s",
            self.session.id, previous, event.value, self.session.state,
        )

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def _route_and_respond(self) -> None:
        state = ConversationState.parse(self.session.state)

        if state == ConversationState.AWAITING_INTENT_SELECTION:
            await self._handle_intent_selection()
        elif state in SELECTION_STATES:
            await self._handle_in_flow_message(state)
        else:
            # complete, or a state value this version doesn't know
            await self._reset_to_menu()

    async def _handle_intent_selection(self) -> None:
        body = self.body

        if body == SHORTCUT_CARD:
            await self._enter_card_flow()
            return
        if body == SHORTCUT_EXPIRATION:
            await self._enter_expiration_flow()
            return
        if body == SHORTCUT_OTHER:
            await self._send_unsupported_then_menu()
            return

        routing = route_intent(
            self.message_log.body,
            state=self.session.state,
            last_menu_sent_at=self.context.last_menu_sent_at,
            threshold=self.config.confidence_threshold,
        )
        await self._audit_intent(routing)

        if routing.intent == Intent.INSURANCE_CARD:
            await self._enter_card_flow()
        elif routing.intent == Intent.POLICY_EXPIRATION:
            await self._enter_expiration_flow()
        elif routing.intent == Intent.HELP_OR_OTHER:
            await self._send_unsupported_then_menu()
        else:
            await self._send_menu()

    async def _handle_in_flow_message(self, state: ConversationState) -> None:
        body = self.body

        if body in RESET_WORDS:
            await self._reset_to_menu()
            return

        option = self.context.find_option(body)
        if option is None:
            await self._reply(templates.INVALID_SELECTION)
            return

        if state == ConversationState.AWAITING_VEHICLE_SELECTION:
            await self._fulfill_card_request(option.ref)
        else:
            await self._fulfill_expiration_request(option.ref)

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    async def _enter_card_flow(self) -> None:
        await self._enter_flow(
            intent=Intent.INSURANCE_CARD,
            event=ConversationEvent.CARD_FLOW_ENTERED,
            policy_type=PolicyType.AUTO.value,
            menu_template=templates.CARD_VEHICLE_MENU,
            empty_template=templates.NO_AUTO_POLICIES,
        )

    async def _enter_expiration_flow(self) -> None:
        await self._enter_flow(
            intent=Intent.POLICY_EXPIRATION,
            event=ConversationEvent.EXPIRATION_FLOW_ENTERED,
            policy_type=None,
            menu_template=templates.EXPIRE_POLICY_MENU,
            empty_template=templates.NO_POLICIES,
        )

    async def _enter_flow(
        self,
        intent: Intent,
        event: ConversationEvent,
        policy_type: str | None,
        menu_template: str,
        empty_template: str,
    ) -> None:
        contact = await self._find_contact()
        if contact is None:
            logger.info("No contact for %s at agency %s", self.phone, self.agency.id)
            await self._reply(templates.ACCOUNT_NOT_FOUND)
            await self._reset_to_menu()
            return

        policies = await self.directory.list_policies(contact.id, policy_type)
        if not policies:
            await self._reply(empty_template)
            await self._reset_to_menu()
            return

        options = build_options(policies)
        self.context.options = options
        self.context.intent = intent.value
        self._transition(event)
        await self._save_session()

        await self._reply(
            templates.render(menu_template, options=templates.format_options(options))
        )

    async def _fulfill_card_request(self, policy_id: str) -> None:
        contact = await self._find_contact()
        resolver = CardResolver(self.directory, self.settings)
        payload = await resolver.resolve(policy_id, contact.id if contact else None)

        request = await self._create_request(RequestType.AUTO_ID_CARD, contact, policy_id)
        async with self._failing_request(request):
            await self.messenger.send_mms(
                self.agency, self.phone, payload.body, payload.media_url, request=request,
            )
        await self._audit(
            AuditEventType.CARD_FULFILLED,
            request=request,
            policy_id=payload.policy_id,
            document_id=payload.document_id,
            contact_id=contact.id if contact else None,
            session_id=self.session.id,
        )
        logger.info("Card for policy %s sent to %s (request %s)", policy_id, self.phone, request.id)
        await self._complete()

    async def _fulfill_expiration_request(self, policy_id: str) -> None:
        contact = await self._find_contact()
        resolver = ExpirationResolver(self.directory)
        payload = await resolver.resolve(policy_id, contact.id if contact else None)

        request = await self._create_request(RequestType.POLICY_EXPIRATION, contact, policy_id)
        async with self._failing_request(request):
            await self.messenger.send_sms(self.agency, self.phone, payload.body, request=request)
        await self._audit(
            AuditEventType.EXPIRATION_FULFILLED,
            request=request,
            policy_id=payload.policy_id,
            expires_on=payload.expires_on.isoformat(),
            contact_id=contact.id if contact else None,
            session_id=self.session.id,
        )
        logger.info("Expiration for policy %s sent to %s (request %s)", policy_id, self.phone, request.id)
        await self._complete()

    async def _create_request(
        self,
        request_type: RequestType,
        contact: Contact | None,
        policy_id: str,
    ) -> Request:
        request = Request(
            agency_id=self.agency.id,
            contact_id=contact.id if contact else None,
            request_type=request_type.value,
            status=RequestStatus.FULFILLED.value,
            fulfilled_at=self.now,
            selected_ref=str(policy_id),
            inbound_body=self.message_log.body,
        )
        self.db.add(request)
        await self.db.flush()
        return request

    @asynccontextmanager
    async def _failing_request(self, request: Request):
        """Mark the Request failed if its reply never reached the provider."""
        try:
            yield
        except SMSDeliveryError as e:
            request.status = RequestStatus.FAILED.value
            request.fulfilled_at = None
            request.failure_reason = str(e)[:255]
            await self.db.flush()
            raise

    async def _complete(self) -> None:
        self.context = SessionContext()
        self._transition(ConversationEvent.FULFILLED)
        await self._save_session()

    async def _find_contact(self) -> Contact | None:
        return await self.directory.find_contact(self.agency.id, self.phone)

    # ------------------------------------------------------------------
    # Menu
    # ------------------------------------------------------------------

    async def _send_unsupported_then_menu(self) -> None:
        await self._reply(templates.GLOBAL_UNSUPPORTED)
        await self._send_menu()

    async def _reset_to_menu(self) -> None:
        self.context.clear_flow()
        self._transition(ConversationEvent.RESET)
        await self._save_session()
        await self._send_menu()

    def _should_send_short_menu(self) -> bool:
        last_sent = as_utc(self.context.last_menu_sent_at)
        if last_sent is None:
            return False
        return self.now - last_sent < self.config.menu_rate_limit

    async def _send_menu(self) -> None:
        if self._should_send_short_menu():
            body, template_id = templates.GLOBAL_MENU_SHORT, templates.MENU_TEMPLATE_SHORT
        else:
            body, template_id = templates.GLOBAL_MENU, templates.MENU_TEMPLATE_FULL

        await self._reply(body)

        self.context.last_menu_sent_at = self.now
        await self._save_session()
        await self._audit(
            AuditEventType.MENU_SENT,
            template=template_id,
            session_id=self.session.id,
        )

    # ------------------------------------------------------------------
    # Output helpers
    # ------------------------------------------------------------------

    async def _reply(self, body: str) -> MessageLog:
        return await self.messenger.send_sms(self.agency, self.phone, body)

    async def _audit(
        self,
        event_type: AuditEventType,
        request: Request | None = None,
        **metadata,
    ) -> None:
        metadata = {"message_log_id": self.message_log.id, **metadata}
        await self.audit.record_event(self.agency.id, event_type, metadata, request=request)

    async def _audit_intent(self, routing: IntentResult) -> None:
        await self._audit(
            AuditEventType.INTENT_ROUTED,
            intent=routing.intent.value,
            confidence=routing.confidence,
            reason=routing.reason,
            normalized_body=self.body,
            session_id=self.session.id,
        )
