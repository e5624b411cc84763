"""Typed dataclasses for conversation engine I/O contracts."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from covertext.domain.enums import Intent


class GuardOutcome(str, Enum):
    """Result of one step in the inbound guard pipeline."""

    HANDLED = "handled"    # reply sent, stop processing this message
    CONTINUE = "continue"


@dataclass(frozen=True)
class GuardResult:
    """Tagged result of a guard; ``action`` names what a HANDLED guard did."""
    outcome: GuardOutcome = GuardOutcome.CONTINUE
    action: str | None = None

    @classmethod
    def handled(cls, action: str) -> "GuardResult":
        return cls(outcome=GuardOutcome.HANDLED, action=action)

    @property
    def is_handled(self) -> bool:
        return self.outcome is GuardOutcome.HANDLED


CONTINUE = GuardResult()


@dataclass
class ProcessResult:
    """What the conversation manager did with one inbound message."""
    action: str = "routed"
    session_id: str | None = None
    state: str | None = None


@dataclass
class IntentResult:
    """Output of the deterministic intent router."""
    intent: Intent = Intent.MENU
    confidence: float = 0.0
    reason: str = ""


@dataclass
class MenuOption:
    """One numbered line of a selection menu."""
    key: str
    ref: str
    label: str

    def to_dict(self) -> dict:
        return {"key": self.key, "ref": self.ref, "label": self.label}

    @classmethod
    def from_dict(cls, data: dict) -> "MenuOption":
        return cls(
            key=str(data.get("key", "")),
            ref=str(data.get("ref", "")),
            label=str(data.get("label", "")),
        )


@dataclass
class SessionContext:
    """Typed view of ConversationSession.context.

    Stored as JSON with the keys ``options``, ``intent`` and
    ``last_menu_sent_at`` (ISO-8601).
    """
    options: list[MenuOption] = field(default_factory=list)
    intent: str | None = None
    last_menu_sent_at: datetime | None = None

    def find_option(self, key: str) -> MenuOption | None:
        for option in self.options:
            if option.key == key:
                return option
        return None

    def clear_flow(self) -> None:
        """Drop the menu options but keep the menu throttle timestamp."""
        self.options = []
        self.intent = None

    def to_dict(self) -> dict:
        data: dict = {}
        if self.options:
            data["options"] = [option.to_dict() for option in self.options]
        if self.intent:
            data["intent"] = self.intent
        if self.last_menu_sent_at:
            data["last_menu_sent_at"] = self.last_menu_sent_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict | None) -> "SessionContext":
        data = data or {}
        options = [
            MenuOption.from_dict(item)
            for item in data.get("options") or []
            if isinstance(item, dict)
        ]

        last_menu_sent_at = None
        raw = data.get("last_menu_sent_at")
        if isinstance(raw, str):
            try:
                last_menu_sent_at = datetime.fromisoformat(raw)
            except ValueError:
                last_menu_sent_at = None

        return cls(
            options=options,
            intent=data.get("intent"),
            last_menu_sent_at=last_menu_sent_at,
        )


@dataclass
class CardPayload:
    """Everything needed to deliver an insurance card by MMS."""
    policy_id: str
    document_id: str
    label: str
    body: str
    media_url: str


@dataclass
class ExpirationPayload:
    """Everything needed to answer an expiration lookup by SMS."""
    policy_id: str
    label: str
    expires_on: date
    body: str


@dataclass
class InboundEvent:
    """A provider-delivered inbound message, already validated at the boundary."""
    from_phone: str
    to_phone: str
    body: str
    provider_message_id: str
    media_count: int = 0
    agency_id: str | None = None


@dataclass
class InboundResult:
    """What the ingestion boundary did with an inbound event."""
    action: str = "routed"  # duplicate, delivery_failed, or the ProcessResult action
    message_log_id: str | None = None
    agency_id: str | None = None
    state: str | None = None
