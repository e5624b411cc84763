"""Domain enumerations for the CoverText SMS engine.

All enums use the (str, Enum) pattern so values store and serialize as plain strings.
"""

from enum import Enum


class ConversationState(str, Enum):
    """Where a sender is in the menu flow."""

    AWAITING_INTENT_SELECTION = "awaiting_intent_selection"
    AWAITING_VEHICLE_SELECTION = "awaiting_vehicle_selection"
    AWAITING_POLICY_SELECTION = "awaiting_policy_selection"
    COMPLETE = "complete"

    @classmethod
    def parse(cls, value) -> "ConversationState | None":
        """Return the matching state, or None for values this version doesn't know."""
        try:
            return cls(value)
        except ValueError:
            return None


class ConversationEvent(str, Enum):
    """Inputs to the conversation transition table."""

    CARD_FLOW_ENTERED = "card_flow_entered"
    EXPIRATION_FLOW_ENTERED = "expiration_flow_entered"
    FULFILLED = "fulfilled"
    RESET = "reset"


class Intent(str, Enum):
    """Classified purpose of an inbound message."""

    INSURANCE_CARD = "insurance_card"
    POLICY_EXPIRATION = "policy_expiration"
    HELP_OR_OTHER = "help_or_other"
    MENU = "menu"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class RequestType(str, Enum):
    """Kinds of self-service asks a policyholder can complete."""

    AUTO_ID_CARD = "auto_id_card"
    POLICY_EXPIRATION = "policy_expiration"


class RequestStatus(str, Enum):
    FULFILLED = "fulfilled"
    FAILED = "failed"


class DeliveryMethod(str, Enum):
    MMS = "mms"


class DeliveryStatus(str, Enum):
    """Lifecycle of a media send, as reported by the provider."""

    QUEUED = "queued"
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @classmethod
    def from_provider(cls, value: str | None) -> "DeliveryStatus":
        """Map a Telnyx per-recipient status onto our lifecycle."""
        value = (value or "").lower()
        if value.endswith("failed"):  # sending_failed, delivery_failed
            return cls.FAILED
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class DocumentKind(str, Enum):
    AUTO_ID_CARD = "auto_id_card"


class PolicyType(str, Enum):
    AUTO = "auto"
    HOMEOWNERS = "homeowners"


class AuditEventType(str, Enum):
    """Event types appended to the audit trail."""

    OPTED_OUT = "sms.opted_out"
    OPT_IN = "sms.opt_in"
    HELP_REQUESTED = "sms.help_requested"
    OPTED_OUT_BLOCKED = "sms.opted_out_blocked"
    RATE_LIMITED = "sms.rate_limited"
    DELIVERY_FAILED = "sms.delivery_failed"
    INTENT_ROUTED = "conversation.intent_routed"
    MENU_SENT = "conversation.menu_sent"
    CARD_FULFILLED = "card.request_fulfilled"
    EXPIRATION_FULFILLED = "expire.request_fulfilled"
