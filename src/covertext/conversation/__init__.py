"""Conversation engine building blocks.

- IntentRouter (deterministic regex/keyword scoring)
- Templates (every reply the engine sends)
- Contracts (typed session context and payloads)
"""

from .contracts import (
    CardPayload,
    ExpirationPayload,
    GuardOutcome,
    GuardResult,
    InboundEvent,
    InboundResult,
    IntentResult,
    MenuOption,
    ProcessResult,
    SessionContext,
)
from .intent_router import normalize, route_intent

__all__ = [
    "CardPayload",
    "ExpirationPayload",
    "GuardOutcome",
    "GuardResult",
    "InboundEvent",
    "InboundResult",
    "IntentResult",
    "MenuOption",
    "ProcessResult",
    "SessionContext",
    "normalize",
    "route_intent",
]
