"""Conversation state machine — the menu flow's transition table.

RESET is accepted from every state, including stored values this version
doesn't recognize, so a confused session can always return to the main menu.
"""

from covertext.domain.enums import ConversationEvent, ConversationState


class InvalidTransitionError(Exception):
    """Raised when a conversation transition is not allowed."""

    def __init__(
        self,
        current_state: ConversationState | None,
        event: ConversationEvent,
        reason: str,
    ):
        self.current_state = current_state
        self.event = event
        self.reason = reason
        current = current_state.value if current_state else "unknown"
        super().__init__(f"Invalid event {event.value} from {current}: {reason}")


# ---------------------------------------------------------------------------
# Transition map: from_state -> {event: to_state}
# ---------------------------------------------------------------------------

S = ConversationState
E = ConversationEvent

INITIAL_STATE = S.AWAITING_INTENT_SELECTION

TRANSITION_MAP: dict[ConversationState, dict[ConversationEvent, ConversationState]] = {
    S.AWAITING_INTENT_SELECTION: {
        E.CARD_FLOW_ENTERED: S.AWAITING_VEHICLE_SELECTION,
        E.EXPIRATION_FLOW_ENTERED: S.AWAITING_POLICY_SELECTION,
    },
    S.AWAITING_VEHICLE_SELECTION: {
        E.FULFILLED: S.COMPLETE,
    },
    S.AWAITING_POLICY_SELECTION: {
        E.FULFILLED: S.COMPLETE,
    },
    S.COMPLETE: {},
}

# States waiting on a numbered reply from the option list
SELECTION_STATES: set[ConversationState] = {
    S.AWAITING_VEHICLE_SELECTION,
    S.AWAITING_POLICY_SELECTION,
}


def next_state(
    current: ConversationState | str | None,
    event: ConversationEvent,
) -> ConversationState:
    """Return the state reached by applying ``event`` to ``current``.

    Raises InvalidTransitionError if the table has no such edge.
    """
    if isinstance(current, str) and not isinstance(current, ConversationState):
        current = ConversationState.parse(current)

    if event == E.RESET:
        return INITIAL_STATE

    if current is None:
        raise InvalidTransitionError(current, event, "Only reset is allowed from an unknown state")

    target = TRANSITION_MAP.get(current, {}).get(event)
    if target is None:
        raise InvalidTransitionError(
            current,
            event,
            f"No {event.value} transition from {current.value}",
        )
    return target


def allowed_events(current: ConversationState | None) -> list[ConversationEvent]:
    """Events the table accepts from ``current`` (RESET is always last)."""
    events = list(TRANSITION_MAP.get(current, {})) if current else []
    events.append(E.RESET)
    return events
