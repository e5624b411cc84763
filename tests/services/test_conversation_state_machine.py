"""Unit tests for the conversation transition table."""

import pytest

from covertext.domain.enums import ConversationEvent, ConversationState
from covertext.services.conversation_state_machine import (
    INITIAL_STATE,
    SELECTION_STATES,
    TRANSITION_MAP,
    InvalidTransitionError,
    allowed_events,
    next_state,
)

S = ConversationState
E = ConversationEvent


class TestValidTransitions:
    @pytest.mark.parametrize(
        "from_state,event,to_state",
        [
            (from_s, event, to_s)
            for from_s, edges in TRANSITION_MAP.items()
            for event, to_s in edges.items()
        ],
    )
    def test_all_valid_transitions(self, from_state, event, to_state):
        assert next_state(from_state, event) == to_state

    def test_flows(self):
        assert next_state(S.AWAITING_INTENT_SELECTION, E.CARD_FLOW_ENTERED) == S.AWAITING_VEHICLE_SELECTION
        assert next_state(S.AWAITING_INTENT_SELECTION, E.EXPIRATION_FLOW_ENTERED) == S.AWAITING_POLICY_SELECTION
        assert next_state(S.AWAITING_VEHICLE_SELECTION, E.FULFILLED) == S.COMPLETE
        assert next_state(S.AWAITING_POLICY_SELECTION, E.FULFILLED) == S.COMPLETE

    def test_accepts_stored_string_values(self):
        assert next_state("awaiting_vehicle_selection", E.FULFILLED) == S.COMPLETE


class TestReset:
    @pytest.mark.parametrize("state", list(S) + ["legacy_state", None])
    def test_reset_from_anywhere(self, state):
        assert next_state(state, E.RESET) == INITIAL_STATE


class TestInvalidTransitions:
    def test_cannot_fulfill_from_menu(self):
        with pytest.raises(InvalidTransitionError) as exc:
            next_state(S.AWAITING_INTENT_SELECTION, E.FULFILLED)
        assert exc.value.current_state == S.AWAITING_INTENT_SELECTION
        assert exc.value.event == E.FULFILLED

    def test_complete_only_resets(self):
        with pytest.raises(InvalidTransitionError):
            next_state(S.COMPLETE, E.CARD_FLOW_ENTERED)
        assert allowed_events(S.COMPLETE) == [E.RESET]

    def test_unknown_state_only_resets(self):
        with pytest.raises(InvalidTransitionError, match="unknown"):
            next_state("legacy_state", E.CARD_FLOW_ENTERED)
        assert allowed_events(None) == [E.RESET]


def test_selection_states():
    assert SELECTION_STATES == {S.AWAITING_VEHICLE_SELECTION, S.AWAITING_POLICY_SELECTION}
