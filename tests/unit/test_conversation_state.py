"""Unit tests for conversation state transitions."""

import pytest

from avatarsync.models.silence import ConversationState
from avatarsync.silence.state import (
    MAX_PLAUSIBLE_SILENCE_SECONDS,
    ConversationStateTracker,
    EffectType,
    TrackerState,
    transition,
)


@pytest.mark.unit
class TestTransition:
    """Pure transition function."""

    def test_same_state_is_noop(self):
        state = TrackerState(ConversationState.AI_SPEAKING)

        new_state, effects = transition(state, ConversationState.AI_SPEAKING, 10.0)

        assert new_state is state
        assert effects == []

    def test_entering_listening_starts_silence(self):
        new_state, effects = transition(TrackerState(), ConversationState.LISTENING_FOR_USER, 10.0)

        assert new_state.conversation_state == ConversationState.LISTENING_FOR_USER
        assert new_state.silence_started_at == 10.0
        assert [e.type for e in effects] == [EffectType.STATE_CHANGED, EffectType.SILENCE_STARTED]
        assert effects[0].payload == {
            "previous": ConversationState.IDLE,
            "new": ConversationState.LISTENING_FOR_USER,
            "at": 10.0,
        }

    def test_leaving_listening_records_silence(self):
        state = TrackerState(ConversationState.LISTENING_FOR_USER, silence_started_at=10.0)

        new_state, effects = transition(state, ConversationState.USER_SPEAKING, 14.5)

        assert new_state.silence_started_at is None
        assert [e.type for e in effects] == [EffectType.SILENCE_RECORDED, EffectType.STATE_CHANGED]
        assert effects[0].payload["duration"] == pytest.approx(4.5)

    @pytest.mark.parametrize("now", [5.0, 10.0 + MAX_PLAUSIBLE_SILENCE_SECONDS + 1])
    def test_implausible_silence_is_discarded(self, now):
        state = TrackerState(ConversationState.LISTENING_FOR_USER, silence_started_at=10.0)

        _, effects = transition(state, ConversationState.AI_SPEAKING, now)

        assert effects[0].type == EffectType.SILENCE_DISCARDED

    def test_transition_does_not_mutate_input(self):
        state = TrackerState()

        transition(state, ConversationState.LISTENING_FOR_USER, 1.0)

        assert state.conversation_state == ConversationState.IDLE


@pytest.mark.unit
class TestConversationStateTracker:
    """Stateful wrapper around transitions."""

    def test_set_state_returns_effects(self):
        tracker = ConversationStateTracker()

        effects = tracker.set_state(ConversationState.PROCESSING, 3.0)

        assert tracker.conversation_state == ConversationState.PROCESSING
        assert len(effects) == 1

    def test_explicit_silence_period(self):
        tracker = ConversationStateTracker()
        tracker.set_state(ConversationState.LISTENING_FOR_USER, 1.0)

        effects = tracker.end_silence(3.0)
        assert effects[0].payload["duration"] == pytest.approx(2.0)
        assert tracker.end_silence(4.0) == []

        tracker.begin_silence(5.0)
        assert tracker.silence_started_at == 5.0
