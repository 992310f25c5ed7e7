"""Unit tests for SilenceNudgeEngine."""

import pytest
from unittest.mock import AsyncMock, Mock

from avatarsync.models.silence import ConversationState, SilenceConfig
from avatarsync.silence.nudge import SilenceNudgeEngine
from avatarsync.streaming.base import StreamingClientError

SPEECH = 0.5
QUIET = 0.0


@pytest.fixture
def send_nudge():
    return AsyncMock()


@pytest.fixture
def callbacks():
    return {
        "on_show_indicator": Mock(),
        "on_analytics_event": Mock(),
        "on_session_terminated": Mock(),
    }


@pytest.fixture
def make_engine(scheduler, send_nudge, callbacks):
    def _make(**config_values) -> SilenceNudgeEngine:
        return SilenceNudgeEngine(
            scheduler=scheduler,
            send_nudge=send_nudge,
            config=SilenceConfig(**config_values),
            **callbacks,
        )
    return _make


def event_names(callbacks):
    return [c.args[0] for c in callbacks["on_analytics_event"].call_args_list]


def go_quiet(engine, samples=10):
    for _ in range(samples):
        engine.update_volume(QUIET)


@pytest.mark.unit
class TestSilenceCountdown:
    """The countdown runs only while listening in silence."""

    def test_single_nudge_after_threshold(self, make_engine, scheduler, send_nudge):
        """Test continuous silence produces exactly one nudge."""
        engine = make_engine(silence_threshold_seconds=10)
        engine.set_conversation_state(ConversationState.LISTENING_FOR_USER)

        scheduler.advance(9.9)
        send_nudge.assert_not_called()

        scheduler.advance(0.2)
        send_nudge.assert_awaited_once_with(engine.config.nudge_message)

        scheduler.advance(60)
        assert send_nudge.await_count == 1
        assert engine.nudge_count == 1

    def test_speech_before_threshold_restarts_countdown(self, make_engine, scheduler, send_nudge):
        """Test speech at 7s prevents the 10s nudge and restarts the countdown."""
        engine = make_engine(silence_threshold_seconds=10)
        engine.set_conversation_state(ConversationState.LISTENING_FOR_USER)

        scheduler.advance(7)
        assert engine.update_volume(SPEECH) is True
        assert engine.countdown_active is False

        scheduler.advance(3.5)
        send_nudge.assert_not_called()

        go_quiet(engine)
        assert engine.countdown_active is True
        scheduler.advance(9.9)
        send_nudge.assert_not_called()
        scheduler.advance(0.2)
        send_nudge.assert_awaited_once()

    def test_speech_closes_silence_period(self, make_engine, scheduler):
        engine = make_engine()
        engine.set_conversation_state(ConversationState.LISTENING_FOR_USER)

        scheduler.advance(7)
        engine.update_volume(SPEECH)

        analytics = engine.get_analytics()
        assert analytics.silence_periods == 1
        assert analytics.longest_silence_period == pytest.approx(7.0)

    def test_no_countdown_outside_listening(self, make_engine, scheduler, send_nudge):
        engine = make_engine()
        engine.set_conversation_state(ConversationState.AI_SPEAKING)

        scheduler.advance(30)

        assert engine.countdown_active is False
        send_nudge.assert_not_called()

    def test_leaving_listening_cancels_countdown(self, make_engine, scheduler, send_nudge):
        engine = make_engine()
        engine.set_conversation_state(ConversationState.LISTENING_FOR_USER)
        scheduler.advance(5)

        engine.set_conversation_state(ConversationState.AI_SPEAKING)
        scheduler.advance(30)

        send_nudge.assert_not_called()
        assert engine.get_analytics().silence_periods == 1

    def test_same_state_is_noop(self, make_engine, scheduler, callbacks):
        engine = make_engine()
        engine.set_conversation_state(ConversationState.LISTENING_FOR_USER)
        scheduler.advance(4)

        engine.set_conversation_state(ConversationState.LISTENING_FOR_USER)

        assert event_names(callbacks).count("conversation_state_change") == 1
        assert engine.get_state().current_silence_duration == pytest.approx(4.0)

    def test_disabled_never_arms(self, make_engine, scheduler, send_nudge):
        engine = make_engine(enabled=False)
        engine.set_conversation_state(ConversationState.LISTENING_FOR_USER)

        scheduler.advance(60)

        assert engine.countdown_active is False
        send_nudge.assert_not_called()

    def test_reset_silence_timer_restarts_from_zero(self, make_engine, scheduler, send_nudge):
        engine = make_engine(silence_threshold_seconds=10)
        engine.set_conversation_state(ConversationState.LISTENING_FOR_USER)
        scheduler.advance(8)

        engine.reset_silence_timer()
        scheduler.advance(8)
        send_nudge.assert_not_called()

        scheduler.advance(2.1)
        send_nudge.assert_awaited_once()
        assert engine.get_analytics().silence_periods == 1


@pytest.mark.unit
class TestNudgePolicy:
    """Minimum interval, maximum count and termination."""

    def test_min_interval_suppresses_second_nudge(self, make_engine, scheduler, send_nudge, callbacks):
        """Test two triggers 20s apart with a 30s minimum interval send one nudge."""
        engine = make_engine(min_time_between_nudges=30)

        assert scheduler.run(engine.trigger_nudge()) is True
        scheduler.advance(20)
        assert scheduler.run(engine.trigger_nudge()) is False

        assert send_nudge.await_count == 1
        assert "nudge_suppressed" in event_names(callbacks)

        scheduler.advance(10.1)
        assert scheduler.run(engine.trigger_nudge()) is True
        assert send_nudge.await_count == 2

    def test_max_nudges_terminates_once(self, make_engine, scheduler, send_nudge, callbacks):
        engine = make_engine(max_nudges=2)

        assert scheduler.run(engine.trigger_manual_nudge()) is True
        assert scheduler.run(engine.trigger_manual_nudge()) is True
        callbacks["on_session_terminated"].assert_not_called()

        scheduler.advance(4.9)
        callbacks["on_session_terminated"].assert_not_called()
        scheduler.advance(0.2)
        callbacks["on_session_terminated"].assert_called_once()

        assert scheduler.run(engine.trigger_manual_nudge()) is False
        assert engine.nudge_count == 2
        assert send_nudge.await_count == 2
        callbacks["on_session_terminated"].assert_called_once()
        assert engine.get_state().session_terminated is True

    def test_trigger_during_grace_terminates_immediately(self, make_engine, scheduler, callbacks):
        engine = make_engine(max_nudges=1)
        scheduler.run(engine.trigger_nudge())

        scheduler.advance(1)
        scheduler.run(engine.trigger_nudge())
        callbacks["on_session_terminated"].assert_called_once()

        scheduler.advance(10)
        callbacks["on_session_terminated"].assert_called_once()
        assert event_names(callbacks).count("session_terminated") == 1

    def test_no_countdown_after_termination(self, make_engine, scheduler, send_nudge):
        engine = make_engine(max_nudges=1)
        scheduler.run(engine.trigger_nudge())
        scheduler.advance(5.1)

        engine.set_conversation_state(ConversationState.LISTENING_FOR_USER)
        scheduler.advance(60)

        assert engine.countdown_active is False
        assert send_nudge.await_count == 1

    def test_no_nudge_after_termination_even_with_raised_limit(self, make_engine, scheduler, send_nudge,
                                                               callbacks):
        engine = make_engine(max_nudges=1)
        scheduler.run(engine.trigger_nudge())
        scheduler.advance(6)
        assert engine.terminated is True

        engine.update_config({"max_nudges": 3})

        assert scheduler.run(engine.trigger_manual_nudge()) is False
        assert send_nudge.await_count == 1
        assert engine.nudge_count == 1
        scheduler.advance(10)
        callbacks["on_session_terminated"].assert_called_once()

    def test_send_failure_does_not_count(self, make_engine, scheduler, send_nudge, callbacks):
        send_nudge.side_effect = StreamingClientError("Streaming client is not connected")
        engine = make_engine()

        assert scheduler.run(engine.trigger_nudge()) is False

        assert engine.nudge_count == 0
        assert engine.get_state().last_nudge_time is None
        assert "nudge_error" in event_names(callbacks)
        callbacks["on_show_indicator"].assert_not_called()

    def test_disabled_rejects_manual_nudge(self, make_engine, scheduler, send_nudge):
        engine = make_engine(enabled=False)

        assert scheduler.run(engine.trigger_manual_nudge()) is False
        send_nudge.assert_not_called()

    def test_nudge_side_effects(self, make_engine, scheduler, callbacks):
        engine = make_engine()
        scheduler.run(engine.trigger_nudge())

        state = engine.get_state()
        assert state.recent_nudge_sent is True
        assert state.last_nudge_time == scheduler.now()
        callbacks["on_show_indicator"].assert_called_once_with(True)
        assert "nudge_triggered" in event_names(callbacks)

        scheduler.advance(3.1)
        callbacks["on_show_indicator"].assert_called_with(False)
        assert engine.get_state().recent_nudge_sent is True

        scheduler.advance(2)
        assert engine.get_state().recent_nudge_sent is False


@pytest.mark.unit
class TestSettings:
    """Config patching and state snapshots."""

    def test_update_config_validates(self, make_engine):
        engine = make_engine()

        with pytest.raises(ValueError):
            engine.update_config({"not_a_setting": 1})
        with pytest.raises(ValueError):
            engine.update_config({"silence_threshold_seconds": 0})

        assert engine.config.silence_threshold_seconds == 10.0

    @pytest.mark.parametrize("updates", [
        {"max_nudges": "5"},
        {"max_nudges": 2.5},
        {"silence_threshold_seconds": "10"},
        {"enabled": "yes"},
        {"nudge_message": ""},
    ])
    def test_update_config_rejects_wrong_types(self, make_engine, updates):
        engine = make_engine()

        with pytest.raises(ValueError):
            engine.update_config(updates)

        assert engine.config.max_nudges == 5
        assert engine.config.enabled is True

    def test_enabling_arms_countdown(self, make_engine, scheduler, send_nudge):
        engine = make_engine(enabled=False)
        engine.set_conversation_state(ConversationState.LISTENING_FOR_USER)

        engine.update_config({"enabled": True, "silence_threshold_seconds": 5})
        assert engine.countdown_active is True

        scheduler.advance(5.1)
        send_nudge.assert_awaited_once()

    def test_state_snapshot(self, make_engine, scheduler):
        engine = make_engine()
        engine.set_conversation_state(ConversationState.LISTENING_FOR_USER)
        scheduler.advance(3)

        state = engine.get_state()

        assert state.conversation_state == ConversationState.LISTENING_FOR_USER
        assert state.current_silence_duration == pytest.approx(3.0)
        assert state.speech_detected is False
        assert state.nudge_count == 0

    def test_implausible_silence_duration_resets(self, make_engine, scheduler):
        engine = make_engine()
        engine.set_conversation_state(ConversationState.LISTENING_FOR_USER)

        scheduler.clock -= 100  # clock jumped backwards

        assert engine.get_state().current_silence_duration == 0.0
        scheduler.advance(2)
        assert engine.get_state().current_silence_duration == pytest.approx(2.0)


@pytest.mark.unit
class TestNudgeAnalytics:
    """Responses are credited only within the response window."""

    def test_success_rate(self, make_engine, scheduler):
        engine = make_engine(silence_threshold_seconds=10)
        engine.set_conversation_state(ConversationState.LISTENING_FOR_USER)

        scheduler.advance(10.1)
        scheduler.advance(5)
        engine.update_volume(SPEECH)

        go_quiet(engine)
        scheduler.advance(10.1)
        scheduler.advance(61)
        engine.update_volume(0.9)

        analytics = engine.get_analytics()
        assert analytics.total_nudges == 2
        assert analytics.nudge_success_rate == pytest.approx(0.5)
        assert analytics.nudge_records[0].responded is True
        assert analytics.nudge_records[1].responded is False
