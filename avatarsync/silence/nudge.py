"""Silence timer and nudge escalation.

While the AI waits for the user and no speech is heard, a single countdown
runs. When it expires a nudge message is sent to the remote model, subject to
a minimum interval between nudges and a maximum nudge count. Reaching the
maximum schedules session termination after a short grace period so the last
nudge can still be answered.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..models.silence import (
    ConversationState,
    SilenceAnalytics,
    SilenceConfig,
    SilenceDetectionState,
)
from ..scheduling import Scheduler, TimerSlot
from .analytics import SilenceAnalyticsAggregator
from .detector import RollingSpeechDetector
from .state import ConversationStateTracker, Effect, EffectType, is_plausible_elapsed

logger = logging.getLogger(__name__)


class SilenceNudgeEngine:
    """Tracks conversation state and user speech, and nudges the model after long silences."""

    def __init__(self,
                 scheduler: Scheduler,
                 send_nudge: Callable[[str], Awaitable[None]],
                 config: Optional[SilenceConfig] = None,
                 on_show_indicator: Optional[Callable[[bool], None]] = None,
                 on_analytics_event: Optional[Callable[[str, Dict[str, Any]], None]] = None,
                 on_session_terminated: Optional[Callable[[], None]] = None,
                 response_window_seconds: float = 60.0,
                 indicator_seconds: float = 3.0,
                 recent_nudge_seconds: float = 5.0,
                 termination_grace_seconds: float = 5.0,
                 volume_window_size: int = 10):
        """Initialize nudge engine.

        Args:
            scheduler: Scheduler for the countdown and follow-up timers
            send_nudge: Coroutine function delivering nudge text to the model
            config: Initial silence configuration
            on_show_indicator: Called with True/False to show/hide the nudge indicator
            on_analytics_event: Called with (event name, data)
            on_session_terminated: Called once when the nudge budget is exhausted
            response_window_seconds: Speech later than this after a nudge is not
                                     credited as a response
            indicator_seconds: How long the nudge indicator stays visible
            recent_nudge_seconds: How long ``recent_nudge_sent`` stays set
            termination_grace_seconds: Delay between the final nudge and termination
            volume_window_size: Volume samples averaged by the speech detector
        """
        self.scheduler = scheduler
        self.send_nudge = send_nudge
        self._config = config or SilenceConfig()
        self._config.validate()

        self.on_show_indicator = on_show_indicator
        self.on_analytics_event = on_analytics_event
        self.on_session_terminated = on_session_terminated

        self.response_window_seconds = response_window_seconds
        self.indicator_seconds = indicator_seconds
        self.recent_nudge_seconds = recent_nudge_seconds
        self.termination_grace_seconds = termination_grace_seconds

        self.tracker = ConversationStateTracker()
        self.detector = RollingSpeechDetector(window_size=volume_window_size)
        self.analytics = SilenceAnalyticsAggregator(session_start_time=scheduler.now())

        self._nudge_count = 0
        self._last_nudge_time: Optional[float] = None
        self._recent_nudge_sent = False
        self._nudge_in_flight = False
        self._terminated = False

        self._silence_timer = TimerSlot(scheduler, "silence-countdown")
        self._indicator_timer = TimerSlot(scheduler, "nudge-indicator")
        self._recent_nudge_timer = TimerSlot(scheduler, "recent-nudge")
        self._termination_timer = TimerSlot(scheduler, "session-termination")

        logger.info(f"SilenceNudgeEngine initialized: threshold={self._config.silence_threshold_seconds}s, "
                    f"max_nudges={self._config.max_nudges}, enabled={self._config.enabled}")

    # Settings surface

    @property
    def config(self) -> SilenceConfig:
        return self._config

    @property
    def nudge_count(self) -> int:
        return self._nudge_count

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def countdown_active(self) -> bool:
        return self._silence_timer.active

    def update_config(self, updates: Dict[str, Any]) -> SilenceConfig:
        """Patch the configuration.

        A countdown that is already running keeps its original duration; the
        new values apply from the next evaluation.

        Raises:
            ValueError: If an update is unknown or invalid
        """
        self._config = self._config.patch(updates)
        logger.info(f"Silence detection config updated: {updates}")
        self._evaluate_timer()
        return self._config

    def get_state(self) -> SilenceDetectionState:
        return SilenceDetectionState(
            conversation_state=self.tracker.conversation_state,
            recent_nudge_sent=self._recent_nudge_sent,
            last_nudge_time=self._last_nudge_time,
            current_silence_duration=self._current_silence_duration(self.scheduler.now()),
            speech_detected=self.detector.speech_detected,
            nudge_count=self._nudge_count,
            session_terminated=self._terminated,
        )

    def get_analytics(self) -> SilenceAnalytics:
        return self.analytics.snapshot()

    async def trigger_manual_nudge(self) -> bool:
        """Send a nudge now, subject to the usual limits."""
        logger.info("Manual nudge triggered")
        return await self.trigger_nudge()

    def reset_silence_timer(self) -> None:
        """Close the current silence period and restart the countdown from zero."""
        self._silence_timer.cancel()
        now = self.scheduler.now()
        self._apply_effects(self.tracker.end_silence(now))
        if (self.tracker.conversation_state == ConversationState.LISTENING_FOR_USER
                and not self.detector.speech_detected):
            self._apply_effects(self.tracker.begin_silence(now))
        self._evaluate_timer()
        logger.info("Silence timer reset")

    # Inputs

    def set_conversation_state(self, state: ConversationState) -> None:
        effects = self.tracker.set_state(state, self.scheduler.now())
        self._apply_effects(effects)

    def update_volume(self, volume: float) -> bool:
        """Feed a microphone volume sample.

        Returns:
            Whether speech is currently detected
        """
        update = self.detector.update_volume(volume, self._config.speech_volume_threshold)
        if not update.changed:
            return update.speech_detected

        now = self.scheduler.now()
        listening = self.tracker.conversation_state == ConversationState.LISTENING_FOR_USER
        if update.speech_detected:
            self._silence_timer.cancel()
            if listening:
                if self.analytics.record_response(now, self.response_window_seconds):
                    self._emit("nudge_response", {"timestamp": now})
                self._apply_effects(self.tracker.end_silence(now))
        elif listening:
            self._apply_effects(self.tracker.begin_silence(now))
            self._evaluate_timer()
        return update.speech_detected

    # Nudging

    async def trigger_nudge(self) -> bool:
        """Send a nudge unless policy forbids it.

        Returns:
            True if a nudge was delivered
        """
        if self._terminated:
            logger.info("Session already terminated, skipping nudge")
            return False

        config = self._config
        if not config.enabled:
            logger.info("Nudge system disabled, skipping nudge")
            return False

        now = self.scheduler.now()
        if self._nudge_count >= config.max_nudges:
            logger.info("Maximum nudges reached, terminating session")
            self._emit("nudge_suppressed", {"reason": "max_nudges", "timestamp": now})
            self._signal_termination()
            return False

        if config.min_time_between_nudges > 0 and self._last_nudge_time is not None:
            since_last = now - self._last_nudge_time
            if since_last < 0:
                logger.warning(f"Clock went backwards by {-since_last:.1f}s since the last nudge, "
                               f"ignoring interval")
            elif since_last < config.min_time_between_nudges:
                logger.info(f"Too soon since last nudge ({since_last:.1f}s < "
                            f"{config.min_time_between_nudges}s), skipping")
                self._emit("nudge_suppressed", {"reason": "min_interval", "timestamp": now})
                return False

        if self._nudge_in_flight:
            logger.info("A nudge is already being sent, skipping")
            return False

        silence_duration = self._current_silence_duration(now)
        logger.info("Triggering nudge - user appears distracted")
        self._nudge_in_flight = True
        try:
            await self.send_nudge(config.nudge_message)
        except Exception as e:
            logger.error(f"Failed to send nudge: {e}")
            self._emit("nudge_error", {"error": str(e), "timestamp": now})
            return False
        finally:
            self._nudge_in_flight = False

        self._nudge_count += 1
        self._last_nudge_time = now
        self.analytics.record_nudge(now)

        self._recent_nudge_sent = True
        self._recent_nudge_timer.arm(self.recent_nudge_seconds, self._clear_recent_nudge)
        self._set_indicator(True)
        self._indicator_timer.arm(self.indicator_seconds, self._set_indicator, False)

        self._emit("nudge_triggered", {
            "silence_duration": silence_duration,
            "nudge_count": self._nudge_count,
            "message": config.nudge_message,
            "timestamp": now,
        })
        logger.info(f"Nudge sent successfully ({self._nudge_count}/{config.max_nudges})")

        if self._nudge_count >= config.max_nudges:
            logger.warning(f"This was the final nudge - session terminates in "
                           f"{self.termination_grace_seconds}s")
            self._termination_timer.arm(self.termination_grace_seconds, self._signal_termination)
        return True

    # Internals

    def _apply_effects(self, effects: List[Effect]) -> None:
        state_changed = False
        for effect in effects:
            if effect.type == EffectType.STATE_CHANGED:
                state_changed = True
                self._silence_timer.cancel()
                self._emit("conversation_state_change", {
                    "previous_state": effect.payload["previous"].value,
                    "new_state": effect.payload["new"].value,
                    "timestamp": effect.payload["at"],
                })
            elif effect.type == EffectType.SILENCE_RECORDED:
                self.analytics.record_silence_period(effect.payload["duration"])
            elif effect.type == EffectType.SILENCE_DISCARDED:
                logger.warning(f"Invalid silence duration {effect.payload['elapsed']:.2f}s, not recording")
            elif effect.type == EffectType.SILENCE_STARTED:
                logger.debug(f"Silence period started at {effect.payload['at']:.3f}")
        if state_changed:
            self._evaluate_timer()

    def _evaluate_timer(self) -> None:
        """Arm the countdown if it is eligible and not already running."""
        if self._silence_timer.active or self._terminated:
            return
        config = self._config
        if not config.enabled:
            return
        if self.tracker.conversation_state != ConversationState.LISTENING_FOR_USER:
            return
        if self.detector.speech_detected:
            return
        self._silence_timer.arm(config.silence_threshold_seconds, self._on_silence_timeout)
        logger.info(f"Waiting up to {config.silence_threshold_seconds}s for the user to speak")

    def _on_silence_timeout(self) -> None:
        logger.info("Silence threshold reached - triggering nudge")
        self.scheduler.spawn(self.trigger_nudge())

    def _current_silence_duration(self, now: float) -> float:
        if self.tracker.conversation_state != ConversationState.LISTENING_FOR_USER:
            return 0.0
        started_at = self.tracker.silence_started_at
        if started_at is None:
            return 0.0
        elapsed = now - started_at
        if not is_plausible_elapsed(elapsed):
            logger.warning(f"Invalid silence timer detected ({elapsed:.1f}s), resetting")
            self._apply_effects(self.tracker.begin_silence(now))
            return 0.0
        return elapsed

    def _signal_termination(self) -> None:
        if self._terminated:
            return
        self._terminated = True
        self._termination_timer.cancel()
        self._silence_timer.cancel()
        logger.warning("Nudge limit reached, terminating session")
        self._emit("session_terminated", {"nudge_count": self._nudge_count,
                                          "timestamp": self.scheduler.now()})
        if self.on_session_terminated:
            self.on_session_terminated()

    def _clear_recent_nudge(self) -> None:
        self._recent_nudge_sent = False

    def _set_indicator(self, show: bool) -> None:
        if self.on_show_indicator:
            self.on_show_indicator(show)

    def _emit(self, event: str, data: Dict[str, Any]) -> None:
        if not self.on_analytics_event:
            return
        try:
            self.on_analytics_event(event, data)
        except Exception as e:
            logger.warning(f"Analytics callback failed for {event}: {e}")
