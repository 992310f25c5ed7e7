"""Silence detection and nudging module."""

from .state import ConversationStateTracker, Effect, EffectType, TrackerState, transition
from .detector import RollingSpeechDetector, SpeechUpdate
from .analytics import SilenceAnalyticsAggregator
from .nudge import SilenceNudgeEngine

__all__ = [
    'ConversationStateTracker',
    'Effect',
    'EffectType',
    'TrackerState',
    'transition',
    'RollingSpeechDetector',
    'SpeechUpdate',
    'SilenceAnalyticsAggregator',
    'SilenceNudgeEngine',
]
