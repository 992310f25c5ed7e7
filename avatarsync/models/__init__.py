"""Data models for the avatarsync package."""

from .audio import AudioPacket, PacketStatistics
from .events import StreamEvent, StreamEventType
from .visemes import VisemeCue, SubtitleCue
from .silence import (
    ConversationState,
    SilenceConfig,
    SilenceDetectionState,
    NudgeRecord,
    SilenceAnalytics,
)

__all__ = [
    "AudioPacket",
    "PacketStatistics",
    "StreamEvent",
    "StreamEventType",
    "VisemeCue",
    "SubtitleCue",
    # Silence detection models
    "ConversationState",
    "SilenceConfig",
    "SilenceDetectionState",
    "NudgeRecord",
    "SilenceAnalytics",
]
