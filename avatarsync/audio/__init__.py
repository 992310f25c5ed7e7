"""Audio buffering, statistics and playback module."""

from .base import AbstractAudioPlayer
from .buffer import TurnBuffer
from .stats import PacketStatisticsTracker

__all__ = [
    'AbstractAudioPlayer',
    'TurnBuffer',
    'PacketStatisticsTracker',
]
