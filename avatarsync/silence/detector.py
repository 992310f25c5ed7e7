"""Rolling-average speech detection over microphone volume samples."""

import logging
from collections import deque
from typing import Deque, NamedTuple

import numpy as np

logger = logging.getLogger(__name__)


class SpeechUpdate(NamedTuple):
    """Outcome of one volume sample."""
    speech_detected: bool
    changed: bool
    average_volume: float


class RollingSpeechDetector:
    """Smooths volume samples over a short window and thresholds the average."""

    def __init__(self, window_size: int = 10):
        """Initialize detector.

        Args:
            window_size: Number of recent volume samples averaged
        """
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        self.window_size = window_size
        self.volume_history: Deque[float] = deque(maxlen=window_size)
        self.speech_detected = False

    def update_volume(self, volume: float, threshold: float) -> SpeechUpdate:
        """Add a volume sample (0-1 scale) and re-evaluate speech presence.

        Args:
            volume: Latest microphone volume
            threshold: Average volume above which speech counts as present
        """
        self.volume_history.append(volume)
        average_volume = float(np.mean(self.volume_history))
        speech_detected = average_volume > threshold

        changed = speech_detected != self.speech_detected
        if changed:
            logger.info(f"Speech detection changed: {speech_detected} "
                        f"(volume: {average_volume:.3f}, threshold: {threshold})")
        self.speech_detected = speech_detected
        return SpeechUpdate(speech_detected, changed, average_volume)

    def reset(self) -> None:
        self.volume_history.clear()
        self.speech_detected = False
