"""Abstract base class for audio output."""

from abc import ABC, abstractmethod
from typing import Callable, Optional


class AbstractAudioPlayer(ABC):
    """Plays PCM16 audio and reports when playback drains."""

    def __init__(self):
        self.on_complete: Optional[Callable[[], None]] = None

    @abstractmethod
    def play_pcm16(self, audio_data: bytes) -> None:
        """Queue PCM16 audio for playback."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop playback immediately and drop anything queued."""
        pass

    def close(self) -> None:
        """Release audio resources."""
        pass

    def _notify_complete(self) -> None:
        if self.on_complete:
            self.on_complete()

