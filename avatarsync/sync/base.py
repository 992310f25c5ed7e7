"""Abstract base class for viseme/subtitle services."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..models.visemes import SubtitleCue, VisemeCue

logger = logging.getLogger(__name__)


class VisemeServiceError(Exception):
    """Raised when audio cannot be dispatched to the viseme service."""


@dataclass
class VisemeCallbacks:
    """Callbacks a viseme service invokes as results arrive."""
    on_visemes: Optional[Callable[[List[VisemeCue], List[SubtitleCue]], None]] = None
    on_streaming_chunk: Optional[Callable[[str, List[VisemeCue]], None]] = None
    on_error: Optional[Callable[[str], None]] = None
    on_connected: Optional[Callable[[str], None]] = None


def parse_visemes(items: Optional[List[Dict[str, Any]]]) -> List[VisemeCue]:
    return [VisemeCue(offset=float(item["offset"]), viseme_id=int(item["visemeId"]))
            for item in items or []]


def parse_subtitles(items: Optional[List[Dict[str, Any]]]) -> List[SubtitleCue]:
    return [SubtitleCue(text=str(item["text"]), start=float(item["start"]), end=float(item["end"]))
            for item in items or []]


def parse_service_message(message: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """Classify a decoded service message.

    Returns:
        Tuple of (kind, payload) where kind is one of "connected",
        "streaming_chunk", "final", "error" or "ignored"
    """
    success = bool(message.get("success"))
    message_type = message.get("type")

    if message_type == "connected" and success:
        return "connected", {"session_id": message.get("session_id")}
    if message_type == "streaming_chunk" and success:
        return "streaming_chunk", {
            "chunk_text": message.get("chunk_text") or "",
            "visemes": parse_visemes(message.get("visemes")),
        }
    if success and message.get("visemes") is not None and message.get("subtitles") is not None:
        return "final", {
            "visemes": parse_visemes(message["visemes"]),
            "subtitles": parse_subtitles(message["subtitles"]),
        }
    if message_type == "error" or message.get("success") is False:
        return "error", {"message": message.get("message") or "Unknown viseme service error"}
    return "ignored", {}


class AbstractVisemeService(ABC):
    """Computes viseme and subtitle cues for combined turn audio."""

    def __init__(self):
        self.callbacks = VisemeCallbacks()

    def set_callbacks(self, callbacks: VisemeCallbacks) -> None:
        self.callbacks = callbacks

    @property
    @abstractmethod
    def connected(self) -> bool:
        pass

    @abstractmethod
    async def connect(self) -> bool:
        """Open the service connection.

        Returns:
            True if the connection is ready
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def send_audio_chunk(self, audio_data: bytes) -> None:
        """Dispatch audio for cue computation.

        Raises:
            VisemeServiceError: If the audio was rejected or could not be sent
        """
        pass

    async def request_final_results(self) -> None:
        """Ask the service to emit final results for the audio sent so far."""
        pass

    def _dispatch_message(self, message: Dict[str, Any]) -> str:
        """Route a decoded message to the registered callbacks."""
        kind, payload = parse_service_message(message)
        callbacks = self.callbacks
        if kind == "connected":
            if callbacks.on_connected:
                callbacks.on_connected(payload["session_id"])
        elif kind == "streaming_chunk":
            if callbacks.on_streaming_chunk:
                callbacks.on_streaming_chunk(payload["chunk_text"], payload["visemes"])
        elif kind == "final":
            if callbacks.on_visemes:
                callbacks.on_visemes(payload["visemes"], payload["subtitles"])
        elif kind == "error":
            logger.error(f"Viseme service reported an error: {payload['message']}")
            if callbacks.on_error:
                callbacks.on_error(payload["message"])
        else:
            logger.debug(f"Ignoring viseme service message: {message}")
        return kind
