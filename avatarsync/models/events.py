"""Event models for the streaming client's pub/sub topic."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class StreamEventType(Enum):
    """Lifecycle and data events emitted by the streaming client."""
    OPEN = "open"
    CLOSE = "close"
    ERROR = "error"
    AUDIO = "audio"
    TURN_COMPLETE = "turncomplete"
    INTERRUPTED = "interrupted"


@dataclass
class StreamEvent:
    """A tagged event published by the streaming client."""
    type: StreamEventType
    timestamp: float  # Unix timestamp when the event was published
    audio_data: Optional[bytes] = None
    sequence_number: Optional[int] = None
    close_code: Optional[int] = None
    reason: Optional[str] = None  # close reason or error message
