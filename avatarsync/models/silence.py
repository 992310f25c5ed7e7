"""Silence detection and nudge data models."""

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, Optional


DEFAULT_NUDGE_MESSAGE = (
    "The child has been silent for a while and may be distracted. "
    "Switch to a fun new topic with lots of energy and ask them a simple "
    "question they can answer right away."
)


class ConversationState(str, Enum):
    """Who holds the floor in the conversation."""
    IDLE = "idle"
    AI_SPEAKING = "ai-speaking"
    LISTENING_FOR_USER = "listening-for-user"
    USER_SPEAKING = "user-speaking"
    PROCESSING = "processing"


@dataclass(frozen=True)
class SilenceConfig:
    """User-tunable silence detection settings."""
    silence_threshold_seconds: float = 10.0
    speech_volume_threshold: float = 0.05  # 0-1 scale
    nudge_message: str = DEFAULT_NUDGE_MESSAGE
    enabled: bool = True
    min_time_between_nudges: float = 0.0
    max_nudges: int = 5

    @classmethod
    def from_dict(cls, values: Optional[Dict[str, Any]]) -> "SilenceConfig":
        """Build a config from a mapping, ignoring keys that are not config fields."""
        if not values:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in values.items() if k in known})

    def patch(self, updates: Dict[str, Any]) -> "SilenceConfig":
        """Return a copy with ``updates`` applied.

        Raises:
            ValueError: If an update names an unknown field or an invalid value
        """
        known = {f.name for f in fields(self)}
        unknown = set(updates) - known
        if unknown:
            raise ValueError(f"Unknown silence config fields: {sorted(unknown)}")
        patched = replace(self, **updates)
        patched.validate()
        return patched

    def validate(self) -> None:
        for name in ("silence_threshold_seconds", "speech_volume_threshold", "min_time_between_nudges"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be a number, got {value!r}")
        if isinstance(self.max_nudges, bool) or not isinstance(self.max_nudges, int):
            raise ValueError(f"max_nudges must be an integer, got {self.max_nudges!r}")
        if not isinstance(self.enabled, bool):
            raise ValueError(f"enabled must be true or false, got {self.enabled!r}")
        if not isinstance(self.nudge_message, str) or not self.nudge_message.strip():
            raise ValueError("nudge_message must be a non-empty string")
        if self.silence_threshold_seconds <= 0:
            raise ValueError("silence_threshold_seconds must be positive")
        if not 0.0 <= self.speech_volume_threshold <= 1.0:
            raise ValueError("speech_volume_threshold must be between 0 and 1")
        if self.min_time_between_nudges < 0:
            raise ValueError("min_time_between_nudges must not be negative")
        if self.max_nudges < 0:
            raise ValueError("max_nudges must not be negative")


@dataclass
class SilenceDetectionState:
    """Read-only snapshot of the silence detector for settings surfaces."""
    conversation_state: ConversationState = ConversationState.IDLE
    recent_nudge_sent: bool = False
    last_nudge_time: Optional[float] = None
    current_silence_duration: float = 0.0
    speech_detected: bool = False
    nudge_count: int = 0
    session_terminated: bool = False


@dataclass
class NudgeRecord:
    """A sent nudge and, once the user answers, when they did."""
    nudge_time: float
    response_time: Optional[float] = None

    @property
    def responded(self) -> bool:
        return self.response_time is not None


@dataclass
class SilenceAnalytics:
    """Per-session silence statistics."""
    total_nudges: int = 0
    average_silence_duration: float = 0.0
    longest_silence_period: float = 0.0
    nudge_success_rate: float = 0.0  # fraction of nudges answered, 0.0 to 1.0
    session_start_time: float = 0.0
    total_silence_time: float = 0.0
    silence_periods: int = 0
    nudge_records: list = field(default_factory=list)
