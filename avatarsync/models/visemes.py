"""Viseme and subtitle cue models produced by the viseme service."""

from dataclasses import dataclass


@dataclass(frozen=True)
class VisemeCue:
    """A mouth-shape cue at an offset (milliseconds) into the turn audio."""
    offset: float
    viseme_id: int


@dataclass(frozen=True)
class SubtitleCue:
    """A caption segment between ``start`` and ``end`` seconds."""
    text: str
    start: float
    end: float
