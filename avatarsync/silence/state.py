"""Conversation state tracking as pure transitions plus an effect list.

Transition functions never call out. They return the new tracker state and
the effects the owner must carry out afterwards, in order.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..models.silence import ConversationState

logger = logging.getLogger(__name__)

# Anything longer is a suspend/clock artifact rather than real silence
MAX_PLAUSIBLE_SILENCE_SECONDS = 24 * 60 * 60


class EffectType(Enum):
    STATE_CHANGED = "state_changed"
    SILENCE_STARTED = "silence_started"
    SILENCE_RECORDED = "silence_recorded"
    SILENCE_DISCARDED = "silence_discarded"


@dataclass(frozen=True)
class Effect:
    type: EffectType
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TrackerState:
    conversation_state: ConversationState = ConversationState.IDLE
    silence_started_at: Optional[float] = None


def is_plausible_elapsed(elapsed: float) -> bool:
    return 0 <= elapsed < MAX_PLAUSIBLE_SILENCE_SECONDS


def begin_silence(state: TrackerState, now: float) -> Tuple[TrackerState, List[Effect]]:
    """Start a silence period at ``now``."""
    return (replace(state, silence_started_at=now),
            [Effect(EffectType.SILENCE_STARTED, {"at": now})])


def end_silence(state: TrackerState, now: float) -> Tuple[TrackerState, List[Effect]]:
    """Close the open silence period, if any, and report its duration."""
    if state.silence_started_at is None:
        return state, []

    elapsed = now - state.silence_started_at
    if is_plausible_elapsed(elapsed):
        effect = Effect(EffectType.SILENCE_RECORDED, {"duration": elapsed})
    else:
        effect = Effect(EffectType.SILENCE_DISCARDED, {"elapsed": elapsed})
    return replace(state, silence_started_at=None), [effect]


def transition(state: TrackerState,
               next_state: ConversationState,
               now: float) -> Tuple[TrackerState, List[Effect]]:
    """Move to ``next_state``. A transition to the current state is a no-op."""
    previous = state.conversation_state
    if previous == next_state:
        return state, []

    effects: List[Effect] = []
    if previous == ConversationState.LISTENING_FOR_USER:
        state, closing = end_silence(state, now)
        effects.extend(closing)

    state = replace(state, conversation_state=next_state)
    effects.append(Effect(EffectType.STATE_CHANGED,
                          {"previous": previous, "new": next_state, "at": now}))

    if next_state == ConversationState.LISTENING_FOR_USER:
        state, opening = begin_silence(state, now)
        effects.extend(opening)

    return state, effects


class ConversationStateTracker:
    """Holds the current conversation state and applies transitions."""

    def __init__(self):
        self.state = TrackerState()

    @property
    def conversation_state(self) -> ConversationState:
        return self.state.conversation_state

    @property
    def silence_started_at(self) -> Optional[float]:
        return self.state.silence_started_at

    def set_state(self, next_state: ConversationState, now: float) -> List[Effect]:
        previous = self.state.conversation_state
        self.state, effects = transition(self.state, next_state, now)
        if effects:
            logger.info(f"Conversation state changed: {previous.value} -> {next_state.value}")
        return effects

    def begin_silence(self, now: float) -> List[Effect]:
        self.state, effects = begin_silence(self.state, now)
        return effects

    def end_silence(self, now: float) -> List[Effect]:
        self.state, effects = end_silence(self.state, now)
        return effects
