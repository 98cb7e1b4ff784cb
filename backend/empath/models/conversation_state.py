# empath/models/conversation_state.py immutable conversation snapshot
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple, Any


BACKSPACE_MARKER = "[BACKSPACE"


class TimeOfDay(str, Enum):
    MORNING   = "morning"
    AFTERNOON = "afternoon"
    EVENING   = "evening"
    NIGHT     = "night"


class EngagementLevel(str, Enum):
    HIGH   = "high"
    MEDIUM = "medium"
    LOW    = "low"


class Valence(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL  = "neutral"
    MIXED    = "mixed"

    @classmethod
    def coerce(cls, value: Any) -> "Valence":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.NEUTRAL


@dataclass(frozen=True)
class KeystrokeData:
    """One typed character, or a deletion recorded as [BACKSPACE:<deleted text>]."""
    char: str
    timestamp_ms: int
    time_since_last_char_ms: int
    position: int
    time_since_start_ms: int = 0

    @property
    def is_backspace(self) -> bool:
        return self.char.startswith(BACKSPACE_MARKER)


@dataclass(frozen=True)
class LongPause:
    position: int
    duration_ms: int


@dataclass(frozen=True)
class CorrectionPattern:
    position: int
    deleted_chars: int
    deleted_text: str
    new_chars: str


@dataclass(frozen=True)
class TypingPattern:
    keystrokes: Tuple[KeystrokeData, ...] = ()
    total_typing_time_ms: int = 0
    average_char_interval_ms: float = 0.0
    pause_count: int = 0
    long_pauses: Tuple[LongPause, ...] = ()
    typing_speed_cpm: float = 0.0
    hesitation_points: Tuple[int, ...] = ()
    backspace_count: int = 0
    correction_patterns: Tuple[CorrectionPattern, ...] = ()


@dataclass(frozen=True)
class HistoryMessage:
    role: str  # user | assistant
    content: str
    timestamp: dt.datetime


@dataclass(frozen=True)
class EmotionalHistoryEntry:
    timestamp: dt.datetime
    emotions: Tuple[str, ...]
    emotional_state: str
    valence: Valence = Valence.NEUTRAL
    intensity: float = 0.5
    user_needs: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "emotions": list(self.emotions),
            "emotional_state": self.emotional_state,
            "valence": self.valence.value,
            "intensity": self.intensity,
            "user_needs": list(self.user_needs),
        }


@dataclass(frozen=True)
class LastAction:
    """The most recent autonomous action the agent took."""
    type: str
    timestamp: dt.datetime
    reasoning: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "timestamp": self.timestamp.isoformat(), "reasoning": self.reasoning}


@dataclass(frozen=True)
class SilencePeriod:
    start: dt.datetime
    end: dt.datetime

    @property
    def duration_ms(self) -> int:
        return int((self.end - self.start).total_seconds() * 1000)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass(frozen=True)
class ConversationState:
    """
    Snapshot of everything the analysis lanes look at.

    Built by ConversationStateBuilder and never modified afterwards; the next
    change in the conversation produces a new snapshot.
    """
    current_input: str = ""
    input_start_time: dt.datetime = field(default_factory=_utcnow)
    last_keystroke: dt.datetime = field(default_factory=_utcnow)
    typing_duration_ms: int = 0
    typing_pattern: TypingPattern = field(default_factory=TypingPattern)

    conversation_history: Tuple[HistoryMessage, ...] = ()

    current_time: dt.datetime = field(default_factory=_utcnow)
    time_of_day: TimeOfDay = TimeOfDay.AFTERNOON
    day_of_week: str = "monday"

    window_focused: bool = True
    last_focus_time: dt.datetime = field(default_factory=_utcnow)
    last_blur_time: Optional[dt.datetime] = None
    time_since_last_blur_ms: Optional[int] = None

    emotional_history: Tuple[EmotionalHistoryEntry, ...] = ()

    message_frequency: float = 0.0       # user messages per minute
    average_message_length: float = 0.0  # user messages only
    conversation_duration_ms: int = 0
    silence_periods: Tuple[SilencePeriod, ...] = ()
    topic_changes: int = 0
    response_time_ms: float = 0.0
    engagement_level: EngagementLevel = EngagementLevel.MEDIUM

    last_ai_action: Optional[LastAction] = None

    @property
    def trimmed_length(self) -> int:
        return len(self.current_input.strip())

    def summary(self) -> Dict[str, Any]:
        """Compact view used by prompts and logs."""
        return {
            "input": self.current_input,
            "time_of_day": self.time_of_day.value,
            "day_of_week": self.day_of_week,
            "window_focused": self.window_focused,
            "engagement": self.engagement_level.value,
            "history_length": len(self.conversation_history),
            "emotional_history": [e.to_dict() for e in self.emotional_history],
            "last_ai_action": self.last_ai_action.to_dict() if self.last_ai_action else None,
            "typing": {
                "speed_cpm": round(self.typing_pattern.typing_speed_cpm, 1),
                "average_interval_ms": round(self.typing_pattern.average_char_interval_ms, 1),
                "long_pauses": self.typing_pattern.pause_count,
                "hesitations": len(self.typing_pattern.hesitation_points),
                "backspaces": self.typing_pattern.backspace_count,
            },
        }
