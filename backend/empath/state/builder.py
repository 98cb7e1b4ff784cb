# empath/state/builder.py assembles ConversationState snapshots from raw signals
from __future__ import annotations

import dataclasses
import datetime as dt
from typing import Any, Dict, Iterable, Optional, Sequence

from empath.core.config import STATE_CONFIG
from empath.models.conversation_state import (
    ConversationState,
    EmotionalHistoryEntry,
    EngagementLevel,
    HistoryMessage,
    LastAction,
    SilencePeriod,
    TimeOfDay,
    TypingPattern,
)

# words ignored when comparing consecutive messages for topic changes
_STOP_WORDS = frozenset({
    "and", "but", "so", "that", "it", "is", "i", "you", "we", "the", "a", "to", "of",
})


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _millis(delta: dt.timedelta) -> int:
    return int(delta.total_seconds() * 1000)


def time_of_day_for(moment: dt.datetime) -> TimeOfDay:
    hour = moment.hour
    if hour < 12:
        return TimeOfDay.MORNING
    if hour < 17:
        return TimeOfDay.AFTERNOON
    if hour < 21:
        return TimeOfDay.EVENING
    return TimeOfDay.NIGHT


def count_topic_changes(messages: Sequence[str], threshold: float = STATE_CONFIG["topic_overlap_threshold"]) -> int:
    """Count consecutive message pairs whose content-word overlap is below threshold."""
    changes = 0
    for previous, current in zip(messages, messages[1:]):
        prev_words = [w for w in previous.lower().split() if w not in _STOP_WORDS]
        curr_words = [w for w in current.lower().split() if w not in _STOP_WORDS]
        total = max(len(prev_words), len(curr_words))
        if total == 0:
            continue
        overlap = sum(1 for w in prev_words if w in curr_words)
        if overlap / total < threshold:
            changes += 1
    return changes


class ConversationStateBuilder:
    """
    Fluent builder for ConversationState.

    Every `with_*` call records fields; `build()` returns a frozen snapshot
    and the builder can be thrown away. No I/O happens here.

    Example:
        >>> state = (ConversationStateBuilder.create()
        ...          .with_current_input("hello there", start, now)
        ...          .with_conversation_history(messages)
        ...          .with_temporal_context(now)
        ...          .with_engagement_metrics()
        ...          .build())
    """

    def __init__(self, now: Optional[dt.datetime] = None):
        self._now = now or _utcnow()
        self._fields: Dict[str, Any] = {}

    @classmethod
    def create(cls, now: Optional[dt.datetime] = None) -> "ConversationStateBuilder":
        return cls(now)

    def with_current_input(self, text: str, start_time: dt.datetime, last_keystroke: dt.datetime) -> "ConversationStateBuilder":
        self._fields.update(
            current_input=text,
            input_start_time=start_time,
            last_keystroke=last_keystroke,
            typing_duration_ms=max(0, _millis(last_keystroke - start_time)),
        )
        return self

    def with_typing_pattern(self, pattern: Optional[TypingPattern]) -> "ConversationStateBuilder":
        self._fields["typing_pattern"] = pattern or TypingPattern()
        return self

    def with_conversation_history(self, messages: Iterable[HistoryMessage]) -> "ConversationStateBuilder":
        history = tuple(messages)
        self._fields["conversation_history"] = history
        if not history:
            return self

        duration_ms = max(0, _millis(history[-1].timestamp - history[0].timestamp))
        user_messages = [m for m in history if m.role == "user"]
        self._fields.update(
            conversation_duration_ms=duration_ms,
            message_frequency=len(user_messages) / max(1.0, duration_ms / 60000),
            average_message_length=sum(len(m.content) for m in user_messages) / max(1, len(user_messages)),
            topic_changes=count_topic_changes([m.content for m in user_messages]),
        )
        return self

    def with_temporal_context(self, current_time: Optional[dt.datetime] = None) -> "ConversationStateBuilder":
        moment = current_time or self._now
        self._fields.update(
            current_time=moment,
            time_of_day=time_of_day_for(moment),
            day_of_week=STATE_CONFIG["locale_weekdays"][moment.weekday()],
        )
        return self

    def with_window_state(
        self,
        focused: bool,
        last_focus_time: dt.datetime,
        last_blur_time: Optional[dt.datetime],
    ) -> "ConversationStateBuilder":
        self._fields.update(
            window_focused=focused,
            last_focus_time=last_focus_time,
            last_blur_time=last_blur_time,
            time_since_last_blur_ms=_millis(self._now - last_blur_time) if last_blur_time else None,
        )
        return self

    def with_emotional_history(self, history: Iterable[EmotionalHistoryEntry]) -> "ConversationStateBuilder":
        size = STATE_CONFIG["emotional_history_size"]
        self._fields["emotional_history"] = tuple(history)[-size:]
        return self

    def with_silence_periods(self, periods: Iterable[SilencePeriod]) -> "ConversationStateBuilder":
        size = STATE_CONFIG["silence_periods_size"]
        self._fields["silence_periods"] = tuple(periods)[-size:]
        return self

    def with_engagement_metrics(self) -> "ConversationStateBuilder":
        """Derive engagement from frequency x length; call after with_conversation_history."""
        frequency = self._fields.get("message_frequency", 0.0)
        average_length = self._fields.get("average_message_length", 0.0)

        if frequency > 2 and average_length > 50:
            level = EngagementLevel.HIGH
        elif frequency > 0.5 and average_length > 20:
            level = EngagementLevel.MEDIUM
        else:
            level = EngagementLevel.LOW
        self._fields["engagement_level"] = level

        user_times = [m.timestamp for m in self._fields.get("conversation_history", ()) if m.role == "user"]
        if len(user_times) > 1:
            gaps = [_millis(b - a) for a, b in zip(user_times, user_times[1:])]
            self._fields["response_time_ms"] = sum(gaps) / len(gaps)
        else:
            self._fields["response_time_ms"] = 0.0
        return self

    def with_last_ai_action(self, action: Optional[LastAction]) -> "ConversationStateBuilder":
        self._fields["last_ai_action"] = action
        return self

    def build(self) -> ConversationState:
        base = ConversationState(
            input_start_time=self._now,
            last_keystroke=self._now,
            current_time=self._now,
            last_focus_time=self._now,
            time_of_day=time_of_day_for(self._now),
            day_of_week=STATE_CONFIG["locale_weekdays"][self._now.weekday()],
        )
        return dataclasses.replace(base, **self._fields)
