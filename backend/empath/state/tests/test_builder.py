import dataclasses
import datetime as dt

import pytest

from empath.models.conversation_state import (
    EmotionalHistoryEntry,
    EngagementLevel,
    HistoryMessage,
    LastAction,
    TimeOfDay,
)
from empath.state.builder import ConversationStateBuilder, count_topic_changes, time_of_day_for

NOW = dt.datetime(2024, 5, 1, 14, 30, tzinfo=dt.timezone.utc)  # a wednesday


def at(seconds):
    return NOW + dt.timedelta(seconds=seconds)


@pytest.mark.parametrize("hour,expected", [
    (6, TimeOfDay.MORNING), (12, TimeOfDay.AFTERNOON), (18, TimeOfDay.EVENING), (23, TimeOfDay.NIGHT),
])
def test_time_of_day(hour, expected):
    assert time_of_day_for(NOW.replace(hour=hour)) == expected


def test_topic_changes():
    messages = ["I love my garden roses", "my garden roses bloom", "the stock market fell today"]
    assert count_topic_changes(messages) == 1
    assert count_topic_changes(["the and", "so it"]) == 0


def test_build_full_state():
    history = [
        HistoryMessage("user", "Hello, I had a long and tiring day at work", at(-60)),
        HistoryMessage("assistant", "I'm sorry to hear that", at(-30)),
        HistoryMessage("user", "Yes, the meeting with my boss went badly", at(0)),
    ]
    emotions = [
        EmotionalHistoryEntry(timestamp=at(-i), emotions=("😐",), emotional_state=f"s{i}")
        for i in range(12)
    ]
    action = LastAction(type="respond", timestamp=at(-30), reasoning="answered")

    state = (ConversationStateBuilder.create(NOW)
             .with_current_input("I think", at(-4), at(-1))
             .with_conversation_history(history)
             .with_temporal_context(NOW)
             .with_window_state(True, at(-10), at(-5))
             .with_emotional_history(emotions)
             .with_engagement_metrics()
             .with_last_ai_action(action)
             .build())

    assert state.current_input == "I think"
    assert state.typing_duration_ms == 3000
    assert state.conversation_duration_ms == 60000
    assert state.message_frequency == 2.0
    assert state.average_message_length == pytest.approx((42 + 40) / 2)
    assert state.engagement_level == EngagementLevel.MEDIUM
    assert state.response_time_ms == 60000
    assert state.time_of_day == TimeOfDay.AFTERNOON
    assert state.day_of_week == "wednesday"
    assert state.time_since_last_blur_ms == 5000
    assert len(state.emotional_history) == 10
    assert state.emotional_history[-1].emotional_state == "s11"
    assert state.last_ai_action == action


def test_state_is_frozen():
    state = ConversationStateBuilder.create(NOW).with_current_input("x", NOW, NOW).build()
    with pytest.raises(dataclasses.FrozenInstanceError):
        state.current_input = "y"
    assert state.trimmed_length == 1
