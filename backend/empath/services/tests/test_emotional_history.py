import datetime as dt

from empath.models.conversation_state import EmotionalHistoryEntry, Valence
from empath.services.emotional_history import EmotionalHistory


def entry(valence, state="s", needs=()):
    return EmotionalHistoryEntry(
        timestamp=dt.datetime.now(dt.timezone.utc),
        emotions=("🙂",),
        emotional_state=state,
        valence=valence,
        user_needs=needs,
    )


def test_trend():
    history = EmotionalHistory()
    assert history.trend() == "unknown"
    history.add(entry(Valence.NEGATIVE))
    assert history.trend() == "unknown"
    history.add(entry(Valence.POSITIVE))
    assert history.trend() == "stable"
    history.add(entry(Valence.POSITIVE))
    assert history.trend() == "improving"
    for _ in range(3):
        history.add(entry(Valence.NEGATIVE))
    assert history.trend() == "declining"


def test_bounded_size():
    history = EmotionalHistory(size=3)
    for i in range(5):
        history.add(entry(Valence.NEUTRAL, state=f"s{i}"))
    assert len(history) == 3
    assert [e.emotional_state for e in history.entries()] == ["s2", "s3", "s4"]


def test_current_context():
    history = EmotionalHistory()
    assert history.current_context()["conversation_mood"] == "neutral"
    history.add(entry(Valence.POSITIVE, state="relieved", needs=("rest",)))
    context = history.current_context()
    assert context["conversation_mood"] == "relieved"
    assert context["user_needs"] == ["rest"]
    assert context["current_emotions"] == ["🙂"]
    history.clear()
    assert history.latest() is None
