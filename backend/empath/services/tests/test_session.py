import asyncio
import datetime as dt
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pytest

from empath.memory.embeddings import EmbeddingService
from empath.memory.indexer import ConversationIndexer
from empath.memory.kv_store import InMemoryKeyValueStore
from empath.memory.vector_store import VectorMemoryStore
from empath.core.config import VECTORIZATION_CONFIG
from empath.protocols.memory import EntryKind
from empath.services.pipeline import AnalysisPipeline
from empath.services.session import ConversationSession
from empath.services.tests.fakes import FAST_SETTINGS, FakeDecisionService, FakeReflectionService


class SteppingClock:
    def __init__(self, start=dt.datetime(2024, 5, 1, 9, 0, tzinfo=dt.timezone.utc)):
        self.now = start

    def advance(self, seconds):
        self.now += dt.timedelta(seconds=seconds)

    def __call__(self):
        return self.now


class RecordingPipeline(AnalysisPipeline):
    def __init__(self):
        super().__init__(FakeDecisionService(), FakeReflectionService())
        self.submitted = []

    def submit(self, state):
        self.submitted.append(state)


def make_session(indexer=None, clock=None, tz=dt.timezone.utc):
    clock = clock or SteppingClock()
    pipeline = RecordingPipeline()
    return ConversationSession(pipeline, indexer=indexer, clock=clock, tz=tz), pipeline, clock


def test_update_input_submits_snapshot():
    session, pipeline, clock = make_session()
    session.update_input("H")
    clock.advance(0.2)
    state = session.update_input("He")
    assert pipeline.submitted[-1] is state
    assert state.current_input == "He"
    assert state.typing_duration_ms == 200
    assert len(state.typing_pattern.keystrokes) == 2
    assert state.time_of_day.value == "morning"


def test_long_gap_is_a_silence_period():
    session, pipeline, clock = make_session()
    clock.advance(6)
    state = session.update_input("back again")
    assert len(state.silence_periods) == 1
    assert state.silence_periods[0].duration_ms == 6000


def test_focus_changes():
    session, pipeline, clock = make_session()
    session.set_focus(False)
    clock.advance(3)
    session.update_input("hey")
    state = pipeline.submitted[-1]
    assert state.window_focused is False
    assert state.time_since_last_blur_ms == 3000


async def test_messages_reset_draft_and_are_indexed():
    memory = VectorMemoryStore(
        embedding_service=EmbeddingService(VECTORIZATION_CONFIG["models"]["hashing"]),
        kv_store=InMemoryKeyValueStore(),
    )
    session, pipeline, clock = make_session(ConversationIndexer(memory))
    session.update_input("I had a rough day")
    await session.add_message("user", "I had a rough day")
    assert session.current_input == ""
    assert pipeline.submitted[-1].conversation_history[-1].content == "I had a rough day"

    clock.advance(2)
    await session.add_message("assistant", "I'm sorry, want to tell me more?")
    assert pipeline.last_action.type == "respond"
    kinds = sorted(e.metadata.kind.value for e in memory.all_entries())
    assert kinds == sorted([
        EntryKind.USER_MESSAGE.value, EntryKind.ASSISTANT_MESSAGE.value, EntryKind.CONVERSATION_CONTEXT.value,
    ])


def test_time_of_day_follows_client_utc_offset():
    # 03:30 UTC is 23:30 of the previous day in New York (EDT)
    clock = SteppingClock(dt.datetime(2024, 5, 1, 3, 30, tzinfo=dt.timezone.utc))
    session, pipeline, _ = make_session(clock=clock)
    assert session.update_input("still awake").time_of_day.value == "morning"

    session.set_timezone(utc_offset_minutes=-240)
    state = session.update_input("still awake here")
    assert state.time_of_day.value == "night"
    assert state.day_of_week == "tuesday"


def test_time_of_day_follows_client_zone_name():
    try:
        ZoneInfo("America/New_York")
    except ZoneInfoNotFoundError:
        pytest.skip("no time zone database available")
    clock = SteppingClock(dt.datetime(2024, 5, 1, 3, 30, tzinfo=dt.timezone.utc))
    session, pipeline, _ = make_session(clock=clock, tz=None)
    session.set_timezone("America/New_York")
    assert session.update_input("still awake").time_of_day.value == "night"


def test_unknown_timezone_is_rejected():
    session, pipeline, _ = make_session()
    with pytest.raises(ValueError):
        session.set_timezone("Mars/Olympus_Mons")
    with pytest.raises(ValueError):
        session.set_timezone()
    assert session.tz == dt.timezone.utc


async def test_sent_draft_cancels_pending_autonomous_message():
    decision = FakeDecisionService({"shouldAct": True, "actionType": "encourage", "timing": 500,
                                    "suggestedMessage": "Go on, I'm listening."})
    pipeline = AnalysisPipeline(decision, FakeReflectionService(), settings=FAST_SETTINGS)
    messages = []
    pipeline.on_message(messages.append)
    pipeline.start()
    session = ConversationSession(pipeline, tz=dt.timezone.utc)
    try:
        session.update_input("so I was thinking about")
        await asyncio.sleep(0.2)
        assert len(decision.calls) == 1
        await session.add_message("user", "so I was thinking about quitting")
        await asyncio.sleep(0.8)
    finally:
        await pipeline.stop()

    assert pipeline.last_message_time is not None
    assert messages == []
    assert pipeline.stats["actions"] == 0
