# empath/services/session.py per-connection conversation state feeding the pipeline
import datetime as dt
import logging
from collections import deque
from typing import Callable, Deque, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from empath.core.config import STATE_CONFIG
from empath.memory.indexer import ConversationIndexer
from empath.models.conversation_state import ConversationState, HistoryMessage, SilencePeriod
from empath.state.builder import ConversationStateBuilder
from empath.state.typing_analysis import TypingTracker
from empath.utils.exception import ProviderError, print_warning
from .pipeline import AnalysisPipeline

logger = logging.getLogger(__name__)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class ConversationSession:
    """
    Collects the raw signals of one conversation (draft text, keystrokes,
    messages, window focus) and submits a fresh snapshot to the pipeline
    whenever one of them changes.
    """

    def __init__(
        self,
        pipeline: AnalysisPipeline,
        indexer: Optional[ConversationIndexer] = None,
        clock: Callable[[], dt.datetime] = _utcnow,
        tz: Optional[dt.tzinfo] = None,
    ):
        self.pipeline = pipeline
        self.indexer = indexer
        self._clock = clock
        self.tz = tz  # client's zone; None means the server's local zone
        self.tracker = TypingTracker(clock=lambda: int(self._clock().timestamp() * 1000))

        now = self._clock()
        self.messages: List[HistoryMessage] = []
        self.current_input = ""
        self.input_start_time = now
        self.last_keystroke = now
        self.window_focused = True
        self.last_focus_time = now
        self.last_blur_time: Optional[dt.datetime] = None
        self.silence_periods: Deque[SilencePeriod] = deque(maxlen=STATE_CONFIG["silence_periods_size"])
        self._last_activity = now

    def set_timezone(self, name: Optional[str] = None, utc_offset_minutes: Optional[int] = None) -> dt.tzinfo:
        """Use the client's IANA zone name, or its fixed UTC offset, for time of day and weekday."""
        if name:
            try:
                tz = ZoneInfo(name)
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise ValueError(f"unknown timezone: {name}") from e
        elif utc_offset_minutes is not None:
            tz = dt.timezone(dt.timedelta(minutes=int(utc_offset_minutes)))
        else:
            raise ValueError("timezone name or utc_offset_minutes required")
        self.tz = tz
        logger.debug(f"Session timezone set to {tz}")
        return tz

    def local_time(self, moment: dt.datetime) -> dt.datetime:
        return moment.astimezone(self.tz) if self.tz is not None else moment.astimezone()

    def build_state(self) -> ConversationState:
        now = self._clock()
        return (ConversationStateBuilder.create(now)
                .with_current_input(self.current_input, self.input_start_time, self.last_keystroke)
                .with_typing_pattern(self.tracker.pattern())
                .with_conversation_history(self.messages)
                .with_temporal_context(self.local_time(now))
                .with_window_state(self.window_focused, self.last_focus_time, self.last_blur_time)
                .with_emotional_history(self.pipeline.emotional_history.entries())
                .with_silence_periods(self.silence_periods)
                .with_engagement_metrics()
                .with_last_ai_action(self.pipeline.last_action)
                .build())

    def _touch(self, now: dt.datetime) -> None:
        gap_ms = (now - self._last_activity).total_seconds() * 1000
        if gap_ms >= STATE_CONFIG["silence_threshold_ms"]:
            self.silence_periods.append(SilencePeriod(start=self._last_activity, end=now))
        self._last_activity = now

    def update_input(self, text: str) -> ConversationState:
        """New value of the draft box."""
        now = self._clock()
        self._touch(now)
        if not self.current_input and text:
            self.input_start_time = now
        self.last_keystroke = now
        self.current_input = text
        self.tracker.update(text)

        state = self.build_state()
        self.pipeline.submit(state)
        return state

    async def add_message(self, role: str, content: str) -> HistoryMessage:
        """
        Append a sent message, index it into memory and resubmit.
        A user message clears the draft.
        """
        now = self._clock()
        self._touch(now)
        message = HistoryMessage(role=role, content=content, timestamp=now)
        self.messages.append(message)
        self.pipeline.record_message()
        if role == "user":
            self.current_input = ""
            self.tracker.reset()
        else:
            self.pipeline.record_action("respond", "answered the user")

        if self.indexer is not None:
            try:
                await self.indexer.index_message(message)
                if role == "assistant":
                    await self.indexer.index_conversation_context(self.messages)
            except ProviderError as e:
                print_warning(self.add_message, f"message not indexed, retryable: {e}", "low")

        self.pipeline.submit(self.build_state())
        return message

    def set_focus(self, focused: bool) -> None:
        now = self._clock()
        if focused:
            self.last_focus_time = now
        else:
            self.last_blur_time = now
        self.window_focused = focused
        self.pipeline.submit(self.build_state())

    def set_responding(self, responding: bool) -> None:
        self.pipeline.set_responding(responding)
