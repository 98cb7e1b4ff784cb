# empath/state/typing_analysis.py keystroke recording and typing pattern analysis
from __future__ import annotations

import re
import time
from typing import Callable, List, Optional

from empath.core.config import STATE_CONFIG
from empath.models.conversation_state import (
    BACKSPACE_MARKER,
    CorrectionPattern,
    KeystrokeData,
    LongPause,
    TypingPattern,
)

_DELETED_TEXT = re.compile(r"\[BACKSPACE:(.+)\]", re.DOTALL)


def _now_ms() -> int:
    return int(time.time() * 1000)


def analyze_typing_pattern(keystrokes: List[KeystrokeData], start_ms: int, now_ms: int) -> TypingPattern:
    """
    Derive rhythm, pauses, hesitations and corrections from raw keystrokes.

    Args:
        keystrokes: keystrokes of the current draft, oldest first
        start_ms: epoch ms of the first keystroke of the draft
        now_ms: epoch ms to measure total typing time against

    Returns:
        TypingPattern for the draft so far.
    """
    total_time = max(0, now_ms - start_ms)
    typed = [k for k in keystrokes if not k.is_backspace]

    intervals = [k.time_since_last_char_ms for k in typed if k.time_since_last_char_ms > 0]
    average_interval = sum(intervals) / len(intervals) if intervals else 0.0

    long_pause_ms = STATE_CONFIG["long_pause_ms"]
    hesitation_ms = STATE_CONFIG["hesitation_ms"]
    long_pauses = tuple(
        LongPause(position=k.position, duration_ms=k.time_since_last_char_ms)
        for k in keystrokes if k.time_since_last_char_ms > long_pause_ms
    )
    hesitations = tuple(
        k.position for k in keystrokes
        if hesitation_ms < k.time_since_last_char_ms <= long_pause_ms
    )
    speed = (len(typed) / total_time) * 60000 if total_time > 0 else 0.0

    # a correction is a deletion followed by fresh typing
    corrections = []
    for i in range(len(keystrokes) - 1):
        current, following = keystrokes[i], keystrokes[i + 1]
        if not current.is_backspace or following.is_backspace:
            continue
        match = _DELETED_TEXT.match(current.char)
        deleted_text = match.group(1) if match else ""
        new_chars = []
        for k in keystrokes[i + 1:]:
            if k.is_backspace:
                break
            new_chars.append(k.char)
        corrections.append(CorrectionPattern(
            position=current.position,
            deleted_chars=len(deleted_text),
            deleted_text=deleted_text,
            new_chars="".join(new_chars),
        ))

    return TypingPattern(
        keystrokes=tuple(keystrokes),
        total_typing_time_ms=total_time,
        average_char_interval_ms=average_interval,
        pause_count=len(long_pauses),
        long_pauses=long_pauses,
        typing_speed_cpm=speed,
        hesitation_points=hesitations,
        backspace_count=sum(1 for k in keystrokes if k.is_backspace),
        correction_patterns=tuple(corrections),
    )


def describe_typing_pattern(pattern: Optional[TypingPattern]) -> str:
    """Plain-language notes about a typing pattern, one per line."""
    if pattern is None or not pattern.keystrokes:
        return "No typing pattern to analyze yet."

    notes = []
    if pattern.typing_speed_cpm < 30:
        notes.append("Slow typing - may indicate reflection or uncertainty")
    elif pattern.typing_speed_cpm > 80:
        notes.append("Fast typing - may indicate stress or enthusiasm")
    else:
        notes.append("Normal typing speed")

    if len(pattern.long_pauses) > 2:
        notes.append(f"{len(pattern.long_pauses)} long pauses - deep thought or hesitation")
        if any(p.position < 10 for p in pattern.long_pauses):
            notes.append("Pauses early in the message - hard to get started")

    if len(pattern.hesitation_points) > 3:
        notes.append(f"{len(pattern.hesitation_points)} hesitation points - unsure about wording")

    if pattern.backspace_count > 3:
        notes.append(f"{pattern.backspace_count} deletions - rephrasing often")
        if pattern.correction_patterns:
            details = ", ".join(
                f'deleted "{c.deleted_text}" -> wrote "{c.new_chars}"'
                for c in pattern.correction_patterns[-3:]
            )
            notes.append(f"Corrections: {details}")

    if pattern.average_char_interval_ms > 300:
        notes.append("Slow rhythm between characters - careful or thoughtful")
    elif 0 < pattern.average_char_interval_ms < 100:
        notes.append("Fast rhythm between characters - flowing or stressed")

    return "\n- ".join(notes)


class TypingTracker:
    """
    Records draft edits as keystrokes.

    Feed every new value of the input box to `update`; characters added at
    the end become keystrokes, shrinking text becomes a backspace record
    carrying the deleted text. Clearing the draft resets the session.
    """

    def __init__(self, clock: Callable[[], int] = _now_ms):
        self._clock = clock
        self.reset()

    def reset(self) -> None:
        self.keystrokes: List[KeystrokeData] = []
        self.previous_input = ""
        self.input_start_ms = 0
        self.last_keystroke_ms = 0

    def update(self, current_input: str) -> Optional[TypingPattern]:
        now = self._clock()
        previous = self.previous_input

        if current_input == "":
            self.reset()
            return None

        if not previous and len(current_input) >= 1 and not self.keystrokes:
            self.input_start_ms = now
            self.last_keystroke_ms = now

        since_last = now - self.last_keystroke_ms if self.last_keystroke_ms > 0 else 0
        since_start = now - self.input_start_ms

        if len(current_input) > len(previous):
            self.keystrokes.append(KeystrokeData(
                char=current_input[-1],
                timestamp_ms=now,
                time_since_last_char_ms=since_last,
                position=len(current_input) - 1,
                time_since_start_ms=since_start,
            ))
            self.last_keystroke_ms = now
        elif len(current_input) < len(previous):
            deleted = previous[len(current_input):]
            self.keystrokes.append(KeystrokeData(
                char=f"{BACKSPACE_MARKER}:{deleted}]",
                timestamp_ms=now,
                time_since_last_char_ms=since_last,
                position=len(current_input),
                time_since_start_ms=since_start,
            ))
            self.last_keystroke_ms = now

        self.previous_input = current_input
        return self.pattern(now)

    def pattern(self, now_ms: Optional[int] = None) -> Optional[TypingPattern]:
        if not self.keystrokes:
            return None
        return analyze_typing_pattern(self.keystrokes, self.input_start_ms, now_ms or self._clock())
