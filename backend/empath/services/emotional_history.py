# empath/services/emotional_history.py rolling emotional history owned by the pipeline
from collections import deque
from typing import Any, Deque, Dict, Optional, Tuple

from empath.core.config import STATE_CONFIG
from empath.models.conversation_state import EmotionalHistoryEntry, Valence


class EmotionalHistory:
    """Last N emotional readings, oldest first."""

    def __init__(self, size: int = STATE_CONFIG["emotional_history_size"]):
        self._entries: Deque[EmotionalHistoryEntry] = deque(maxlen=size)

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, entry: EmotionalHistoryEntry) -> None:
        self._entries.append(entry)

    def entries(self) -> Tuple[EmotionalHistoryEntry, ...]:
        return tuple(self._entries)

    def latest(self) -> Optional[EmotionalHistoryEntry]:
        return self._entries[-1] if self._entries else None

    def clear(self) -> None:
        self._entries.clear()

    def trend(self) -> str:
        """improving, declining, stable or unknown, judged from the last three readings."""
        recent = list(self._entries)[-3:]
        if len(recent) < 2:
            return "unknown"
        positive = sum(1 for e in recent if e.valence == Valence.POSITIVE)
        negative = sum(1 for e in recent if e.valence == Valence.NEGATIVE)
        if positive > negative:
            return "improving"
        if negative > positive:
            return "declining"
        return "stable"

    def current_context(self) -> Dict[str, Any]:
        latest = self.latest()
        return {
            "current_emotions": list(latest.emotions) if latest else [],
            "emotional_trend": self.trend(),
            "user_needs": list(latest.user_needs) if latest else [],
            "conversation_mood": latest.emotional_state if latest else "neutral",
            "recent_emotions": [
                {"emotion": e.emotional_state, "timestamp": e.timestamp.isoformat()}
                for e in list(self._entries)[-5:]
            ],
        }
