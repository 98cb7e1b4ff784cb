# empath/models/reflection.py emotional reflection and optional memory instruction
from __future__ import annotations

import datetime as dt
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from empath.models.conversation_state import EmotionalHistoryEntry, Valence
from empath.models.decision import as_bool
from empath.protocols.memory import MemoryType

logger = logging.getLogger(__name__)

DEFAULT_EMOTION = "🤔"
MAX_EMOTIONS = 4


def _str_tuple(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(v) for v in value if v is not None and str(v).strip())


def _clamp_unit(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:
        return default
    return max(0.0, min(1.0, number))


@dataclass(frozen=True)
class MemoryAction:
    should_save: bool
    content: str
    memory_type: MemoryType = MemoryType.INSIGHT
    importance: float = 0.5
    tags: Tuple[str, ...] = ()
    reasoning: str = ""

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["MemoryAction"]:
        """Parse the memoryAction block; anything unusable is treated as 'do not save'."""
        if not isinstance(payload, Mapping):
            return None
        content = str(payload.get("content") or "").strip()
        should_save = as_bool(payload.get("shouldSave", payload.get("should_save", False)))
        if should_save and not content:
            logger.info("memory action without content ignored")
            should_save = False
        raw_type = payload.get("type", payload.get("memoryType", payload.get("memory_type")))
        try:
            memory_type = MemoryType.coerce(raw_type)
        except ValueError:
            memory_type = MemoryType.INSIGHT
        return cls(
            should_save=should_save,
            content=content,
            memory_type=memory_type,
            importance=_clamp_unit(payload.get("importance"), 0.5),
            tags=_str_tuple(payload.get("tags")),
            reasoning=str(payload.get("reasoning") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "should_save": self.should_save,
            "content": self.content,
            "memory_type": self.memory_type.value,
            "importance": self.importance,
            "tags": list(self.tags),
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True)
class Reflection:
    content: str
    emotions: Tuple[str, ...]
    emotional_state: str
    valence: Valence = Valence.NEUTRAL
    intensity: float = 0.5
    user_needs: Tuple[str, ...] = ()
    memory_action: Optional[MemoryAction] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: dt.datetime = field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["Reflection"]:
        """Return None for payloads missing content or emotionalState."""
        if not isinstance(payload, Mapping):
            return None
        content = payload.get("content")
        emotional_state = payload.get("emotionalState", payload.get("emotional_state"))
        if not content or not emotional_state:
            logger.info("reflection payload missing required fields: %s", sorted(payload.keys()))
            return None
        emotions = _str_tuple(payload.get("emotions"))[:MAX_EMOTIONS] or (DEFAULT_EMOTION,)
        return cls(
            content=str(content),
            emotions=emotions,
            emotional_state=str(emotional_state),
            valence=Valence.coerce(payload.get("valence")),
            intensity=_clamp_unit(payload.get("intensity"), 0.5),
            user_needs=_str_tuple(payload.get("userNeeds", payload.get("user_needs"))),
            memory_action=MemoryAction.from_payload(payload.get("memoryAction", payload.get("memory_action"))),
        )

    @classmethod
    def coerce(cls, value: Union["Reflection", Mapping[str, Any], None]) -> Optional["Reflection"]:
        if isinstance(value, Reflection):
            return value
        return cls.from_payload(value)

    def to_emotional_entry(self) -> EmotionalHistoryEntry:
        return EmotionalHistoryEntry(
            timestamp=self.timestamp,
            emotions=self.emotions,
            emotional_state=self.emotional_state,
            valence=self.valence,
            intensity=self.intensity,
            user_needs=self.user_needs,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "emotions": list(self.emotions),
            "emotional_state": self.emotional_state,
            "valence": self.valence.value,
            "intensity": self.intensity,
            "user_needs": list(self.user_needs),
            "memory_action": self.memory_action.to_dict() if self.memory_action else None,
            "timestamp": self.timestamp.isoformat(),
        }
