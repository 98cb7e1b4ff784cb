# empath/models/decision.py should-I-act decision and its history record
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from empath.core.config import DECISION_CONFIG
from empath.models.conversation_state import ConversationState


class ActionType(str, Enum):
    WAIT      = "wait"
    REFLECT   = "reflect"
    SUPPORT   = "support"
    CLARIFY   = "clarify"
    ENCOURAGE = "encourage"
    CHECK_IN  = "check_in"
    APOLOGIZE = "apologize"
    REDIRECT  = "redirect"


class Priority(str, Enum):
    LOW    = "low"
    MEDIUM = "medium"
    HIGH   = "high"
    URGENT = "urgent"


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _as_number(value: Any, default: float) -> float:
    # bool is an int subclass, reject it explicitly
    if value is None or isinstance(value, bool):
        return default
    if not isinstance(value, (int, float)):
        try:
            value = float(value)
        except (TypeError, ValueError):
            return default
    if value != value or value in (float("inf"), float("-inf")):
        return default
    return float(value)


def as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


@dataclass(frozen=True)
class Decision:
    should_act: bool
    action_type: ActionType
    priority: Priority
    timing_ms: int
    reasoning: str
    confidence: float
    suggested_message: Optional[str] = None

    @classmethod
    def default(cls, reasoning: str = "Analysis failed, waiting") -> "Decision":
        """Safe fallback used whenever the decision service cannot answer."""
        return cls(
            should_act=False,
            action_type=ActionType.WAIT,
            priority=Priority.LOW,
            timing_ms=DECISION_CONFIG["default_timing_ms"],
            reasoning=reasoning,
            confidence=DECISION_CONFIG["fallback_confidence"],
        )

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Decision":
        """
        Build a decision from a loosely-typed service payload.

        Accepts both camelCase (shouldAct, actionType, suggestedMessage) and
        snake_case keys. Unknown enum values fall back to wait / low, numbers
        are clamped into range, missing fields get defaults.
        """
        def pick(*keys: str) -> Any:
            for key in keys:
                if key in payload and payload[key] is not None:
                    return payload[key]
            return None

        try:
            action_type = ActionType(str(pick("actionType", "action_type")).lower())
        except ValueError:
            action_type = ActionType.WAIT
        try:
            priority = Priority(str(pick("priority")).lower())
        except ValueError:
            priority = Priority.LOW

        timing = _as_number(pick("timing", "timing_ms", "delay_ms"), DECISION_CONFIG["default_timing_ms"])
        confidence = _as_number(pick("confidence"), DECISION_CONFIG["default_confidence"])
        suggested = pick("suggestedMessage", "suggested_message")

        return cls(
            should_act=as_bool(pick("shouldAct", "should_act")),
            action_type=action_type,
            priority=priority,
            timing_ms=int(_clamp(timing, DECISION_CONFIG["min_timing_ms"], DECISION_CONFIG["max_timing_ms"])),
            reasoning=str(pick("reasoning") or "No specific reason"),
            confidence=_clamp(confidence, 0.0, 1.0),
            suggested_message=str(suggested) if suggested else None,
        )

    @classmethod
    def coerce(cls, value: Union["Decision", Mapping[str, Any], None]) -> "Decision":
        """Normalize whatever a decision service returned; invalid input yields the default."""
        if isinstance(value, Decision):
            return cls.from_payload(value.to_dict())
        if isinstance(value, Mapping):
            return cls.from_payload(value)
        return cls.default("Malformed decision response")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "should_act": self.should_act,
            "action_type": self.action_type.value,
            "priority": self.priority.value,
            "timing_ms": self.timing_ms,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "suggested_message": self.suggested_message,
        }


@dataclass(frozen=True)
class StateAnalysis:
    """A decision together with the snapshot it was made for."""
    state: ConversationState
    decision: Decision
    timestamp: dt.datetime = field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision": self.decision.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "input": self.state.current_input,
        }
