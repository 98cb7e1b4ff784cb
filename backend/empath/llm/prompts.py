# empath/llm/prompts.py prompt text for the decision and reflection services
import json
from typing import Any, Dict, List

from empath.models.conversation_state import ConversationState
from empath.models.decision import ActionType, Priority
from empath.state.typing_analysis import describe_typing_pattern

DECISION_SYSTEM_PROMPT = (
    "You analyze human communication and emotions in a live chat. "
    "Always answer with valid JSON in the requested format."
)

REFLECTION_SYSTEM_PROMPT = (
    "You are an emotionally intelligent assistant that reads the user's feelings in real time. "
    "Always answer with valid JSON in the requested format. Never use markdown code blocks."
)

_DECISION_FORMAT = {
    "shouldAct": False,
    "actionType": "|".join(a.value for a in ActionType),
    "priority": "|".join(p.value for p in Priority),
    "timing": 2000,
    "reasoning": "why",
    "confidence": 0.5,
    "suggestedMessage": "optional message to send",
}

_REFLECTION_FORMAT = {
    "content": "one or two empathetic sentences about how the user seems to feel",
    "emotions": ["2-4 emoji"],
    "emotionalState": "short label",
    "valence": "positive|negative|neutral|mixed",
    "intensity": 0.5,
    "userNeeds": ["what the user may need"],
    "memoryAction": {
        "shouldSave": False,
        "content": "fact worth remembering",
        "type": "conversation|reflection|insight|preference|fact",
        "importance": 0.5,
        "tags": [],
        "reasoning": "why",
    },
}


def _history_lines(state: ConversationState, limit: int = 10) -> str:
    lines = [f"{m.role}: {m.content}" for m in state.conversation_history[-limit:]]
    return "\n".join(lines) or "(no messages yet)"


def _snapshot(state: ConversationState) -> str:
    return json.dumps(state.summary(), ensure_ascii=False, indent=2)


def build_decision_messages(state: ConversationState) -> List[Dict[str, Any]]:
    prompt = (
        "Decide whether the assistant should say something on its own initiative right now.\n\n"
        f"Recent conversation:\n{_history_lines(state)}\n\n"
        f"What the user is typing: \"{state.current_input}\"\n\n"
        f"Typing signals:\n- {describe_typing_pattern(state.typing_pattern)}\n\n"
        f"Context:\n{_snapshot(state)}\n\n"
        "timing is the delay in milliseconds before acting (500-10000).\n"
        f"Answer with JSON only:\n{json.dumps(_DECISION_FORMAT, indent=2)}"
    )
    return [
        {"role": "system", "content": DECISION_SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]


def build_reflection_messages(state: ConversationState) -> List[Dict[str, Any]]:
    prompt = (
        "Reflect on the user's emotional state while they type.\n\n"
        f"Recent conversation:\n{_history_lines(state, limit=6)}\n\n"
        f"Current draft: \"{state.current_input}\"\n\n"
        f"Typing signals:\n- {describe_typing_pattern(state.typing_pattern)}\n\n"
        f"Earlier emotional readings:\n{json.dumps([e.to_dict() for e in state.emotional_history[-5:]], ensure_ascii=False)}\n\n"
        "Set memoryAction.shouldSave only for information worth keeping long-term.\n"
        f"Answer with JSON only:\n{json.dumps(_REFLECTION_FORMAT, indent=2)}"
    )
    return [
        {"role": "system", "content": REFLECTION_SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]


PROACTIVE_SYSTEM_PROMPT = (
    "You are a warm, emotionally aware friend in a chat. Write a short natural message "
    "of at most two or three sentences. Let the emotional context shape your tone but never "
    "mention it directly. End with a gentle open question. Answer with the message text only."
)

SILENCE_BREAKER_SYSTEM_PROMPT = (
    "The user has gone quiet. Write one or two sentences that gently invite them to continue "
    "with an open question, and let them know this is a safe and private place to talk. "
    "Answer with the message text only."
)


def build_proactive_messages(state: ConversationState, emotional_context: Dict[str, Any]) -> List[Dict[str, Any]]:
    prompt = (
        f"Recent conversation:\n{_history_lines(state, limit=6)}\n\n"
        f"What the user is typing: \"{state.current_input}\"\n\n"
        f"Emotional context (mood, trend, needs):\n{json.dumps(emotional_context, ensure_ascii=False)}\n\n"
        "Write the message you would send now."
    )
    return [
        {"role": "system", "content": PROACTIVE_SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]


def build_silence_breaker_messages(state: ConversationState) -> List[Dict[str, Any]]:
    prompt = (
        f"Last messages:\n{_history_lines(state, limit=2)}\n\n"
        "Write the message you would send now."
    )
    return [
        {"role": "system", "content": SILENCE_BREAKER_SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]
