import json

import pytest

import empath.llm.decision_service as decision_module
import empath.llm.proactive_service as proactive_module
import empath.llm.reflection_service as reflection_module
from empath.llm import LLMDecisionService, LLMProactiveMessageService, LLMReflectionService
from empath.llm.prompts import (
    PROACTIVE_SYSTEM_PROMPT,
    SILENCE_BREAKER_SYSTEM_PROMPT,
    build_decision_messages,
    build_reflection_messages,
)
from empath.models.conversation_state import ConversationState, HistoryMessage
from empath.models.decision import ActionType, Decision
from empath.utils.exception import TransientServiceError


def fake_sender(content, calls):
    async def send(messages, request, **kwargs):
        calls.append(messages)
        return content, 42, 10
    return send


def test_prompts_carry_the_draft():
    state = ConversationState(current_input="I'm not sure how to say this")
    for messages in (build_decision_messages(state), build_reflection_messages(state)):
        assert messages[0]["role"] == "system"
        assert "I'm not sure how to say this" in messages[1]["content"]


async def test_decision_service_parses_reply(monkeypatch):
    calls = []
    reply = json.dumps({"shouldAct": True, "actionType": "clarify", "timing": 1200, "confidence": 0.7})
    monkeypatch.setattr(decision_module, "send_request_async", fake_sender(f"```json\n{reply}\n```", calls))
    decision = await LLMDecisionService().decide(ConversationState(current_input="what do you mean"))
    assert decision.should_act
    assert decision.action_type == ActionType.CLARIFY
    assert decision.timing_ms == 1200
    assert len(calls) == 1


async def test_decision_service_raises_on_garbage(monkeypatch):
    monkeypatch.setattr(decision_module, "send_request_async", fake_sender("no idea", []))
    with pytest.raises(TransientServiceError):
        await LLMDecisionService().decide(ConversationState(current_input="hello there"))


async def test_reflection_service(monkeypatch):
    calls = []
    reply = json.dumps({"content": "They seem hopeful", "emotionalState": "hopeful", "emotions": ["🌱"]})
    monkeypatch.setattr(reflection_module, "send_request_async", fake_sender(reply, calls))
    service = LLMReflectionService()

    assert await service.reflect(ConversationState(current_input="ok")) is None
    assert calls == []

    reflection = await service.reflect(ConversationState(current_input="things are looking up lately"))
    assert reflection.emotional_state == "hopeful"
    assert reflection.emotions == ("🌱",)


def act(action_type):
    return Decision.from_payload({"shouldAct": True, "actionType": action_type, "timing": 500})


async def test_proactive_service_uses_emotional_context(monkeypatch):
    calls, options = [], []

    async def send(messages, request, **kwargs):
        calls.append(messages)
        options.append(kwargs)
        return "  That sounds heavy. What's been weighing on you most?  ", 30, 12

    monkeypatch.setattr(proactive_module, "send_request_async", send)
    state = ConversationState(current_input="I can't sleep again")
    message = await LLMProactiveMessageService()(act("support"), state, {"conversation_mood": "anxious"})

    assert message == "That sounds heavy. What's been weighing on you most?"
    assert calls[0][0]["content"] == PROACTIVE_SYSTEM_PROMPT
    assert "anxious" in calls[0][1]["content"]
    assert "I can't sleep again" in calls[0][1]["content"]
    assert options[0]["json_mode"] is False


async def test_check_in_gets_a_silence_breaker(monkeypatch):
    calls = []
    monkeypatch.setattr(proactive_module, "send_request_async", fake_sender("Still there? No rush.", calls))
    now = ConversationState().current_time
    history = tuple(HistoryMessage("user", f"message {i}", now) for i in range(4))
    state = ConversationState(conversation_history=history)

    message = await LLMProactiveMessageService().compose(act("check_in"), state)
    assert message == "Still there? No rush."
    assert calls[0][0]["content"] == SILENCE_BREAKER_SYSTEM_PROMPT
    assert "message 3" in calls[0][1]["content"]
    assert "message 1" not in calls[0][1]["content"]


async def test_blank_proactive_reply_is_nothing_to_say(monkeypatch):
    monkeypatch.setattr(proactive_module, "send_request_async", fake_sender("   ", []))
    message = await LLMProactiveMessageService().compose(act("encourage"), ConversationState(current_input="hm"))
    assert message is None
