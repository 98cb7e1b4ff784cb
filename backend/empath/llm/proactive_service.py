# empath/llm/proactive_service.py writes the message for a due autonomous action
import logging
from typing import Any, Dict, Optional

from empath.core.config import LLM_CONFIG
from empath.models.conversation_state import ConversationState
from empath.models.decision import ActionType, Decision
from empath.utils.request import Request, send_request_async
from .prompts import build_proactive_messages, build_silence_breaker_messages

logger = logging.getLogger(__name__)


class LLMProactiveMessageService:
    """
    Action handler for the analysis pipeline.

    Called only when a decision to act carries no suggested message. check_in
    decisions get a silence breaker, every other action type a message shaped
    by the emotional context.
    """

    def __init__(self, request: Optional[Request] = None):
        self.request = request or Request.chat(
            LLM_CONFIG["base_url"], LLM_CONFIG["proactive_model"], LLM_CONFIG["api_key"]
        )

    def build_messages(self, decision: Decision, state: ConversationState,
                       emotional_context: Dict[str, Any]):
        if decision.action_type == ActionType.CHECK_IN:
            return build_silence_breaker_messages(state)
        return build_proactive_messages(state, emotional_context)

    async def compose(self, decision: Decision, state: ConversationState,
                      emotional_context: Optional[Dict[str, Any]] = None) -> Optional[str]:
        messages = self.build_messages(decision, state, emotional_context or {})
        content, total_tokens, _ = await send_request_async(messages, self.request, json_mode=False)
        message = (content or "").strip()
        logger.debug(f"Composed {decision.action_type.value} message ({total_tokens} tokens)")
        return message or None

    async def __call__(self, decision: Decision, state: ConversationState,
                       emotional_context: Dict[str, Any]) -> Optional[str]:
        return await self.compose(decision, state, emotional_context)
