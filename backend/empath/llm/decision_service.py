# empath/llm/decision_service.py should-I-act decisions from a chat model
import logging
from typing import Optional

from empath.core.config import LLM_CONFIG
from empath.models.conversation_state import ConversationState
from empath.models.decision import Decision
from empath.utils.request import Request, extract_json, send_request_async
from .prompts import build_decision_messages

logger = logging.getLogger(__name__)


class LLMDecisionService:
    """
    DecisionService backed by an OpenAI-compatible chat endpoint.

    Transport and parsing failures raise TransientServiceError; the pipeline
    turns those into Decision.default().
    """

    def __init__(self, request: Optional[Request] = None):
        self.request = request or Request.chat(
            LLM_CONFIG["base_url"], LLM_CONFIG["decision_model"], LLM_CONFIG["api_key"]
        )

    async def decide(self, state: ConversationState) -> Decision:
        content, total_tokens, _ = await send_request_async(build_decision_messages(state), self.request)
        decision = Decision.from_payload(extract_json(content))
        logger.debug(
            f"Decision for '{state.current_input[:30]}': act={decision.should_act} "
            f"{decision.action_type.value} ({total_tokens} tokens)"
        )
        return decision
