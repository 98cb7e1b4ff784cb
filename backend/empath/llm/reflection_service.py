# empath/llm/reflection_service.py emotional reflections from a chat model
import logging
from typing import Optional

from empath.core.config import LLM_CONFIG, PIPELINE_CONFIG
from empath.models.conversation_state import ConversationState
from empath.models.reflection import Reflection
from empath.utils.request import Request, extract_json, send_request_async
from .prompts import build_reflection_messages

logger = logging.getLogger(__name__)


class LLMReflectionService:
    """ReflectionService backed by an OpenAI-compatible chat endpoint."""

    def __init__(self, request: Optional[Request] = None):
        self.request = request or Request.chat(
            LLM_CONFIG["base_url"], LLM_CONFIG["reflection_model"], LLM_CONFIG["api_key"]
        )

    async def reflect(self, state: ConversationState) -> Optional[Reflection]:
        """Return None for drafts too short to read anything into, or for unusable answers."""
        if state.trimmed_length < PIPELINE_CONFIG["min_reflection_chars"]:
            return None
        content, _, _ = await send_request_async(build_reflection_messages(state), self.request)
        reflection = Reflection.from_payload(extract_json(content))
        if reflection is None:
            logger.info("Discarded reflection without content or emotional state")
        return reflection
