"""
Interfaces of the services the pipeline drives.

Each takes an immutable ConversationState. The decision and reflection
services may return either the typed model or a raw mapping straight from
the LLM; the pipeline normalizes both through Decision.coerce /
Reflection.coerce, so a malformed answer is handled exactly like a failed call.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Protocol, Union, runtime_checkable

from empath.models.conversation_state import ConversationState
from empath.models.decision import Decision
from empath.models.reflection import Reflection


@runtime_checkable
class DecisionService(Protocol):
    async def decide(self, state: ConversationState) -> Union[Decision, Mapping[str, Any]]:
        ...  # raises TransientServiceError on transport failure


@runtime_checkable
class ReflectionService(Protocol):
    async def reflect(self, state: ConversationState) -> Optional[Union[Reflection, Mapping[str, Any]]]:
        ...  # None means "nothing to reflect on right now"


@runtime_checkable
class ProactiveMessageService(Protocol):
    async def __call__(self, decision: Decision, state: ConversationState,
                       emotional_context: Dict[str, Any]) -> Optional[str]:
        ...  # the outgoing text for a due action without a suggested message
