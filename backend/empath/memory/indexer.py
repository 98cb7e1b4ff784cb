# empath/memory/indexer.py indexes chat turns and rolling context into the memory store
from __future__ import annotations

import datetime as dt
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from empath.core.config import MEMORY_CONFIG
from empath.models.conversation_state import HistoryMessage
from empath.protocols.memory import EntryKind, MemoryManager, MemoryType
from empath.utils.exception import ProviderError, print_warning

logger = logging.getLogger(__name__)

EMOTIONAL_KEYWORDS = (
    "feel", "feeling", "happy", "sad", "angry", "afraid", "worried", "stressed",
    "anxious", "glad", "disappointed", "frustrated", "grateful", "love", "hate",
)
PERSONAL_KEYWORDS = (
    "my name", "i live", "i work", "i study", "family", "friends", "hobby",
    "i like", "i think", "dream", "planning", "i want", "i need",
)

# (tag, pattern) pairs checked against the lowercased message
_TAG_RULES = (
    ("positive_emotion", re.compile(r"\b(glad|happy|pleased|good|great)\b")),
    ("negative_emotion", re.compile(r"\b(sad|angry|afraid|worried|stressed|bad)\b")),
    ("emotions", re.compile(r"\b(feel|feeling|feelings|mood)\b")),
    ("work", re.compile(r"\b(work|job|working|office|boss)\b")),
    ("family", re.compile(r"\b(family|parents|children|kids|siblings)\b")),
    ("relationships", re.compile(r"\b(friends|friend|partner|relationship)\b")),
    ("health", re.compile(r"\b(health|sick|ill|body|sleep)\b")),
    ("education", re.compile(r"\b(school|studies|study|course|learn)\b")),
    ("question", re.compile(r"\b(why|how|what|when|where|who)\b")),
    ("name", re.compile(r"\b(name|called)\b")),
    ("home", re.compile(r"\b(live|home|address)\b")),
    ("age", re.compile(r"\b(age|years old|old)\b")),
)


def message_importance(content: str, role: str) -> float:
    """Heuristic importance of a chat message in [0, 1]."""
    importance = 0.5
    if len(content) > 100:
        importance += 0.1
    if len(content) > 300:
        importance += 0.1
    if "?" in content:
        importance += 0.1

    lowered = content.lower()
    if any(k in lowered for k in EMOTIONAL_KEYWORDS):
        importance += 0.2
    if any(k in lowered for k in PERSONAL_KEYWORDS):
        importance += 0.2
    if role == "user":
        importance += 0.1
    return min(1.0, importance)


def extract_tags(content: str) -> List[str]:
    lowered = content.lower()
    tags = [tag for tag, pattern in _TAG_RULES if pattern.search(lowered)]
    if "?" in content and "question" not in tags:
        tags.append("question")
    return tags


class ConversationIndexer:
    """Writes chat messages and periodic context summaries into a MemoryManager."""

    def __init__(self, memory: MemoryManager):
        self.memory = memory

    async def index_message(self, message: HistoryMessage) -> Optional[str]:
        """Index one user or assistant message; blank messages are skipped."""
        if not message.content.strip():
            return None
        kind = EntryKind.USER_MESSAGE if message.role == "user" else EntryKind.ASSISTANT_MESSAGE
        entry_id = await self.memory.insert(
            message.content,
            MemoryType.CONVERSATION,
            importance=message_importance(message.content, message.role),
            tags=extract_tags(message.content),
            context=f"{message.role.capitalize()} message from {message.timestamp.isoformat()}",
            kind=kind,
        )
        logger.debug(f"Indexed {kind.value} {entry_id}")
        return entry_id

    async def index_conversation_context(self, messages: Sequence[HistoryMessage]) -> Optional[str]:
        """Store a summary of the most recent messages; needs at least two."""
        if len(messages) < 2:
            return None
        recent = list(messages)[-MEMORY_CONFIG["context_window_messages"]:]
        summary = "\n".join(f"{m.role}: {m.content}" for m in recent)

        tags = ["conversation", "context"]
        if any(m.role == "user" for m in recent):
            tags.append("user_interaction")
        if any(m.role == "assistant" for m in recent):
            tags.append("assistant_response")

        return await self.memory.insert(
            summary,
            MemoryType.CONVERSATION,
            importance=0.7,
            tags=tags,
            context=f"Conversation context from {recent[0].timestamp.isoformat()} to {recent[-1].timestamp.isoformat()}",
            kind=EntryKind.CONVERSATION_CONTEXT,
        )

    async def search_relevant_context(self, user_message: str, limit: int = 3) -> Dict[str, Any]:
        """
        Find older memories related to a message.

        Memories from the last hour are left out since they are still in the
        visible conversation. Returns {"relevant_memories": [...], "context_summary": str}.
        """
        try:
            results = await self.memory.search(
                user_message,
                limit=limit * 2,
                min_similarity=MEMORY_CONFIG["context_min_similarity"],
            )
        except ProviderError as e:
            print_warning(self.search_relevant_context, e, "low")
            return {"relevant_memories": [], "context_summary": ""}
        cutoff = dt.datetime.now(dt.timezone.utc) - dt.timedelta(seconds=MEMORY_CONFIG["context_min_age_s"])
        relevant = [r for r in results if r.entry.metadata.timestamp < cutoff][:limit]

        memories = [
            {
                "content": r.entry.content,
                "similarity": r.similarity,
                "type": r.entry.metadata.type.value,
                "timestamp": r.entry.metadata.timestamp.isoformat(),
            }
            for r in relevant
        ]
        if memories:
            average = sum(m["similarity"] for m in memories) / len(memories)
            summary = f"Found {len(memories)} relevant context memories with average similarity {average:.2f}"
        else:
            summary = "No relevant context found"
        return {"relevant_memories": memories, "context_summary": summary}
