"""
Protocol definitions and data structures for empath's memory subsystem.

This file declares the memory categories, the stored record, and the
interfaces of the external collaborators the store depends on (embedding
provider, key-value persistence). Implementations live in `empath/memory/`.

Two category enums exist on purpose:
  - MemoryType is what callers see and filter on (stable across store/search).
  - EntryKind is the storage-level bucket, which also knows transport-level
    subtypes such as user/assistant messages.
The mappings between them are total and explicit (`default_kind`,
`memory_type_for`).
"""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, Union, runtime_checkable

import numpy as np

INDEX_FIELD_COUNT = 5


# ---------- 1. Categories ---------- #
class MemoryType(str, Enum):
    CONVERSATION = "conversation"  # chat turns and rolling context
    REFLECTION   = "reflection"    # emotional reflections about the user
    INSIGHT      = "insight"       # synthesized understanding
    PREFERENCE   = "preference"    # long-term likes and dislikes
    FACT         = "fact"          # facts about the user's life

    @classmethod
    def coerce(cls, value: Union["MemoryType", "EntryKind", str, None]) -> "MemoryType":
        """Accept a MemoryType, an EntryKind or either one's string value."""
        if isinstance(value, MemoryType):
            return value
        if isinstance(value, EntryKind):
            return memory_type_for(value)
        if value is None:
            raise ValueError("memory type is required")
        text = str(value).strip().lower()
        try:
            return cls(text)
        except ValueError:
            return memory_type_for(EntryKind(text))


class EntryKind(str, Enum):
    USER_MESSAGE         = "user_message"
    ASSISTANT_MESSAGE    = "assistant_message"
    CONVERSATION_CONTEXT = "conversation_context"
    MEMORY               = "memory"


_KIND_TO_TYPE = {
    EntryKind.USER_MESSAGE: MemoryType.CONVERSATION,
    EntryKind.ASSISTANT_MESSAGE: MemoryType.CONVERSATION,
    EntryKind.CONVERSATION_CONTEXT: MemoryType.CONVERSATION,
    EntryKind.MEMORY: MemoryType.FACT,
}

_TYPE_TO_KIND = {
    MemoryType.CONVERSATION: EntryKind.CONVERSATION_CONTEXT,
    MemoryType.REFLECTION: EntryKind.MEMORY,
    MemoryType.INSIGHT: EntryKind.MEMORY,
    MemoryType.PREFERENCE: EntryKind.MEMORY,
    MemoryType.FACT: EntryKind.MEMORY,
}


def memory_type_for(kind: EntryKind) -> MemoryType:
    """Fold a storage-level kind into the public category."""
    return _KIND_TO_TYPE[kind]


def default_kind(memory_type: MemoryType) -> EntryKind:
    """Storage bucket used when a caller supplies only the public category."""
    return _TYPE_TO_KIND[memory_type]


# ---------- 2. Stored record ---------- #
def _parse_timestamp(value: Any) -> dt.datetime:
    if isinstance(value, dt.datetime):
        stamp = value
    else:
        stamp = dt.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=dt.timezone.utc)
    return stamp


@dataclass(frozen=True)
class MemoryMetadata:
    timestamp: dt.datetime
    type: MemoryType
    kind: EntryKind
    importance: float
    tags: Tuple[str, ...] = ()
    context: Optional[str] = None


@dataclass(frozen=True, eq=False)
class MemoryEntry:
    """
    A single stored memory.

    - embedding: float32 vector produced by the embedding provider.
    - index_fields: five fixed-width strings, the encoded Euclidean distance
      from the embedding to each reference vector. They must always match the
      current reference vectors; see VectorMemoryStore.regenerate_index_vectors.
    """
    id: str
    content: str
    embedding: np.ndarray
    metadata: MemoryMetadata
    index_fields: Tuple[str, ...] = field(default_factory=tuple)

    def with_index_fields(self, index_fields: Sequence[str]) -> "MemoryEntry":
        return MemoryEntry(
            id=self.id,
            content=self.content,
            embedding=self.embedding,
            metadata=self.metadata,
            index_fields=tuple(index_fields),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize into a JSON-compatible dict for the key-value store."""
        data: Dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "embedding": [float(x) for x in self.embedding],
            "metadata": {
                "timestamp": self.metadata.timestamp.isoformat(),
                "type": self.metadata.type.value,
                "kind": self.metadata.kind.value,
                "importance": self.metadata.importance,
                "tags": list(self.metadata.tags),
                "context": self.metadata.context,
            },
        }
        for i, value in enumerate(self.index_fields):
            data[f"idx{i}"] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryEntry":
        """Rebuild an entry; raises KeyError/ValueError/TypeError on a corrupt record."""
        meta = data["metadata"]
        raw_type = meta["type"]
        # records written before `kind` existed carried the storage kind in `type`
        if raw_type in EntryKind._value2member_map_:
            kind = EntryKind(raw_type)
            memory_type = memory_type_for(kind)
        else:
            memory_type = MemoryType(raw_type)
            kind = EntryKind(meta["kind"]) if meta.get("kind") else default_kind(memory_type)

        embedding = np.asarray(data["embedding"], dtype=np.float32)
        if embedding.ndim != 1 or embedding.size == 0:
            raise ValueError(f"invalid embedding shape {embedding.shape}")

        index_fields = tuple(str(data[f"idx{i}"]) for i in range(INDEX_FIELD_COUNT) if f"idx{i}" in data)
        return cls(
            id=str(data["id"]),
            content=str(data["content"]),
            embedding=embedding,
            metadata=MemoryMetadata(
                timestamp=_parse_timestamp(meta["timestamp"]),
                type=memory_type,
                kind=kind,
                importance=max(0.0, min(1.0, float(meta.get("importance", 0.5)))),
                tags=tuple(str(t) for t in meta.get("tags") or ()),
                context=meta.get("context"),
            ),
            index_fields=index_fields,
        )

    def to_public_dict(self) -> Dict[str, Any]:
        """API view without the raw vector."""
        return {
            "id": self.id,
            "content": self.content,
            "type": self.metadata.type.value,
            "kind": self.metadata.kind.value,
            "importance": self.metadata.importance,
            "tags": list(self.metadata.tags),
            "context": self.metadata.context,
            "timestamp": self.metadata.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class SearchResult:
    entry: MemoryEntry
    similarity: float
    distance: float


@dataclass(frozen=True)
class MemoryStats:
    total_entries: int
    by_type: Dict[str, int]
    by_kind: Dict[str, int]
    oldest_entry: Optional[dt.datetime]
    newest_entry: Optional[dt.datetime]
    average_importance: float
    index_vectors_initialized: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "by_type": dict(self.by_type),
            "by_kind": dict(self.by_kind),
            "oldest_entry": self.oldest_entry.isoformat() if self.oldest_entry else None,
            "newest_entry": self.newest_entry.isoformat() if self.newest_entry else None,
            "average_importance": self.average_importance,
            "index_vectors_initialized": self.index_vectors_initialized,
        }


# ---------- 3. Collaborator interfaces ---------- #
@runtime_checkable
class EmbeddingProvider(Protocol):
    """Maps text to a fixed-length vector. Raises ProviderError on failure."""

    async def embed(self, text: str) -> np.ndarray:
        ...

    def get_dimension(self) -> int:
        ...


@runtime_checkable
class KeyValueStore(Protocol):
    """String-keyed persistence supplied by the host environment."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryWriter(Protocol):
    async def insert(
        self,
        content: str,
        memory_type: Union[MemoryType, str],
        importance: float = 0.5,
        tags: Sequence[str] = (),
        context: Optional[str] = None,
        *,
        kind: Optional[EntryKind] = None,
    ) -> str:
        ...

    async def delete(self, entry_id: str) -> bool:
        ...


class MemoryReader(Protocol):
    async def search(
        self,
        query: str,
        limit: int = 5,
        min_similarity: float = 0.3,
        type_filter: Optional[MemoryType] = None,
    ) -> List[SearchResult]:
        ...

    def get(self, entry_id: str) -> Optional[MemoryEntry]:
        ...

    def stats(self) -> MemoryStats:
        ...


class MemoryManager(MemoryWriter, MemoryReader, Protocol):
    """Combined read/write facade the pipeline and API depend on."""

    async def regenerate_index_vectors(self) -> None:
        ...

    async def clear_index_vectors(self) -> None:
        ...
