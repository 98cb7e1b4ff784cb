# empath/memory/vector_store.py pivot-indexed vector memory store
"""
Implementation of the memory subsystem on top of a key-value store.

This module provides the concrete MemoryManager defined in
empath/protocols/memory.py. Entries are kept in memory as an immutable tuple
and persisted as one JSON document; similarity search narrows candidates
through the five-pivot index (see pivot_index.py) before scoring exactly.

Concurrency:
- insert, delete, eviction and pivot regeneration run under one asyncio.Lock
- every write publishes a fresh view (entries, id map, pivot index), so a
  search always reads one consistent snapshot without taking the lock
- persisted documents are written from a worker thread while the lock is
  held
"""

from __future__ import annotations

import asyncio
import datetime as dt
import json
import logging
import uuid
from collections import Counter
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np

from empath.core.config import INDEX_SEED_TEXTS, MEMORY_CONFIG, VECTORIZATION_CONFIG
from empath.protocols.memory import (
    INDEX_FIELD_COUNT,
    EmbeddingProvider,
    EntryKind,
    KeyValueStore,
    MemoryEntry,
    MemoryManager,
    MemoryMetadata,
    MemoryStats,
    MemoryType,
    SearchResult,
    default_kind,
)
from empath.utils.exception import StorageCorruption, print_warning
from .embeddings import get_embedding_service
from .kv_store import FileKeyValueStore
from .pivot_index import PivotIndex, compute_index_fields, cosine_similarity, euclidean_distance

logger = logging.getLogger(__name__)


class _StoreView(NamedTuple):
    entries: Tuple[MemoryEntry, ...]
    by_id: Dict[str, MemoryEntry]
    index: PivotIndex


def _clamp_importance(value: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.5
    if number != number:
        return 0.5
    return max(0.0, min(1.0, number))


def _eviction_order(entries: Sequence[MemoryEntry]) -> List[MemoryEntry]:
    """Most important first, newest first among equals."""
    return sorted(
        entries,
        key=lambda e: (e.metadata.importance, e.metadata.timestamp),
        reverse=True,
    )


class VectorMemoryStore:
    """
    Memory store with pivot-indexed approximate search.

    - insert: embed, index against the five pivots, append, evict over capacity
    - search: pivot range filter, then exact cosine over the candidates only
    - persistence: entries under MEMORY_CONFIG["storage_key"], pivots under
      MEMORY_CONFIG["index_vectors_key"]
    """

    def __init__(
        self,
        embedding_service: Optional[EmbeddingProvider] = None,
        kv_store: Optional[KeyValueStore] = None,
        max_entries: int = MEMORY_CONFIG["max_entries"],
        exact_search_below: int = MEMORY_CONFIG["exact_search_below"],
        index_window: float = MEMORY_CONFIG["index_window"],
    ):
        """
        Args:
            embedding_service: text -> vector provider
            kv_store: persistence backend; defaults to a file store in MEMORY_CONFIG["persist_dir"]
            max_entries: capacity before eviction kicks in
            exact_search_below: stores smaller than this skip the pivot filter
            index_window: relative tolerance of the pivot distance window
        """
        self.embedding_service = embedding_service or get_embedding_service()
        self.kv_store = kv_store if kv_store is not None else FileKeyValueStore(MEMORY_CONFIG["persist_dir"])
        self.max_entries = max_entries
        self.exact_search_below = exact_search_below
        self.index_window = index_window

        self._lock = asyncio.Lock()
        self._pivots: Optional[Tuple[np.ndarray, ...]] = None
        self._view = _StoreView((), {}, PivotIndex(()))

    # ---------- persistence ---------- #
    async def _initialize(self) -> None:
        """Load entries and pivots from the key-value store."""
        async with self._lock:
            self._publish(self._load_entries())
            self._pivots = self._load_pivots()
            if self._pivots is not None and any(
                len(e.index_fields) != INDEX_FIELD_COUNT for e in self._view.entries
            ):
                await self._reindex_locked()
        logger.info(f"Loaded {len(self._view.entries)} memories, pivots {'ready' if self._pivots else 'pending'}")

    @staticmethod
    def _decode_records(raw: str) -> List[Any]:
        """Raises StorageCorruption when the persisted document is not a JSON list."""
        try:
            records = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise StorageCorruption(f"persisted memories unreadable: {e}") from e
        if not isinstance(records, list):
            raise StorageCorruption("persisted memories are not a list")
        return records

    def _load_entries(self) -> List[MemoryEntry]:
        raw = self.kv_store.get(MEMORY_CONFIG["storage_key"])
        if not raw:
            return []
        try:
            records = self._decode_records(raw)
        except StorageCorruption as e:
            print_warning(self._load_entries, f"{e}, starting empty", "high")
            return []

        entries, seen = [], set()
        skipped = 0
        for record in records:
            try:
                entry = MemoryEntry.from_dict(record)
            except (KeyError, ValueError, TypeError) as e:
                skipped += 1
                logger.debug(f"Skipping corrupt memory record: {e}")
                continue
            if entry.id in seen:
                skipped += 1
                continue
            seen.add(entry.id)
            entries.append(entry)
        if skipped:
            print_warning(self._load_entries, f"skipped {skipped} corrupt memory records", "medium")
        return entries

    def _load_pivots(self) -> Optional[Tuple[np.ndarray, ...]]:
        raw = self.kv_store.get(MEMORY_CONFIG["index_vectors_key"])
        if not raw:
            return None
        try:
            vectors = tuple(np.asarray(v, dtype=np.float32) for v in json.loads(raw))
        except (TypeError, ValueError) as e:
            print_warning(self._load_pivots, f"reference vectors unreadable, regenerating: {e}")
            return None
        if not self._valid_pivots(vectors):
            print_warning(self._load_pivots, "reference vectors invalid, regenerating")
            return None
        return vectors

    def _valid_pivots(self, vectors: Sequence[np.ndarray]) -> bool:
        if len(vectors) != INDEX_FIELD_COUNT:
            return False
        dimension = self.embedding_service.get_dimension()
        return all(
            v.ndim == 1 and v.size == dimension and bool(np.all(np.isfinite(v)))
            for v in vectors
        )

    def _write_entries(self, entries: Tuple[MemoryEntry, ...]) -> None:
        payload = json.dumps([e.to_dict() for e in entries], ensure_ascii=False)
        self.kv_store.set(MEMORY_CONFIG["storage_key"], payload)

    async def _persist_entries(self, entries: Sequence[MemoryEntry]) -> None:
        """Serialize and write off the event loop; callers hold the lock so writes land in order."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._write_entries, tuple(entries))
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to persist memories: {e}")

    async def _persist_pivots(self, pivots: Sequence[np.ndarray]) -> None:
        payload = json.dumps([[float(x) for x in v] for v in pivots])
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.kv_store.set, MEMORY_CONFIG["index_vectors_key"], payload)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to persist reference vectors: {e}")

    def _publish(self, entries: Sequence[MemoryEntry]) -> None:
        entries = tuple(entries)
        self._view = _StoreView(entries, {e.id: e for e in entries}, PivotIndex(entries))

    # ---------- reference vectors ---------- #
    async def _ensure_pivots_locked(self) -> Tuple[np.ndarray, ...]:
        """Generate the pivots once; caller holds the lock."""
        if self._pivots is None:
            vectors = []
            for text in INDEX_SEED_TEXTS:
                vectors.append(np.asarray(await self.embedding_service.embed(text), dtype=np.float32))
            self._pivots = tuple(vectors)
            await self._persist_pivots(self._pivots)
            await self._reindex_locked()
            logger.info("Generated reference vectors")
        return self._pivots

    async def _reindex_locked(self) -> None:
        """Recompute every entry's index fields against the current pivots."""
        entries = [e.with_index_fields(compute_index_fields(e.embedding, self._pivots)) for e in self._view.entries]
        self._publish(entries)
        if entries:
            await self._persist_entries(entries)
            logger.info(f"Recomputed index fields for {len(entries)} memories")

    async def regenerate_index_vectors(self) -> None:
        """Re-embed the seed texts and recompute all index fields, atomically with writes."""
        async with self._lock:
            self._pivots = None
            await self._ensure_pivots_locked()

    async def clear_index_vectors(self) -> None:
        """Drop the pivots; they are regenerated on the next insert or search."""
        async with self._lock:
            self._pivots = None
            self.kv_store.remove(MEMORY_CONFIG["index_vectors_key"])

    # ---------- writes ---------- #
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
        """
        Store a new memory and return its id.

        Raises:
            ValueError: empty content or unknown memory type
            ProviderError: the embedding could not be produced; nothing is stored
        """
        if not content or not content.strip():
            raise ValueError("memory content must not be empty")
        memory_type = MemoryType.coerce(memory_type)
        if kind is None:
            kind = default_kind(memory_type)

        embedding = np.asarray(await self.embedding_service.embed(content), dtype=np.float32)

        async with self._lock:
            pivots = await self._ensure_pivots_locked()
            entry = MemoryEntry(
                id=uuid.uuid4().hex,
                content=content,
                embedding=embedding,
                metadata=MemoryMetadata(
                    timestamp=dt.datetime.now(dt.timezone.utc),
                    type=memory_type,
                    kind=kind,
                    importance=_clamp_importance(importance),
                    tags=tuple(str(t) for t in tags),
                    context=context,
                ),
                index_fields=compute_index_fields(embedding, pivots),
            )
            entries = list(self._view.entries) + [entry]
            if len(entries) > self.max_entries:
                evicted = len(entries) - self.max_entries
                entries = _eviction_order(entries)[:self.max_entries]
                logger.info(f"Capacity {self.max_entries} exceeded, evicted {evicted} memories")
            self._publish(entries)
            await self._persist_entries(entries)

        logger.debug(f"Stored memory {entry.id} ({memory_type.value}/{kind.value})")
        return entry.id

    async def delete(self, entry_id: str) -> bool:
        async with self._lock:
            if entry_id not in self._view.by_id:
                return False
            entries = [e for e in self._view.entries if e.id != entry_id]
            self._publish(entries)
            await self._persist_entries(entries)
        return True

    async def clear(self) -> None:
        """Remove all memories; the pivots stay valid."""
        async with self._lock:
            self._publish(())
            self.kv_store.remove(MEMORY_CONFIG["storage_key"])
        logger.info("All memories cleared")

    # ---------- reads ---------- #
    async def search(
        self,
        query: str,
        limit: int = 5,
        min_similarity: float = MEMORY_CONFIG["default_min_similarity"],
        type_filter: Optional[Union[MemoryType, str]] = None,
    ) -> List[SearchResult]:
        """
        Return up to `limit` memories most similar to `query`.

        Results are ordered by similarity, ties broken by importance.
        Raises ProviderError when the query cannot be embedded.
        """
        if limit <= 0:
            return []
        wanted_type = MemoryType.coerce(type_filter) if type_filter is not None else None
        query_vector = np.asarray(await self.embedding_service.embed(query), dtype=np.float32)

        pivots = self._pivots
        if pivots is None:
            async with self._lock:
                pivots = await self._ensure_pivots_locked()
        view = self._view

        if len(view.entries) < self.exact_search_below:
            candidates = view.entries
        else:
            query_distances = [euclidean_distance(query_vector, p) for p in pivots]
            ids = view.index.candidates(query_distances, self.index_window)
            candidates = tuple(view.by_id[i] for i in ids if i in view.by_id)
            logger.debug(f"Pivot filter kept {len(candidates)} of {len(view.entries)} memories")

        results = []
        for entry in candidates:
            if wanted_type is not None and entry.metadata.type != wanted_type:
                continue
            similarity = cosine_similarity(query_vector, entry.embedding)
            if similarity < min_similarity:
                continue
            results.append(SearchResult(
                entry=entry,
                similarity=similarity,
                distance=euclidean_distance(query_vector, entry.embedding),
            ))

        results.sort(key=lambda r: (r.similarity, r.entry.metadata.importance), reverse=True)
        return results[:limit]

    def get(self, entry_id: str) -> Optional[MemoryEntry]:
        return self._view.by_id.get(entry_id)

    def all_entries(self) -> Tuple[MemoryEntry, ...]:
        return self._view.entries

    def count(self) -> int:
        return len(self._view.entries)

    def stats(self) -> MemoryStats:
        entries = self._view.entries
        timestamps = [e.metadata.timestamp for e in entries]
        return MemoryStats(
            total_entries=len(entries),
            by_type=dict(Counter(e.metadata.type.value for e in entries)),
            by_kind=dict(Counter(e.metadata.kind.value for e in entries)),
            oldest_entry=min(timestamps) if timestamps else None,
            newest_entry=max(timestamps) if timestamps else None,
            average_importance=(
                sum(e.metadata.importance for e in entries) / len(entries) if entries else 0.0
            ),
            index_vectors_initialized=self._pivots is not None,
        )


# Helper function to get or create the shared memory manager
_default_memory_manager: Optional[VectorMemoryStore] = None


async def get_memory_manager(
    persist_dir: Optional[str] = None,
    embedding_model_key: Optional[str] = None,
) -> MemoryManager:
    """
    Get or create the default memory manager.

    Args:
        persist_dir: directory for the file-backed key-value store
        embedding_model_key: key into VECTORIZATION_CONFIG["models"]

    Returns:
        A loaded VectorMemoryStore, typed as the MemoryManager protocol.
    """
    global _default_memory_manager

    if embedding_model_key is None:
        embedding_model_key = VECTORIZATION_CONFIG['default_model']
    model_name = VECTORIZATION_CONFIG['models'][embedding_model_key]['model_name']

    create_new = _default_memory_manager is None
    if not create_new and _default_memory_manager.embedding_service.model_config.get('model_name') != model_name:
        logger.info(f"Embedding model switched to '{embedding_model_key}', rebuilding memory manager")
        create_new = True

    if create_new:
        embedding_service = get_embedding_service(model_key=embedding_model_key, force_new=True)
        _default_memory_manager = VectorMemoryStore(
            embedding_service=embedding_service,
            kv_store=FileKeyValueStore(persist_dir or MEMORY_CONFIG["persist_dir"]),
        )
        await _default_memory_manager._initialize()

    return _default_memory_manager
