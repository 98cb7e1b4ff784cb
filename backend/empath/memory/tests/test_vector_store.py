import asyncio
import json
import math
import time

import numpy as np
import pytest

from empath.core.config import MEMORY_CONFIG
from empath.memory.embeddings import EmbeddingService
from empath.memory.kv_store import InMemoryKeyValueStore
from empath.memory.pivot_index import (
    PivotIndex,
    compute_index_fields,
    cosine_similarity,
    encode_index_value,
    euclidean_distance,
)
from empath.memory.vector_store import VectorMemoryStore
from empath.protocols.memory import EntryKind, MemoryEntry, MemoryType
from empath.utils.exception import ProviderError
from empath.memory.tests.test_data import HASHING_MODEL, MEMORY_CASES


def make_store(kv=None, **kwargs) -> VectorMemoryStore:
    return VectorMemoryStore(
        embedding_service=EmbeddingService(HASHING_MODEL),
        kv_store=kv if kv is not None else InMemoryKeyValueStore(),
        **kwargs,
    )


@pytest.fixture
async def store():
    s = make_store()
    await s._initialize()
    return s


class FailingProvider:
    async def embed(self, text):
        raise ProviderError("quota exceeded")

    def get_dimension(self):
        return 384


async def test_insert_clamps_importance(store):
    high = await store.insert("remember the blue bicycle", MemoryType.FACT, importance=1.7)
    low = await store.insert("remember the red bicycle", MemoryType.FACT, importance=-0.2)
    assert store.get(high).metadata.importance == 1.0
    assert store.get(low).metadata.importance == 0.0


async def test_insert_rejects_empty_content(store):
    with pytest.raises(ValueError):
        await store.insert("   ", MemoryType.FACT)
    assert store.count() == 0


async def test_insert_stores_kind_and_index_fields(store):
    entry_id = await store.insert("hello there", "conversation", kind=EntryKind.USER_MESSAGE)
    entry = store.get(entry_id)
    assert entry.metadata.type == MemoryType.CONVERSATION
    assert entry.metadata.kind == EntryKind.USER_MESSAGE
    assert len(entry.index_fields) == 5
    assert all(len(f) == MEMORY_CONFIG["index_width"] for f in entry.index_fields)


async def test_provider_failure_stores_nothing():
    s = VectorMemoryStore(embedding_service=FailingProvider(), kv_store=InMemoryKeyValueStore())
    with pytest.raises(ProviderError):
        await s.insert("anything at all", MemoryType.FACT)
    assert s.count() == 0


async def test_eviction_keeps_most_important():
    s = make_store(max_entries=3)
    for i, importance in enumerate([0.1, 0.9, 0.5, 0.2, 0.8]):
        await s.insert(f"memory number {i}", MemoryType.FACT, importance=importance)
    assert s.count() == 3
    assert sorted(e.metadata.importance for e in s.all_entries()) == [0.5, 0.8, 0.9]


async def test_eviction_prefers_newer_among_equal_importance():
    s = make_store(max_entries=2)
    first = await s.insert("first note", MemoryType.FACT, importance=0.5)
    await s.insert("second note", MemoryType.FACT, importance=0.5)
    await s.insert("third note", MemoryType.FACT, importance=0.5)
    assert s.count() == 2
    assert s.get(first) is None


async def test_search_finds_itself(store):
    await store.insert("I love hiking in the mountains", MemoryType.FACT)
    results = await store.search("I love hiking in the mountains", limit=1)
    assert len(results) == 1
    assert results[0].similarity == pytest.approx(1.0, abs=1e-5)
    assert results[0].distance == pytest.approx(0.0, abs=1e-5)


async def test_search_ranks_related_memory_first(store):
    for case in MEMORY_CASES:
        await store.insert(case["content"], case["type"], importance=case["importance"])
    results = await store.search("coffee every morning", limit=3, min_similarity=0.0)
    assert results
    assert "coffee" in results[0].entry.content
    similarities = [r.similarity for r in results]
    assert similarities == sorted(similarities, reverse=True)


async def test_search_kaffe_ranks_first(store):
    kaffe = await store.insert("Jag älskar kaffe på morgonen", MemoryType.PREFERENCE)
    await store.insert("Jobbet är stressigt just nu", MemoryType.FACT)
    results = await store.search("kaffe", limit=2, min_similarity=0.0)
    assert results[0].entry.id == kaffe


async def test_search_type_filter_and_limit(store):
    for case in MEMORY_CASES:
        await store.insert(case["content"], case["type"], importance=case["importance"])
    results = await store.search("short answers detail", limit=10, min_similarity=-1.0,
                                 type_filter=MemoryType.PREFERENCE)
    assert len(results) == 2
    assert all(r.entry.metadata.type == MemoryType.PREFERENCE for r in results)
    assert await store.search("anything", limit=0) == []


async def test_duplicate_content_gets_distinct_ids(store):
    a = await store.insert("same words twice", MemoryType.FACT)
    b = await store.insert("same words twice", MemoryType.FACT)
    assert a != b
    assert np.array_equal(store.get(a).embedding, store.get(b).embedding)


async def test_stats(store):
    await store.insert("first fact", MemoryType.FACT, importance=0.1)
    await store.insert("second fact", MemoryType.FACT, importance=0.8)
    await store.insert("a preference", MemoryType.PREFERENCE, importance=0.95)
    stats = store.stats()
    assert stats.total_entries == 3
    assert stats.by_type == {"fact": 2, "preference": 1}
    assert stats.average_importance == pytest.approx(0.6167, abs=1e-3)
    assert stats.oldest_entry <= stats.newest_entry
    assert stats.index_vectors_initialized


async def test_empty_stats(store):
    stats = store.stats()
    assert stats.total_entries == 0
    assert stats.average_importance == 0.0
    assert stats.oldest_entry is None


async def test_delete_and_clear(store):
    entry_id = await store.insert("to be removed", MemoryType.FACT)
    await store.insert("to be kept", MemoryType.FACT)
    assert await store.delete(entry_id)
    assert not await store.delete(entry_id)
    assert store.get(entry_id) is None
    await store.clear()
    assert store.count() == 0


async def test_persistence_round_trip():
    kv = InMemoryKeyValueStore()
    first = make_store(kv)
    await first._initialize()
    entry_id = await first.insert("persist me please", MemoryType.INSIGHT, tags=["a", "b"])

    second = make_store(kv)
    await second._initialize()
    entry = second.get(entry_id)
    assert entry is not None
    assert entry.metadata.tags == ("a", "b")
    assert entry.index_fields == first.get(entry_id).index_fields
    assert second.stats().index_vectors_initialized


async def test_corrupt_storage_loads_empty():
    kv = InMemoryKeyValueStore({MEMORY_CONFIG["storage_key"]: "{not json"})
    s = make_store(kv)
    await s._initialize()
    assert s.count() == 0
    await s.insert("fresh start", MemoryType.FACT)
    assert s.count() == 1
    assert len(json.loads(kv.get(MEMORY_CONFIG["storage_key"]))) == 1


async def test_corrupt_record_is_skipped():
    kv = InMemoryKeyValueStore()
    first = make_store(kv)
    await first.insert("good record one", MemoryType.FACT)
    await first.insert("good record two", MemoryType.FACT)
    records = json.loads(kv.get(MEMORY_CONFIG["storage_key"]))
    records.append({"id": "broken"})
    kv.set(MEMORY_CONFIG["storage_key"], json.dumps(records))

    second = make_store(kv)
    await second._initialize()
    assert second.count() == 2


async def test_invalid_pivots_are_regenerated():
    kv = InMemoryKeyValueStore({MEMORY_CONFIG["index_vectors_key"]: json.dumps([[1.0, 2.0]])})
    s = make_store(kv)
    await s._initialize()
    assert not s.stats().index_vectors_initialized

    await s.insert("trigger pivot generation", MemoryType.FACT)
    pivots = json.loads(kv.get(MEMORY_CONFIG["index_vectors_key"]))
    assert len(pivots) == 5
    assert all(len(p) == 384 for p in pivots)


async def test_concurrent_inserts_never_exceed_capacity():
    s = make_store(max_entries=5)
    await s._initialize()
    observed = []
    writers_done = asyncio.Event()

    async def reader():
        while not writers_done.is_set():
            observed.append(s.count())
            observed.append(len(await s.search("memory number", limit=50, min_similarity=-1.0)))
            await asyncio.sleep(0)

    async def writers():
        await asyncio.gather(*(
            s.insert(f"memory number {i}", MemoryType.FACT, importance=(i % 7) / 7) for i in range(30)
        ))
        writers_done.set()

    await asyncio.gather(reader(), writers())

    assert observed and max(observed) <= 5
    assert s.count() == 5
    assert len({e.id for e in s.all_entries()}) == 5
    assert all(e.metadata.importance >= 5 / 7 for e in s.all_entries())
    assert len(json.loads(s.kv_store.get(MEMORY_CONFIG["storage_key"]))) == 5


class SlowKeyValueStore(InMemoryKeyValueStore):
    def set(self, key, value):
        time.sleep(0.2)
        super().set(key, value)


async def test_slow_storage_does_not_stall_the_event_loop():
    kv = SlowKeyValueStore()
    s = make_store(kv)
    await s._initialize()
    ticks = 0

    async def ticker():
        nonlocal ticks
        while True:
            ticks += 1
            await asyncio.sleep(0.01)

    task = asyncio.create_task(ticker())
    try:
        await s.insert("a slow disk write", MemoryType.FACT)
    finally:
        task.cancel()

    assert ticks >= 10
    assert json.loads(kv.get(MEMORY_CONFIG["storage_key"]))[0]["content"] == "a slow disk write"


async def test_regenerate_index_vectors_reindexes_all(store):
    for case in MEMORY_CASES:
        await store.insert(case["content"], case["type"])
    await store.regenerate_index_vectors()
    assert all(len(e.index_fields) == 5 for e in store.all_entries())
    assert store.stats().index_vectors_initialized


async def test_search_through_pivot_index():
    s = make_store(exact_search_below=0)
    for case in MEMORY_CASES:
        await s.insert(case["content"], case["type"])
    results = await s.search(MEMORY_CASES[1]["content"], limit=1)
    assert len(results) == 1
    assert results[0].entry.content == MEMORY_CASES[1]["content"]


def test_legacy_record_with_kind_in_type():
    record = {
        "id": "old1",
        "content": "hello",
        "embedding": [0.1, 0.2, 0.3],
        "metadata": {"timestamp": "2024-01-01T10:00:00Z", "type": "user_message", "importance": 0.6},
    }
    entry = MemoryEntry.from_dict(record)
    assert entry.metadata.kind == EntryKind.USER_MESSAGE
    assert entry.metadata.type == MemoryType.CONVERSATION
    assert entry.metadata.timestamp.tzinfo is not None


def test_encoding_preserves_numeric_order():
    values = [10.0, 0.5, 2.0, 1.25, 0.0, 123.456789]
    encoded = [encode_index_value(v) for v in values]
    assert all(len(e) == 17 for e in encoded)
    assert sorted(encoded) == [encode_index_value(v) for v in sorted(values)]
    assert encode_index_value(-1.0) == encode_index_value(0.0)
    assert encode_index_value(math.inf) == encode_index_value(0.0)


def test_cosine_similarity_properties():
    a = np.array([1.0, 2.0, 3.0])
    b = np.array([-2.0, 0.5, 1.0])
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))
    assert cosine_similarity(a, a) == pytest.approx(1.0)
    assert cosine_similarity(a, -a) == pytest.approx(-1.0)
    assert cosine_similarity(a, np.zeros(3)) == 0.0
    assert cosine_similarity(a, np.array([1.0, 2.0])) == 0.0
    assert cosine_similarity(a, np.array([np.nan, 1.0, 1.0])) == 0.0


def test_euclidean_distance_mismatch_is_infinite():
    assert euclidean_distance(np.ones(3), np.ones(4)) == math.inf
    assert euclidean_distance(np.zeros(2), np.array([3.0, 4.0])) == pytest.approx(5.0)


def test_pivot_index_window():
    pivots = [np.eye(4)[i] for i in range(4)] + [np.ones(4) / 2]
    near = np.array([1.0, 0.0, 0.0, 0.0])
    far = np.array([0.0, 0.0, 0.0, 5.0])

    class Stub:
        def __init__(self, id, vector):
            self.id = id
            self.index_fields = compute_index_fields(vector, pivots)

    index = PivotIndex([Stub("near", near), Stub("far", far)])
    assert len(index) == 2
    query = [euclidean_distance(near, p) for p in pivots]
    assert index.candidates(query, window=0.003) == {"near"}
