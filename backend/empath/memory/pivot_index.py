# empath/memory/pivot_index.py distance encoding and the five-pivot range index
"""
Approximate candidate selection for the vector store.

Every entry stores its Euclidean distance to each of five reference vectors
("pivots") as a fixed-width string. By the triangle inequality, entries close
to a query are at a similar distance from every pivot as the query is, so a
narrow distance window per pivot selects likely neighbours without comparing
against every stored vector. The window is a heuristic: recall is
best-effort, and VectorMemoryStore scans small stores exactly instead.
"""
from __future__ import annotations

import bisect
import math
from typing import Iterable, List, Sequence, Set, Tuple

import numpy as np

from empath.core.config import MEMORY_CONFIG
from empath.protocols.memory import INDEX_FIELD_COUNT, MemoryEntry


def _usable(vector: np.ndarray) -> bool:
    return vector.ndim == 1 and vector.size > 0 and bool(np.all(np.isfinite(vector)))


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity in [-1, 1]; 0.0 for mismatched, empty, zero or non-finite vectors."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape or not _usable(a) or not _usable(b):
        return 0.0
    norm = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if norm == 0.0 or not math.isfinite(norm):
        return 0.0
    similarity = float(np.dot(a, b)) / norm
    if not math.isfinite(similarity):
        return 0.0
    return max(-1.0, min(1.0, similarity))


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    """Euclidean distance; +inf when the vectors cannot be compared."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape or not _usable(a) or not _usable(b):
        return math.inf
    return float(np.linalg.norm(a - b))


def encode_index_value(distance: float, width: int = MEMORY_CONFIG["index_width"]) -> str:
    """
    Encode a distance as a zero-padded fixed-width decimal string.

    Lexicographic order of the result equals numeric order of the input for
    every value that fits the width. Negative and non-finite values encode as 0.
    """
    if not math.isfinite(distance) or distance < 0:
        distance = 0.0
    return f"{distance:0{width}.6f}"


def compute_index_fields(embedding: np.ndarray, pivots: Sequence[np.ndarray]) -> Tuple[str, ...]:
    return tuple(encode_index_value(euclidean_distance(embedding, pivot)) for pivot in pivots)


class PivotIndex:
    """
    Immutable per-pivot sorted lists of (index field, entry id).

    Built once per published entry set; a range query is a pair of bisects per
    pivot instead of a scan over all entries.
    """

    def __init__(self, entries: Iterable[MemoryEntry]):
        columns: List[List[Tuple[str, str]]] = [[] for _ in range(INDEX_FIELD_COUNT)]
        for entry in entries:
            if len(entry.index_fields) != INDEX_FIELD_COUNT:
                continue
            for i, value in enumerate(entry.index_fields):
                columns[i].append((value, entry.id))
        for column in columns:
            column.sort()
        self._keys = [[value for value, _ in column] for column in columns]
        self._ids = [[entry_id for _, entry_id in column] for column in columns]

    def __len__(self) -> int:
        return len(self._keys[0])

    def candidates(
        self,
        query_distances: Sequence[float],
        window: float = MEMORY_CONFIG["index_window"],
    ) -> Set[str]:
        """Union of entry ids whose field for any pivot lies within d +/- d*window."""
        found: Set[str] = set()
        for i, distance in enumerate(query_distances[:INDEX_FIELD_COUNT]):
            if not math.isfinite(distance):
                continue
            low = encode_index_value(distance - distance * window)
            high = encode_index_value(distance + distance * window)
            keys = self._keys[i]
            start = bisect.bisect_left(keys, low)
            stop = bisect.bisect_right(keys, high)
            found.update(self._ids[i][start:stop])
        return found

