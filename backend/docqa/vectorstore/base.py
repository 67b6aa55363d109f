"""
Vector Store — shared types and the similarity metric

Similarity search is exhaustive: every candidate chunk is scored against the
query with cosine similarity and the top `limit` are returned. At the scale
of a single user's PDF library this is fast enough and keeps the store a
plain relational database.

Cosine contract:
  - unequal lengths, or either vector missing  → 0.0 (ranks last, never raises)
  - either norm is zero                        → 0.0 (a no-match under any
                                                  positive threshold)
  - otherwise dot(a, b) / (‖a‖ · ‖b‖), symmetric, sim(a, a) == 1
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Sequence


def cosine_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class ChunkInput:
    """A chunk ready to be stored alongside a new document."""
    content:   str
    embedding: list[float]
    metadata:  dict[str, Any] = field(default_factory=dict)
    # Expected metadata keys:
    # - file_name: str
    # - ocr_used:  bool


@dataclass
class SearchResult:
    """One ranked chunk returned from a similarity search."""
    chunk_id:    int
    document_id: int
    content:     str
    similarity:  float
    metadata:    dict[str, Any] = field(default_factory=dict)

    @property
    def file_name(self) -> str | None:
        return self.metadata.get("file_name")


@dataclass
class DimensionCheck:
    valid:    bool
    count:    int
    expected: int | None = None
    found:    int | None = None


@dataclass
class StorageStats:
    document_count: int
    chunk_count:    int
    message_count:  int
    # Approximate JSON-encoded size per table, in bytes
    estimated_size: dict[str, int] = field(default_factory=dict)
