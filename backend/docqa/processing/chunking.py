"""
Semantic Chunker  —  sentence-bounded segments with sentence overlap
═════════════════════════════════════════════════════════════════════

Why sentence boundaries?
────────────────────────
  Fixed-size windows cut sentences in half; the orphaned half embeds to a
  vector that matches nothing well. Accumulating whole sentences keeps each
  chunk a coherent unit of meaning.

Algorithm
─────────
  1. Normalize whitespace: runs of spaces/tabs → one space, any run that
     contains a newline → one newline.
  2. Split into sentences. Terminators: . ! ? 。 ！ ？ and newline; the
     terminator stays with its sentence.
  3. Accumulate sentences until the next one would push the chunk past
     `max_size`; flush (sentences joined by spaces) and seed the next chunk
     with the last `overlap_sentences` sentences of the flushed one.
  4. A single sentence longer than `max_size` is force-split: cut at the
     last break character (, ， ; ； : ： space) lying past the midpoint of
     the window, else at exactly `max_size`; consecutive pieces share a
     50-character overlap.
  5. Drop chunks whose trimmed length is ≤ 50 characters.

Every emitted chunk is at most `max_size` characters. Deterministic and
side-effect free; the result is a plain list, so it can be iterated any
number of times.
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE          = 800
DEFAULT_OVERLAP_SENTENCES = 2
LONG_SENTENCE_OVERLAP     = 50
MIN_CHUNK_CHARS           = 50     # chunks must be strictly longer than this

_SENTENCE_RE   = re.compile(r"[^。！？.!?\n]+[。！？.!?\n]?")
_BREAK_CHARS   = (",", "，", ";", "；", ":", "：", " ")


def normalize_whitespace(text: str) -> str:
    text = re.sub(r"[^\S\n]+", " ", text)
    text = re.sub(r"\s*\n\s*", "\n", text)
    return text.strip()


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_RE.findall(text) if s.strip()]


def chunk_text(
    text:              str,
    max_size:          int = DEFAULT_MAX_SIZE,
    overlap_sentences: int = DEFAULT_OVERLAP_SENTENCES,
) -> list[str]:
    """
    Segment `text` into overlapping, sentence-bounded chunks.

    Args:
        text:              full extracted document text
        max_size:          chunk ceiling in characters
        overlap_sentences: sentences carried over into the next chunk

    Returns:
        Ordered list of chunk strings, each longer than 50 characters.
    """
    if max_size <= LONG_SENTENCE_OVERLAP:
        raise ValueError(f"max_size must exceed {LONG_SENTENCE_OVERLAP}, got {max_size}")

    cleaned = normalize_whitespace(text)
    if not cleaned:
        return []

    chunks:  list[str] = []
    current: list[str] = []

    for sentence in split_sentences(cleaned):
        if len(sentence) > max_size:
            if current:
                chunks.append(" ".join(current))
                current = []
            chunks.extend(split_long_sentence(sentence, max_size))
            continue

        if current and _joined_length(current) + 1 + len(sentence) > max_size:
            chunks.append(" ".join(current))
            current = current[-overlap_sentences:] if overlap_sentences > 0 else []
            # Overlap yields to the size ceiling
            while current and _joined_length(current) + 1 + len(sentence) > max_size:
                current.pop(0)

        current.append(sentence)

    if current:
        chunks.append(" ".join(current))

    kept = [c for c in chunks if len(c.strip()) > MIN_CHUNK_CHARS]
    logger.debug(
        "Chunker | chars=%d chunks=%d dropped_short=%d",
        len(cleaned), len(kept), len(chunks) - len(kept),
    )
    return kept


def split_long_sentence(sentence: str, max_size: int) -> list[str]:
    """Character-level split of one over-long sentence with a 50-char overlap."""
    pieces: list[str] = []
    start = 0
    length = len(sentence)

    while start < length:
        end = start + max_size
        if end < length:
            for break_char in _BREAK_CHARS:
                last_break = sentence.rfind(break_char, start, end)
                if last_break > start + max_size // 2:
                    end = last_break + 1
                    break

        pieces.append(sentence[start:end].strip())
        if end >= length:
            break
        start = max(end - LONG_SENTENCE_OVERLAP, start + 1)

    return pieces


def _joined_length(sentences: list[str]) -> int:
    return sum(len(s) for s in sentences) + max(len(sentences) - 1, 0)


class SemanticChunker:
    """
    Configured chunker.

    Usage:
        chunker = SemanticChunker(max_size=800, overlap_sentences=2)
        chunks = chunker.chunk(extraction.full_text)
    """

    def __init__(
        self,
        max_size:          int = DEFAULT_MAX_SIZE,
        overlap_sentences: int = DEFAULT_OVERLAP_SENTENCES,
    ) -> None:
        self.max_size = max_size
        self.overlap_sentences = overlap_sentences

    def chunk(self, text: str) -> list[str]:
        return chunk_text(text, self.max_size, self.overlap_sentences)
