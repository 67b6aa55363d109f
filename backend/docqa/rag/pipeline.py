"""
Conversational Retrieval — one question/answer turn over the knowledge base

Turn state machine:

  received
    │  persist user message
    ▼
  IntentClassifier          ← last 4 turns; fails open to "search"
    │
    ├── chat ──────────────────────────────┐  reuse the previous turn's chunks
    │                                      │
    └── search                             │
          │  EmbeddingClient.embed(newQuery)
          ▼                                │
        KnowledgeStore.search              ← scoped to the selected categories
          │                                │
          ├── no chunks in scope  → EMPTY        (fixed message, no generation)
          ├── top < threshold     → NO_RELEVANT  (fixed message, no generation)
          ▼                                │
        answer generation ◄────────────────┘  one chat call, last 6 turns
          │
          ▼
        persist assistant message

Failure policy: any exception during the turn is logged, persisted as an
assistant "Error: ..." message (best effort: a store that cannot be
written is logged) and returned as an ERROR outcome. The processing flag is
set before the first await and cleared in every case.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Sequence

from sqlalchemy.exc import SQLAlchemyError

from docqa.core.config import Settings, get_settings
from docqa.llm.chat import ChatClient, system_and_user
from docqa.processing.embeddings import EmbeddingClient
from docqa.rag.intent import IntentClassifier, QueryIntent
from docqa.rag.prompts import (
    ANSWER_SYSTEM_PROMPT,
    EMPTY_KNOWLEDGE_BASE_MESSAGE,
    NO_RELEVANT_INFO_MESSAGE,
    build_answer_user_content,
)
from docqa.vectorstore.base import SearchResult
from docqa.vectorstore.sql_store import KnowledgeStore

logger = logging.getLogger(__name__)


class TurnOutcome(str, Enum):
    ANSWERED    = "answered"       # search + grounded answer
    CHAT        = "chat"           # conversational answer over the previous chunks
    NO_RELEVANT = "no_relevant"    # chunks exist, best one below threshold
    EMPTY       = "empty"          # nothing in scope to search
    ERROR       = "error"


@dataclass
class TurnResult:
    outcome:        TurnOutcome
    answer:         str
    intent:         QueryIntent | None = None
    chunks:         list[SearchResult] = field(default_factory=list)
    top_similarity: float | None = None
    error:          str | None = None
    elapsed_ms:     float = 0.0


class TurnInProgressError(RuntimeError):
    pass


class ConversationalRetriever:
    """
    Usage:
        retriever = ConversationalRetriever(store, embedder, chat)
        result = await retriever.ask("What was Q3 revenue?", categories=["Finance"])
        print(result.outcome, result.answer)
    """

    def __init__(
        self,
        store:    KnowledgeStore,
        embedder: EmbeddingClient,
        chat:     ChatClient,
        intent_classifier: IntentClassifier | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._store    = store
        self._embedder = embedder
        self._chat     = chat
        self._settings = settings or get_settings()
        self._intent   = intent_classifier or IntentClassifier(chat, self._settings)

        self.similarity_threshold: float = self._settings.similarity_threshold
        self._last_chunks: list[SearchResult] = []
        self._processing = False

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def last_chunks(self) -> list[SearchResult]:
        return list(self._last_chunks)

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def ask(self, query: str, categories: Iterable[str] | None = None) -> TurnResult:
        """
        Run one turn. Never raises for provider or store failures during the
        turn; those come back as TurnOutcome.ERROR.

        categories: None or empty searches every document; otherwise only
        documents in the named categories are searched.
        """
        if not query.strip():
            raise ValueError("Query cannot be empty")
        if self._processing:
            raise TurnInProgressError("A question is already being processed")

        # Claimed before the first await so a concurrent ask() sees it
        self._processing = True
        t0 = time.monotonic()
        try:
            history_turns = max(self._settings.intent_history_turns, self._settings.answer_history_turns)
            history = await self._store.get_chat_history(limit=history_turns)
            await self._store.append_message("user", query)
            result = await self._run_turn(query, history, categories)
        except Exception as exc:
            logger.exception("ConversationalRetriever | turn failed: %s", exc)
            message = f"Error: {exc}"
            await self._record_error(message)
            result = TurnResult(outcome=TurnOutcome.ERROR, answer=message, error=str(exc))
        finally:
            self._processing = False

        result.elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "ConversationalRetriever | outcome=%s chunks=%d top=%s latency_ms=%.0f",
            result.outcome.value, len(result.chunks),
            f"{result.top_similarity:.3f}" if result.top_similarity is not None else "-",
            result.elapsed_ms,
        )
        return result

    async def _record_error(self, message: str) -> None:
        """Persist the error reply; a failing store must not turn ERROR into an exception."""
        try:
            await self._store.append_message("assistant", message)
        except SQLAlchemyError as exc:
            logger.error("ConversationalRetriever | could not persist error message: %s", exc)

    async def _run_turn(
        self,
        query:      str,
        history:    Sequence[Any],
        categories: Iterable[str] | None,
    ) -> TurnResult:
        intent = await self._intent.classify(query, history)
        question = intent.new_query or query

        if intent.type == "chat":
            chunks = list(self._last_chunks)
            answer = await self.generate_answer(question, chunks, history)
            await self._store.append_message("assistant", answer)
            return TurnResult(outcome=TurnOutcome.CHAT, answer=answer, intent=intent, chunks=chunks)

        # ── Search ──────────────────────────────────────────────────────
        document_ids = await self._resolve_scope(categories)
        vector = await self._embedder.embed(question)
        results = await self._store.search(vector, document_ids, limit=self._settings.search_top_k)

        if not results:
            await self._store.append_message("assistant", EMPTY_KNOWLEDGE_BASE_MESSAGE)
            return TurnResult(outcome=TurnOutcome.EMPTY, answer=EMPTY_KNOWLEDGE_BASE_MESSAGE, intent=intent)

        top = results[0].similarity
        if top < self.similarity_threshold:
            await self._store.append_message("assistant", NO_RELEVANT_INFO_MESSAGE)
            return TurnResult(
                outcome=TurnOutcome.NO_RELEVANT, answer=NO_RELEVANT_INFO_MESSAGE,
                intent=intent, top_similarity=top,
            )

        self._last_chunks = list(results)
        answer = await self.generate_answer(question, results, history)
        await self._store.append_message("assistant", answer)
        return TurnResult(
            outcome=TurnOutcome.ANSWERED, answer=answer,
            intent=intent, chunks=list(results), top_similarity=top,
        )

    async def _resolve_scope(self, categories: Iterable[str] | None) -> list[int] | None:
        selected = list(categories or [])
        if not selected:
            return None
        return await self._store.document_ids_for_categories(selected)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_answer(
        self,
        question: str,
        chunks:   Sequence[SearchResult],
        history:  Sequence[Any],
    ) -> str:
        """One chat call grounded in `chunks`; the text is returned verbatim."""
        messages = system_and_user(
            ANSWER_SYSTEM_PROMPT,
            build_answer_user_content(question, chunks, history, self._settings.answer_history_turns),
        )
        return await self._chat.complete(messages, temperature=0.7, max_tokens=4096, label="answer")

    # ------------------------------------------------------------------
    # Conversation reset
    # ------------------------------------------------------------------

    async def clear_conversation(self) -> None:
        await self._store.clear_chat_history()
        self._last_chunks = []
