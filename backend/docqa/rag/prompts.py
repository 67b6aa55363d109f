"""
Prompt templates for the conversational retrieval turn.

  INTENT_SYSTEM_PROMPT   classify search vs chat, rewrite to a standalone query
  ANSWER_SYSTEM_PROMPT   answer from the reference chunks only

build_answer_user_content() lays the user turn out as three labelled
blocks, in this order:

  [Conversation history]:  last N turns as "User: ..." / "AI: ..."
  [Reference information]: one "[Reference]: <chunk>" entry per chunk
  [User question]:         the (rewritten) query
"""

from __future__ import annotations

from typing import Any, Final, Sequence

from docqa.llm.chat import format_history

INTENT_SYSTEM_PROMPT: Final[str] = """\
You are a query intent analyzer. Analyze the user's query and determine:
1. If it needs document search ('search') or is general chat ('chat')
2. If 'search', rewrite the query to be standalone and specific.

Output JSON only: { "type": "search" | "chat", "newQuery": "..." }"""

ANSWER_SYSTEM_PROMPT: Final[str] = """\
You are a professional knowledge-base assistant. Answer the [User question] using the \
[Reference information] and [Conversation history] provided below.

Rules:
1. Base your answer on the [Reference information] first.
2. If the reference information is not enough to answer, say clearly that the knowledge \
base has no relevant information. Do not make anything up.
3. Answer in Markdown; put any figures or data into Markdown tables.
4. Keep the answer concise and go straight to the point."""

NO_RELEVANT_INFO_MESSAGE: Final[str] = (
    "No relevant information was found in the knowledge base. "
    "Try rephrasing the question or upload related documents."
)

EMPTY_KNOWLEDGE_BASE_MESSAGE: Final[str] = (
    "The knowledge base has no documents in the selected scope yet. "
    "Upload a PDF or change the category selection first."
)


def build_intent_user_content(query: str, history: Sequence[Any], history_turns: int) -> str:
    return f'History:\n{format_history(history, history_turns)}\n\nUser Query: "{query}"'


def format_context(chunks: Sequence[Any]) -> str:
    return "\n\n".join(f"[Reference]: {chunk.content}" for chunk in chunks)


def build_answer_user_content(
    question:      str,
    chunks:        Sequence[Any],
    history:       Sequence[Any],
    history_turns: int,
) -> str:
    return (
        f"[Conversation history]:\n{format_history(history, history_turns)}\n\n"
        f"[Reference information]:\n{format_context(chunks)}\n\n"
        f"[User question]:\n{question}"
    )
