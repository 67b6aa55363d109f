"""
Intent Classifier — search vs chat, with query rewriting

The chat model sees the last 4 turns plus the query and must answer with
strict JSON: {"type": "search" | "chat", "newQuery": "..."}.

Fail-open policy: any model error (other than a missing credential) and
any unparseable answer fall back to {"type": "search", "newQuery": query}.
A turn is never dropped because classification failed.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Literal, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from docqa.core.config import Settings, get_settings
from docqa.core.errors import MalformedResponseError, NotInitializedError
from docqa.llm.chat import ChatClient, system_and_user
from docqa.rag.prompts import INTENT_SYSTEM_PROMPT, build_intent_user_content

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


class QueryIntent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type:      Literal["search", "chat"]
    new_query: str = Field("", alias="newQuery")

    @classmethod
    def fallback(cls, query: str) -> "QueryIntent":
        return cls(type="search", new_query=query)


def parse_intent(raw: str, query: str) -> QueryIntent:
    """
    Parse the model output. Code fences are stripped first.

    Raises:
        MalformedResponseError: not JSON, or not the expected shape.
    """
    cleaned = _FENCE_RE.sub("", raw).strip()
    try:
        intent = QueryIntent.model_validate(json.loads(cleaned))
    except (json.JSONDecodeError, ValidationError, TypeError) as exc:
        raise MalformedResponseError(f"Unparseable intent response: {raw[:200]!r}") from exc
    if not intent.new_query.strip():
        intent.new_query = query
    return intent


class IntentClassifier:
    def __init__(self, chat: ChatClient, settings: Settings | None = None) -> None:
        self._chat = chat
        self._settings = settings or get_settings()

    async def classify(self, query: str, history: Sequence[Any] = ()) -> QueryIntent:
        messages = system_and_user(
            INTENT_SYSTEM_PROMPT,
            build_intent_user_content(query, history, self._settings.intent_history_turns),
        )
        try:
            raw = await self._chat.complete(messages, temperature=0.3, max_tokens=256, label="intent")
            intent = parse_intent(raw, query)
        except NotInitializedError:
            raise
        except Exception as exc:
            logger.warning("IntentClassifier | falling back to search: %s", exc)
            return QueryIntent.fallback(query)

        logger.info("IntentClassifier | type=%s rewritten=%s", intent.type, intent.new_query != query)
        return intent
