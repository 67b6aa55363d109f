"""
Chat / Vision Client — OpenAI-compatible completions with pacing

Single call site for every chat, vision and OCR request:

  ChatClient.complete(messages)
       │
       ▼
  RateLimiter.acquire()          ← provider-wide spacing (shared instance)
       │
       ▼
  ChatOpenAI.ainvoke()           ← bound per call: temperature / max_tokens / top_p
       │  asyncio.wait_for       ← explicit timeout → ProviderTimeoutError
       ▼
  text content ("" when the provider returned none)

The client is created from the session credentials on every call, so
erasing the credentials takes effect immediately.

Error mapping:
  no key                    → NotInitializedError (never retried)
  HTTP 429                  → RateLimitedError
  HTTP 413                  → PayloadTooLargeError
  other HTTP / connection   → ProviderError
  timeout                   → ProviderTimeoutError
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Sequence

import openai
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from docqa.core.config import SessionCredentials, Settings, get_settings
from docqa.core.errors import (
    NotInitializedError,
    PayloadTooLargeError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitedError,
)
from docqa.llm.ratelimit import RateLimiter

if TYPE_CHECKING:
    from docqa.processing.pdf import PageImage

logger = logging.getLogger(__name__)

LLMFactory = Callable[..., Any]


def _default_llm_factory(*, model: str, api_key: str, base_url: str) -> ChatOpenAI:
    # Retries are owned by the callers; the SDK must not retry behind the limiter.
    return ChatOpenAI(model=model, api_key=api_key, base_url=base_url, max_retries=0)


# ---------------------------------------------------------------------------
# Message helpers
# ---------------------------------------------------------------------------

def image_part(image: "PageImage") -> dict:
    """OpenAI-style image content part with an inline data URL."""
    return {
        "type": "image_url",
        "image_url": {"url": f"data:{image.mime_type};base64,{image.base64}"},
    }


def history_to_messages(history: Sequence[Any], limit: int) -> list[BaseMessage]:
    """
    Convert the last `limit` stored chat turns into LangChain messages.
    Accepts ChatMessage rows or plain {"role", "content"} dicts.
    """
    if limit <= 0:
        return []
    messages: list[BaseMessage] = []
    for turn in list(history)[-limit:]:
        role    = turn["role"] if isinstance(turn, dict) else turn.role
        content = turn["content"] if isinstance(turn, dict) else turn.content
        if not isinstance(content, str):
            content = "[image analysis]"
        if role == "assistant":
            messages.append(AIMessage(content=content))
        else:
            messages.append(HumanMessage(content=content))
    return messages


def format_history(history: Sequence[Any], limit: int) -> str:
    """Render the last `limit` turns as "User: ..." / "AI: ..." lines."""
    lines = []
    for message in history_to_messages(history, limit):
        speaker = "AI" if isinstance(message, AIMessage) else "User"
        lines.append(f"{speaker}: {message.content}")
    return "\n".join(lines)


def _text_of(response: Any) -> str:
    content = getattr(response, "content", None)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part.get("text", "") if isinstance(part, dict) else str(part)
            for part in content
        )
    return ""


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class ChatClient:
    """
    Chat and vision completions against one OpenAI-compatible provider.

    Usage:
        client = ChatClient(credentials, limiter)
        text = await client.complete([SystemMessage(...), HumanMessage(...)])
    """

    def __init__(
        self,
        credentials: SessionCredentials,
        limiter:     RateLimiter,
        settings:    Settings | None = None,
        llm_factory: LLMFactory | None = None,
    ) -> None:
        self._credentials = credentials
        self._limiter     = limiter
        self._settings    = settings or get_settings()
        self._llm_factory = llm_factory or _default_llm_factory

    @property
    def is_initialized(self) -> bool:
        return self._credentials.has_chat_key

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    def _build_llm(self) -> Any:
        key = self._credentials.chat_api_key
        if key is None:
            raise NotInitializedError("chat")
        return self._llm_factory(
            model=self._settings.chat_model,
            api_key=key.get_secret_value(),
            base_url=self._settings.chat_base_url,
        )

    async def complete(
        self,
        messages:    Sequence[BaseMessage],
        *,
        temperature: float = 0.7,
        max_tokens:  int   = 4096,
        top_p:       float = 1.0,
        timeout:     float | None = None,
        label:       str   = "chat",
    ) -> str:
        """
        One chat completion. Returns the raw text content.

        Raises:
            NotInitializedError, RateLimitedError, PayloadTooLargeError,
            ProviderTimeoutError, ProviderError
        """
        llm = self._build_llm()
        await self._limiter.acquire()

        runnable = llm.bind(temperature=temperature, max_tokens=max_tokens, top_p=top_p)
        t0 = time.monotonic()
        try:
            if timeout is not None:
                response = await asyncio.wait_for(runnable.ainvoke(list(messages)), timeout)
            else:
                response = await runnable.ainvoke(list(messages))
        except asyncio.TimeoutError as exc:
            logger.warning("ChatClient | %s timed out after %.0fs", label, timeout)
            raise ProviderTimeoutError(
                f"Request timed out ({timeout:.0f}s); reduce the number of pages or try again later",
                timeout=timeout,
            ) from exc
        except openai.APITimeoutError as exc:
            raise ProviderTimeoutError(f"Request timed out: {exc}", timeout=timeout) from exc
        except openai.APIStatusError as exc:
            raise _map_status_error(exc) from exc
        except openai.APIConnectionError as exc:
            raise ProviderError(f"Chat provider unreachable: {exc}") from exc

        text = _text_of(response)
        logger.info(
            "ChatClient | %s model=%s chars_out=%d latency_ms=%.0f",
            label, self._settings.chat_model, len(text), (time.monotonic() - t0) * 1000,
        )
        return text

    async def complete_with_images(
        self,
        messages:    Sequence[BaseMessage],
        *,
        temperature: float = 0.7,
        max_tokens:  int   = 4096,
        top_p:       float = 1.0,
        timeout:     float | None = None,
        label:       str   = "vision",
    ) -> str:
        """Same contract as complete(); messages carry image_url content parts."""
        return await self.complete(
            messages,
            temperature=temperature,
            max_tokens=max_tokens,
            top_p=top_p,
            timeout=timeout,
            label=label,
        )

    async def verify(self) -> bool:
        """Send the provider a tiny request. Raises on an invalid key."""
        await self.complete([HumanMessage(content="Hi")], max_tokens=10, label="verify")
        return True

    def model_info(self) -> dict:
        return {
            "id":              self._settings.chat_model,
            "base_url":        self._settings.chat_base_url,
            "max_images":      self._settings.vision_direct_max_pages,
            "max_payload_mb":  self._settings.vision_direct_max_mb,
        }


def _map_status_error(exc: openai.APIStatusError) -> Exception:
    status = exc.status_code
    if status == 429:
        return RateLimitedError("Too many requests to the chat provider; try again later")
    if status == 413:
        return PayloadTooLargeError("Request exceeds the provider size limit; select fewer pages")
    if status == 400:
        return ProviderError(f"Malformed request: {exc.message}", status_code=status)
    return ProviderError(f"Chat provider error: {exc.message}", status_code=status)


def system_and_user(system_prompt: str, user_content: Any) -> list[BaseMessage]:
    """Standard [SystemMessage, HumanMessage] pair."""
    return [SystemMessage(content=system_prompt), HumanMessage(content=user_content)]
