"""
Embedding Client  —  Paced, Retrying Embeddings with Progress
══════════════════════════════════════════════════════════════

Design goals:
  • Pacing: every request passes the provider RateLimiter first
    (15 requests / 60 s window, 4.5 s minimum spacing by default)
  • Retry logic: exponential back-off on rate-limit errors only
  • Order: embed_batch() returns vectors in input order
  • Progress: one event per embedded text, with a time estimate

The provider (Gemini) is reached through its OpenAI-compatible endpoint
with the openai SDK; model gemini-embedding-001 returns 3072 dims.

Retry policy:
  Rate limited (RateLimitError, or "429" / "quota" / "rate" in the message)
      → wait RETRY_BASE_DELAY × 2^(attempt-1), up to MAX_RETRIES attempts,
        then raise RateLimitedError
  Anything else
      → raise immediately
  No key
      → NotInitializedError before any request is made
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
import time
from typing import Any, Awaitable, Callable, Sequence

import openai

from docqa.core.config import SessionCredentials, Settings, get_settings
from docqa.core.errors import NotInitializedError, RateLimitedError
from docqa.core.events import ProgressCallback, ProgressEvent, ProgressStage, emit
from docqa.llm.ratelimit import RateLimiter

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., Any]

# "rate" matches as a whole word only
_RATE_LIMIT_RE = re.compile(r"\b429\b|quota|\brate[ _-]?limit|\brate\b|too many requests|resource exhausted")


def is_rate_limit_error(exc: Exception) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    if isinstance(exc, openai.APIStatusError):
        return exc.status_code == 429
    return _RATE_LIMIT_RE.search(str(exc).lower()) is not None


def _default_client_factory(*, api_key: str, base_url: str) -> openai.AsyncOpenAI:
    return openai.AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)


def format_duration(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds}s"
    minutes, secs = divmod(seconds, 60)
    return f"{minutes}m {secs}s"


class EmbeddingClient:
    """
    Usage:
        client  = EmbeddingClient(credentials, limiter)
        vector  = await client.embed("query text")
        vectors = await client.embed_batch(chunks, on_progress=print)
    """

    def __init__(
        self,
        credentials:    SessionCredentials,
        limiter:        RateLimiter,
        settings:       Settings | None = None,
        client_factory: ClientFactory | None = None,
        sleep:          Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._credentials    = credentials
        self._limiter        = limiter
        self._settings       = settings or get_settings()
        self._client_factory = client_factory or _default_client_factory
        self._sleep          = sleep

    @property
    def is_initialized(self) -> bool:
        return self._credentials.has_embedding_key

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    def _client(self) -> Any:
        key = self._credentials.embedding_api_key
        if key is None:
            raise NotInitializedError("embedding")
        return self._client_factory(
            api_key=key.get_secret_value(),
            base_url=self._settings.embedding_base_url,
        )

    # ------------------------------------------------------------------
    # Single text
    # ------------------------------------------------------------------

    async def embed(self, text: str, dimension: int | None = None) -> list[float]:
        """Embed one text. Paced, and retried on rate-limit errors."""
        client = self._client()
        dimension = dimension or self._settings.embedding_output_dimensionality
        max_retries = self._settings.embedding_max_retries

        for attempt in range(1, max_retries + 1):
            await self._limiter.acquire()
            try:
                return await self._call(client, text, dimension)
            except Exception as exc:
                if not is_rate_limit_error(exc):
                    raise
                if attempt >= max_retries:
                    logger.error(
                        "Embedding rate limited | giving up after %d attempts: %s",
                        attempt, exc,
                    )
                    raise RateLimitedError(
                        f"Embedding provider rate limit persisted after {attempt} attempts"
                    ) from exc
                backoff = self._settings.embedding_retry_base_delay * (2 ** (attempt - 1))
                logger.warning(
                    "Embedding rate limited | waiting %.0fs before retry %d/%d",
                    backoff, attempt + 1, max_retries,
                )
                await self._sleep(backoff)

        raise RateLimitedError("Embedding retries exhausted")

    async def _call(self, client: Any, text: str, dimension: int | None) -> list[float]:
        extra = {"dimensions": dimension} if dimension else {}
        t0 = time.monotonic()
        response = await client.embeddings.create(
            model=self._settings.embedding_model,
            input=[text],
            **extra,
        )
        vector = list(response.data[0].embedding)
        logger.debug(
            "Embedding | model=%s chars=%d dims=%d api_ms=%.0f",
            self._settings.embedding_model, len(text), len(vector),
            (time.monotonic() - t0) * 1000,
        )
        return vector

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def embed_batch(
        self,
        texts:       Sequence[str],
        on_progress: ProgressCallback | None = None,
        dimension:   int | None = None,
    ) -> list[list[float]]:
        """
        Embed texts one request at a time, preserving order.

        After each text a progress event reports current/total and the
        estimated remaining time (min spacing × texts left).
        """
        if not texts:
            return []
        if not self.is_initialized:
            raise NotInitializedError("embedding")

        total = len(texts)
        per_request = self._settings.embedding_min_delay_seconds
        vectors: list[list[float]] = []
        t0 = time.monotonic()

        logger.info("EmbeddingClient | batch texts=%d model=%s", total, self._settings.embedding_model)

        for index, text in enumerate(texts, start=1):
            vectors.append(await self.embed(text, dimension))

            remaining = math.ceil((total - index) * per_request)
            emit(on_progress, ProgressEvent(
                ProgressStage.EMBEDDING,
                f"Embedding... ({index}/{total}) - about {format_duration(remaining)} left",
                current=index, total=total,
                details={"estimated_remaining_seconds": remaining},
            ))

        logger.info(
            "EmbeddingClient | batch done vectors=%d elapsed_ms=%.0f",
            len(vectors), (time.monotonic() - t0) * 1000,
        )
        return vectors

    # ------------------------------------------------------------------
    # Key check
    # ------------------------------------------------------------------

    async def verify(self) -> bool:
        """List models with the current key. Raises on an invalid key."""
        client = self._client()
        await client.models.list()
        return True

    def model_info(self) -> dict:
        return {
            "id":         self._settings.embedding_model,
            "base_url":   self._settings.embedding_base_url,
            "dimensions": self._settings.embedding_dimensions,
            "rate_limit": f"{self._settings.embedding_max_requests_per_window} requests / "
                          f"{self._settings.embedding_window_seconds:.0f}s",
        }
