"""
Application configuration via environment variables (12-factor).
Pydantic BaseSettings validates and coerces all values at startup.

Provider credentials are NOT settings: they are entered per session and
held in SessionCredentials, which is never written to disk.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DOCQA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ------------------------------------------------------------------
    # Local knowledge store
    # ------------------------------------------------------------------
    database_url: str = "sqlite+aiosqlite:///docqa.db"
    db_echo_sql:  bool = False

    # ------------------------------------------------------------------
    # Embedding provider (OpenAI-compatible endpoint)
    # ------------------------------------------------------------------
    embedding_base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    embedding_model:    str = "gemini-embedding-001"
    embedding_dimensions: int = 3072           # expected vector length
    embedding_output_dimensionality: int | None = None   # None = provider default

    # Free tier: 15 requests per minute
    embedding_max_requests_per_window: int   = 15
    embedding_window_seconds:          float = 60.0
    embedding_min_delay_seconds:       float = 4.5
    embedding_max_retries:             int   = 3
    embedding_retry_base_delay:        float = 15.0   # doubles per attempt

    # ------------------------------------------------------------------
    # Chat / vision provider (OpenAI-compatible endpoint)
    # ------------------------------------------------------------------
    chat_base_url:          str   = "https://api.groq.com/openai/v1"
    chat_model:             str   = "meta-llama/llama-4-scout-17b-16e-instruct"
    chat_min_delay_seconds: float = 2.0

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------
    classifier_sample_pages: int   = 3
    ocr_threshold:           int   = 100    # chars per page below which OCR runs
    ocr_delay_seconds:       float = 2.0
    ocr_render_scale:        float = 2.0
    ocr_max_image_mb:        float = 3.5
    max_ocr_pages:           int | None = None   # None = unbounded

    # ------------------------------------------------------------------
    # Chunking
    # ------------------------------------------------------------------
    chunk_max_size:          int = 800
    chunk_overlap_sentences: int = 2

    # ------------------------------------------------------------------
    # Retrieval + answer generation
    # ------------------------------------------------------------------
    similarity_threshold:  float = 0.25
    search_top_k:          int   = 5
    intent_history_turns:  int   = 4
    answer_history_turns:  int   = 6

    # ------------------------------------------------------------------
    # Multi-page vision analysis
    # ------------------------------------------------------------------
    vision_batch_max_mb:       float = 3.0
    vision_batch_max_images:   int   = 5
    vision_direct_max_mb:      float = 3.5
    vision_direct_max_pages:   int   = 5
    vision_batch_delay_seconds: float = 2.0
    vision_batch_timeout:      float = 90.0
    vision_synthesis_timeout:  float = 60.0
    vision_direct_timeout:     float = 60.0
    vision_history_turns:      int   = 2

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------
    log_level: str  = "INFO"
    debug:     bool = False


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


# ---------------------------------------------------------------------------
# Session credentials
# ---------------------------------------------------------------------------

@dataclass
class SessionCredentials:
    """
    The two provider keys entered at login.

    One instance per session, shared by reference with every client that
    calls a provider. erase() drops both keys; clients then fail with
    NotInitializedError on their next call.
    """
    embedding_api_key: SecretStr | None = None
    chat_api_key:      SecretStr | None = None

    @classmethod
    def from_keys(cls, embedding_key: str | None, chat_key: str | None) -> "SessionCredentials":
        return cls(
            embedding_api_key=SecretStr(embedding_key) if embedding_key else None,
            chat_api_key=SecretStr(chat_key) if chat_key else None,
        )

    @property
    def has_embedding_key(self) -> bool:
        return self.embedding_api_key is not None

    @property
    def has_chat_key(self) -> bool:
        return self.chat_api_key is not None

    def erase(self) -> None:
        self.embedding_api_key = None
        self.chat_api_key = None
