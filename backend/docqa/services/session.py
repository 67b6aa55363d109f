"""
Application Session — one user, two providers, one local store

AppSession.create() wires every component from the two API keys entered
at login:

  SessionCredentials ──┬── RateLimiter("embedding", 15/60 s, 4.5 s)
                       │     └── EmbeddingClient
                       └── RateLimiter("chat", spacing 2 s)
                             └── ChatClient ── VisionOCRClient ── ExtractionPipeline
                                            ├─ IntentClassifier / ConversationalRetriever
                                            └─ VisionBatcher
  KnowledgeDatabase ── KnowledgeStore ── IngestionService / BackupService

Limiters and credentials are owned by the session and passed by reference;
nothing provider-related lives at module level. close() erases both keys
from memory and disposes the database engine. Keys are never persisted
and never logged.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Sequence

from docqa.core.config import SessionCredentials, Settings, get_settings
from docqa.core.events import ProgressCallback
from docqa.core.log_setup import configure_logging
from docqa.db.session import KnowledgeDatabase
from docqa.llm.chat import ChatClient, LLMFactory
from docqa.llm.ratelimit import RateLimiter
from docqa.llm.vision import VisionAnswer, VisionBatcher
from docqa.processing.embeddings import ClientFactory, EmbeddingClient
from docqa.processing.extractor import ExtractionPipeline
from docqa.processing.ocr import VisionOCRClient
from docqa.processing.pdf import PageImage, PyMuPDFDocument
from docqa.rag.intent import IntentClassifier
from docqa.rag.pipeline import ConversationalRetriever
from docqa.services.backup import BackupService
from docqa.services.ingestion import IngestionService
from docqa.vectorstore.sql_store import KnowledgeStore

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    embedding_ok: bool
    chat_ok:      bool
    embedding_error: str | None = None
    chat_error:      str | None = None

    @property
    def ok(self) -> bool:
        return self.embedding_ok and self.chat_ok


class AppSession:
    """
    Usage:
        async with AppSession.create(SessionCredentials.from_keys(gemini_key, groq_key)) as app:
            await app.ingestion.ingest(pdf_bytes, "report.pdf")
            result = await app.retriever.ask("What does the report conclude?")
    """

    def __init__(
        self,
        credentials:       SessionCredentials,
        settings:          Settings,
        db:                KnowledgeDatabase,
        embedding_limiter: RateLimiter,
        chat_limiter:      RateLimiter,
        embedder:          EmbeddingClient,
        chat:              ChatClient,
    ) -> None:
        self.credentials = credentials
        self.settings    = settings
        self.db          = db
        self.embedding_limiter = embedding_limiter
        self.chat_limiter      = chat_limiter
        self.embedder    = embedder
        self.chat        = chat

        self.store      = KnowledgeStore(db)
        self.ocr        = VisionOCRClient(chat)
        self.extraction = ExtractionPipeline(self.ocr, settings)
        self.ingestion  = IngestionService(self.store, embedder, self.extraction, settings=settings)
        self.backup     = BackupService(self.store)
        self.retriever  = ConversationalRetriever(
            self.store, embedder, chat, IntentClassifier(chat, settings), settings,
        )
        self.vision = VisionBatcher(chat, settings)
        self._closed = False

    @classmethod
    def create(
        cls,
        credentials:    SessionCredentials,
        settings:       Settings | None = None,
        database_url:   str | None = None,
        llm_factory:    LLMFactory | None = None,
        client_factory: ClientFactory | None = None,
    ) -> "AppSession":
        cfg = settings or get_settings()

        embedding_limiter = RateLimiter(
            "embedding",
            max_requests=cfg.embedding_max_requests_per_window,
            window_seconds=cfg.embedding_window_seconds,
            min_delay_seconds=cfg.embedding_min_delay_seconds,
        )
        chat_limiter = RateLimiter(
            "chat",
            max_requests=None,
            min_delay_seconds=cfg.chat_min_delay_seconds,
        )

        return cls(
            credentials=credentials,
            settings=cfg,
            db=KnowledgeDatabase(database_url, cfg),
            embedding_limiter=embedding_limiter,
            chat_limiter=chat_limiter,
            embedder=EmbeddingClient(credentials, embedding_limiter, cfg, client_factory),
            chat=ChatClient(credentials, chat_limiter, cfg, llm_factory),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> "AppSession":
        configure_logging(self.settings)
        version = await self.db.init()
        logger.info(
            "Session start | schema=v%d embedding_key=%s chat_key=%s",
            version, self.credentials.has_embedding_key, self.credentials.has_chat_key,
        )
        return self

    async def verify(self) -> VerificationResult:
        """Check both providers with the entered keys."""
        result = VerificationResult(embedding_ok=False, chat_ok=False)
        try:
            result.embedding_ok = await self.embedder.verify()
        except Exception as exc:
            logger.warning("Session verify | embedding key rejected: %s", type(exc).__name__)
            result.embedding_error = str(exc)
        try:
            result.chat_ok = await self.chat.verify()
        except Exception as exc:
            logger.warning("Session verify | chat key rejected: %s", type(exc).__name__)
            result.chat_error = str(exc)
        return result

    async def close(self) -> None:
        if self._closed:
            return
        self.credentials.erase()
        await self.db.dispose()
        self._closed = True
        logger.info("Session closed | credentials erased")

    async def __aenter__(self) -> "AppSession":
        return await self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Page analysis
    # ------------------------------------------------------------------

    async def capture_pages(self, pdf_bytes: bytes, page_numbers: Sequence[int]) -> list[PageImage]:
        """Render the selected pages for vision analysis (off the event loop)."""
        loop = asyncio.get_running_loop()

        def _capture() -> list[PageImage]:
            with PyMuPDFDocument.open(pdf_bytes) as document:
                return [document.capture_page(n) for n in page_numbers]

        return await loop.run_in_executor(None, _capture)

    async def analyze_pages(
        self,
        pdf_bytes:    bytes,
        page_numbers: Sequence[int],
        prompt:       str,
        history:      Sequence[Any] = (),
        on_progress:  ProgressCallback | None = None,
    ) -> VisionAnswer:
        images = await self.capture_pages(pdf_bytes, page_numbers)
        return await self.vision.analyze(images, prompt, history, on_progress)
