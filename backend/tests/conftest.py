"""
Root conftest.py — Shared fixtures for ALL tests

Fixture hierarchy:
  function-scoped : test_settings, credentials, open_limiter, no_sleep,
                    db, store, mock_chat, make_pdf, make_image

Environment strategy:
  - No test reaches a network provider: chat and embedding clients are
    built on MagicMock / AsyncMock factories.
  - The knowledge store runs on a temporary SQLite file per test.
  - Real PDFs are generated in-test with PyMuPDF; pure logic tests use the
    in-memory FakeDocument below.
  - Every pacing delay is zeroed or replaced by an AsyncMock sleep.

How to run:
  pytest                          # all tests
  pytest -m unit                  # unit tests only
  pytest -m integration           # store-backed tests
  pytest backend/tests/unit/test_chunking.py
"""

from __future__ import annotations

import base64
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from docqa.core.config import SessionCredentials, Settings
from docqa.db.session import KnowledgeDatabase
from docqa.llm.chat import ChatClient
from docqa.llm.ratelimit import RateLimiter
from docqa.processing.pdf import PageImage
from docqa.vectorstore.sql_store import KnowledgeStore

_MB = 1024 * 1024


# ─────────────────────────────────────────────────────────────────────────────
# In-memory PdfDocument
# ─────────────────────────────────────────────────────────────────────────────

class FakeDocument:
    """
    PdfDocument over a list of page texts. Every page is US-letter sized
    unless `sizes` says otherwise. render_page returns a tiny PageImage.
    """

    def __init__(self, texts: list[str], sizes: list[tuple[float, float]] | None = None) -> None:
        self.texts = list(texts)
        self.sizes = sizes or [(612.0, 792.0)] * len(texts)
        self.rendered: list[int] = []
        self.closed = False

    def __enter__(self) -> "FakeDocument":
        return self

    def __exit__(self, *exc_info) -> None:
        self.closed = True

    @property
    def page_count(self) -> int:
        return len(self.texts)

    def page_text(self, page_number: int) -> str:
        return self.texts[page_number - 1]

    def page_size(self, page_number: int) -> tuple[float, float]:
        return self.sizes[page_number - 1]

    def render_page(self, page_number: int, scale: float = 2.0, max_base64_bytes: int = 0) -> PageImage:
        self.rendered.append(page_number)
        payload = base64.b64encode(f"page-{page_number}".encode()).decode()
        return PageImage(page_number=page_number, base64=payload, scale=scale)


@pytest.fixture
def fake_document():
    """Factory: FakeDocument(texts, sizes=None)."""
    return FakeDocument


# ─────────────────────────────────────────────────────────────────────────────
# Settings / credentials / pacing
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'knowledge.db'}",
        ocr_delay_seconds=0.0,
        chat_min_delay_seconds=0.0,
        vision_batch_delay_seconds=2.0,
    )


@pytest.fixture
def credentials() -> SessionCredentials:
    return SessionCredentials.from_keys("test-embedding-key", "test-chat-key")


@pytest.fixture
def open_limiter() -> RateLimiter:
    """A limiter that never waits."""
    return RateLimiter("test", max_requests=None, min_delay_seconds=0.0)


@pytest.fixture
def no_sleep() -> AsyncMock:
    return AsyncMock(return_value=None)


# ─────────────────────────────────────────────────────────────────────────────
# Knowledge store on a temporary SQLite file
# ─────────────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def db(test_settings) -> AsyncGenerator[KnowledgeDatabase, None]:
    database = KnowledgeDatabase(test_settings.database_url, test_settings)
    await database.init()
    yield database
    await database.dispose()


@pytest_asyncio.fixture
async def store(db) -> KnowledgeStore:
    return KnowledgeStore(db)


# ─────────────────────────────────────────────────────────────────────────────
# Mock chat client
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def mock_chat() -> MagicMock:
    """
    ChatClient double. complete / complete_with_images are AsyncMocks that
    return "mock answer" unless a test reconfigures them.
    """
    chat = MagicMock(spec=ChatClient)
    chat.is_initialized = True
    chat.complete = AsyncMock(return_value="mock answer")
    chat.complete_with_images = AsyncMock(return_value="mock vision answer")
    return chat


# ─────────────────────────────────────────────────────────────────────────────
# PDF / image builders
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def make_pdf():
    """
    Factory: build real PDF bytes with PyMuPDF.
    Each entry in `pages` is the page's text; "" gives a blank (scan-like) page.
    """
    import fitz

    def _build(pages: list[str]) -> bytes:
        doc = fitz.open()
        for text in pages:
            page = doc.new_page(width=612, height=792)
            if text:
                page.insert_textbox(fitz.Rect(36, 36, 576, 756), text, fontsize=9)
        data = doc.tobytes()
        doc.close()
        return data

    return _build


@pytest.fixture
def make_image():
    """Factory: PageImage whose base64 payload is `size_mb` megabytes."""
    def _build(page_number: int, size_mb: float = 0.1) -> PageImage:
        return PageImage(page_number=page_number, base64="A" * int(size_mb * _MB))
    return _build
