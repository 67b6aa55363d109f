"""
Unit Tests — IngestionService
══════════════════════════════

Coverage targets:
  ✅ Happy path           → document + chunks written with file_name / ocr_used metadata
  ✅ Nothing extractable  → EmptyExtractionError, store untouched, no embedding calls
  ✅ Not a PDF            → UnsupportedFileError before any parsing
  ✅ Embedding failure    → propagates, store untouched
  ✅ File names           → path components and control characters stripped
  ✅ Real PDF             → PyMuPDF extraction end to end (embedder mocked)
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from docqa.core.errors import EmptyExtractionError, RateLimitedError, UnsupportedFileError
from docqa.models.knowledge import DEFAULT_CATEGORY
from docqa.processing.embeddings import EmbeddingClient
from docqa.processing.extractor import ExtractionPipeline
from docqa.processing.ocr import VisionOCRClient
from docqa.services.ingestion import IngestionService, _sanitize_filename

_FAKE_PDF = b"%PDF-1.7\n% test payload"


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _embedder() -> MagicMock:
    embedder = MagicMock(spec=EmbeddingClient)
    embedder.embed_batch = AsyncMock(
        side_effect=lambda texts, on_progress=None, dimension=None: [[1.0, 0.0, 0.0] for _ in texts]
    )
    return embedder


def _ocr() -> MagicMock:
    ocr = MagicMock(spec=VisionOCRClient)
    ocr.is_available = True
    ocr.recognize = AsyncMock(side_effect=lambda image, page: f"Scanned page {page} says the budget was approved.")
    return ocr


@pytest.fixture
def make_service(store, test_settings, no_sleep, fake_document):
    def _build(texts=None, embedder=None, ocr=None, opener=None):
        if opener is None:
            opener = lambda data: fake_document(texts)  # noqa: E731
        return IngestionService(
            store,
            embedder or _embedder(),
            ExtractionPipeline(ocr, test_settings, sleep=no_sleep),
            settings=test_settings,
            opener=opener,
        )
    return _build


# ─────────────────────────────────────────────────────────────────────────────
# Pipeline
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestIngest:

    async def test_text_document_is_stored_with_metadata(self, store, make_service):
        text = "The quarterly report shows steady growth across all regions. " * 30
        service = make_service(texts=[text, text])

        result = await service.ingest(_FAKE_PDF, "report.pdf", category="Finance")

        assert result.mode == "direct"
        assert result.total_pages == 2
        assert result.chunk_count >= 1
        assert result.embedding_dimension == 3

        document = await store.get_document(result.document_id)
        assert (document.name, document.category, document.chunk_count) == ("report.pdf", "Finance", result.chunk_count)
        hits = await store.search([1.0, 0.0, 0.0], limit=100)
        assert len(hits) == result.chunk_count
        assert all(h.metadata == {"file_name": "report.pdf", "ocr_used": False} for h in hits)

    async def test_scanned_document_is_ocrd_and_flagged(self, store, make_service):
        service = make_service(texts=[""] * 3, ocr=_ocr())

        result = await service.ingest(_FAKE_PDF, "scan.pdf")

        assert result.mode == "hybrid"
        assert result.ocr_pages == 3
        assert result.category == DEFAULT_CATEGORY
        hits = await store.search([1.0, 0.0, 0.0])
        assert hits[0].metadata["ocr_used"] is True

    async def test_nothing_extractable_writes_nothing(self, store, make_service):
        embedder = _embedder()
        service = make_service(texts=["", ""], embedder=embedder)

        with pytest.raises(EmptyExtractionError):
            await service.ingest(_FAKE_PDF, "blank.pdf")

        embedder.embed_batch.assert_not_awaited()
        assert await store.list_documents() == []

    @pytest.mark.parametrize("payload", [b"", b"PK\x03\x04 not a pdf"])
    async def test_non_pdf_is_rejected(self, store, make_service, payload):
        opener = MagicMock()
        service = make_service(opener=opener)

        with pytest.raises(UnsupportedFileError):
            await service.ingest(payload, "upload.pdf")

        opener.assert_not_called()

    async def test_embedding_failure_writes_nothing(self, store, make_service):
        embedder = _embedder()
        embedder.embed_batch.side_effect = RateLimitedError("quota exhausted")
        service = make_service(texts=["Some readable text on the page. " * 40], embedder=embedder)

        with pytest.raises(RateLimitedError):
            await service.ingest(_FAKE_PDF, "report.pdf")

        assert await store.list_documents() == []
        assert await store.count_chunks() == 0

    async def test_blank_category_becomes_default(self, store, make_service):
        service = make_service(texts=["Readable sentence for the store. " * 40])

        result = await service.ingest(_FAKE_PDF, "a.pdf", category="   ")

        assert result.category == DEFAULT_CATEGORY

    async def test_progress_reaches_embedding(self, make_service):
        embedder = _embedder()
        service = make_service(texts=["Readable sentence for the store. " * 40], embedder=embedder)
        events = []

        await service.ingest(_FAKE_PDF, "a.pdf", on_progress=events.append)

        assert embedder.embed_batch.await_args.args[1] == events.append

    async def test_real_pdf_end_to_end(self, store, test_settings, no_sleep, make_pdf):
        service = IngestionService(
            store, _embedder(), ExtractionPipeline(None, test_settings, sleep=no_sleep), settings=test_settings,
        )
        pdf = make_pdf(["Knowledge management keeps documents searchable. " * 20] * 3)

        result = await service.ingest(pdf, "guide.pdf")

        assert result.total_pages == 3
        assert result.mode == "direct"
        hits = await store.search([1.0, 0.0, 0.0])
        assert "Knowledge management" in hits[0].content

    async def test_estimate(self, make_service):
        stats = make_service(texts=["a" * 1000] * 3).estimate(_FAKE_PDF)

        assert stats.pages == 3
        assert stats.needs_ocr is False


@pytest.mark.unit
class TestSanitizeFilename:

    @pytest.mark.parametrize("raw,expected", [
        ("../../etc/report.pdf", "report.pdf"),
        ("C:\\Users\\me\\scan.pdf", "scan.pdf"),
        ("bad\x00name\x1f.pdf", "badname.pdf"),
        ("", "document.pdf"),
        ("/", "document.pdf"),
    ])
    def test_sanitized(self, raw, expected):
        assert _sanitize_filename(raw) == expected

    def test_length_is_capped(self):
        assert len(_sanitize_filename("x" * 500 + ".pdf")) == 200
