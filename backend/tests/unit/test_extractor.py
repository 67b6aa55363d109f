"""
Unit Tests — Extraction Pipeline
═════════════════════════════════

Coverage targets:
  ✅ 10 scanned pages            → hybrid, ocr_pages == 10, text_layer_pages == 0
  ✅ 3 × 1000-char text pages    → direct, text_layer_pages == 3, ocr_pages == 0
  ✅ Image-based, no OCR key     → direct fallback
  ✅ Mixed document              → only thin pages OCR'd, merged by page number
  ✅ Inter-request OCR delay     → between pages, never after the last
  ✅ Progress events             → detecting … complete, with ocr phases
  ✅ OCR failure                 → propagates
  ✅ max_ocr_pages               → optional ceiling
  ✅ Thin pages, no OCR client   → counted as text layer pages
  ✅ document_stats              → chunk / time estimates
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from docqa.core.errors import NotInitializedError, ProviderError
from docqa.core.events import ProgressStage
from docqa.processing.extractor import (
    ExtractionPipeline,
    PageRecord,
    assemble_full_text,
    document_stats,
)
from docqa.processing.ocr import VisionOCRClient


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _ocr_client(available: bool = True) -> MagicMock:
    ocr = MagicMock(spec=VisionOCRClient)
    ocr.is_available = available
    ocr.recognize = AsyncMock(side_effect=lambda image, page: f"Recognized text of page {page}")
    return ocr


@pytest.fixture
def make_pipeline(test_settings, no_sleep):
    def _build(ocr=None, settings=None):
        return ExtractionPipeline(ocr_client=ocr, settings=settings or test_settings, sleep=no_sleep)
    return _build


# ─────────────────────────────────────────────────────────────────────────────
# Mode selection scenarios
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestSmartExtraction:

    async def test_scanned_document_is_fully_ocrd(self, make_pipeline, fake_document):
        ocr = _ocr_client()
        doc = fake_document([""] * 10)

        result = await make_pipeline(ocr).extract_smart(doc)

        assert result.mode == "hybrid"
        assert result.stats.ocr_pages == 10
        assert result.stats.text_layer_pages == 0
        assert result.stats.is_image_based is True
        assert ocr.recognize.await_count == 10
        assert doc.rendered == list(range(1, 11))

    async def test_text_document_uses_text_layer(self, make_pipeline, fake_document):
        ocr = _ocr_client()
        doc = fake_document(["a" * 1000] * 3)

        result = await make_pipeline(ocr).extract_smart(doc)

        assert result.mode == "direct"
        assert result.stats.text_layer_pages == 3
        assert result.stats.ocr_pages == 0
        ocr.recognize.assert_not_awaited()

    async def test_scanned_document_without_ocr_falls_back_to_direct(self, make_pipeline, fake_document):
        ocr = _ocr_client(available=False)

        result = await make_pipeline(ocr).extract_smart(fake_document([""] * 4))

        assert result.mode == "direct"
        assert result.stats.ocr_pages == 0
        assert result.full_text == ""
        ocr.recognize.assert_not_awaited()

    async def test_no_ocr_client_at_all(self, make_pipeline, fake_document):
        result = await make_pipeline(None).extract_smart(fake_document([""] * 2))
        assert result.mode == "direct"

    async def test_classification_is_attached(self, make_pipeline, fake_document):
        result = await make_pipeline(_ocr_client()).extract_smart(fake_document(["a" * 1000]))

        assert result.classification is not None
        assert result.classification.is_image_based is False


# ─────────────────────────────────────────────────────────────────────────────
# Hybrid mode details
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestHybridExtraction:

    async def test_only_thin_pages_are_ocrd_and_merged_in_order(self, make_pipeline, fake_document):
        ocr = _ocr_client()
        doc = fake_document(["First page " * 20, "  ", "Third page " * 20])

        result = await make_pipeline(ocr).extract_hybrid(doc)

        assert [p.needs_ocr for p in result.pages] == [False, True, False]
        assert [p.ocr_applied for p in result.pages] == [False, True, False]
        assert result.pages[1].text == "Recognized text of page 2"
        assert result.stats.text_layer_pages == 2
        assert result.stats.ocr_pages == 1
        parts = result.full_text.split("\n\n")
        assert parts[1] == "Recognized text of page 2"
        assert parts[0].startswith("First page")

    async def test_delay_between_ocr_requests_but_not_after_last(self, test_settings, no_sleep, fake_document):
        settings = test_settings.model_copy(update={"ocr_delay_seconds": 2.0})
        pipeline = ExtractionPipeline(_ocr_client(), settings, sleep=no_sleep)

        await pipeline.extract_hybrid(fake_document([""] * 4))

        assert no_sleep.await_count == 3
        no_sleep.assert_awaited_with(2.0)

    async def test_ocr_page_cap(self, make_pipeline, test_settings, fake_document):
        settings = test_settings.model_copy(update={"max_ocr_pages": 2})
        ocr = _ocr_client()

        result = await make_pipeline(ocr, settings).extract_hybrid(fake_document(["short"] * 5))

        assert result.stats.ocr_pages == 2
        # Overflow pages keep their text layer
        assert [p.text for p in result.pages[2:]] == ["short"] * 3
        assert result.stats.text_layer_pages == 3
        assert result.stats.total_pages == 5

    async def test_thin_pages_without_ocr_count_as_text_layer(self, make_pipeline, fake_document):
        result = await make_pipeline(_ocr_client(available=False)).extract_hybrid(fake_document([""] * 3))

        assert (result.stats.text_layer_pages, result.stats.ocr_pages) == (3, 0)

    async def test_ocr_pages_without_client_raises_not_initialized(self, make_pipeline, fake_document):
        with pytest.raises(NotInitializedError):
            await make_pipeline(None)._ocr_pages(fake_document([""]), [1], None)

    async def test_ocr_failure_propagates(self, make_pipeline, fake_document):
        ocr = _ocr_client()
        ocr.recognize.side_effect = ProviderError("vision model unavailable")

        with pytest.raises(ProviderError):
            await make_pipeline(ocr).extract_smart(fake_document([""] * 3))

    async def test_progress_event_sequence(self, make_pipeline, fake_document):
        events = []

        await make_pipeline(_ocr_client()).extract_smart(fake_document([""] * 2), on_progress=events.append)

        stages = [e.stage for e in events]
        assert stages[0] is ProgressStage.DETECTING
        assert stages[-1] is ProgressStage.COMPLETE
        assert ProgressStage.EXTRACT in stages
        assert stages.index(ProgressStage.OCR_START) < stages.index(ProgressStage.OCR)

        ocr_events = [e for e in events if e.stage is ProgressStage.OCR]
        assert [e.phase for e in ocr_events] == ["rendering", "ocr", "rendering", "ocr"]
        assert [(e.current, e.total) for e in ocr_events] == [(1, 2), (1, 2), (2, 2), (2, 2)]

    async def test_extract_events_count_pages(self, make_pipeline, fake_document):
        events = []

        await make_pipeline().extract_direct(fake_document(["a" * 200] * 3), on_progress=events.append)

        extract = [e for e in events if e.stage is ProgressStage.EXTRACT]
        assert [(e.current, e.total) for e in extract] == [(1, 3), (2, 3), (3, 3)]


# ─────────────────────────────────────────────────────────────────────────────
# Helpers and estimates
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestAssemblyAndStats:

    def test_full_text_skips_empty_pages(self):
        pages = [PageRecord(2, "two"), PageRecord(1, "one"), PageRecord(3, "")]
        assert assemble_full_text(pages) == "one\n\ntwo"

    def test_stats_for_text_document(self, fake_document):
        stats = document_stats(fake_document(["a" * 1000] * 3))

        assert stats.pages == 3
        assert stats.estimated_chars == 3000
        assert stats.estimated_chunks == 5          # ceil(3000 / 700)
        assert stats.estimated_seconds == 23        # ceil(5 × 4.5)
        assert stats.needs_ocr is False

    def test_stats_for_scanned_document(self, fake_document):
        stats = document_stats(fake_document([""] * 4))

        assert stats.estimated_chunks == 6          # ceil(4 × 1.5)
        assert stats.estimated_seconds == 27 + 12   # ceil(6 × 4.5) + 3 s per page
        assert stats.needs_ocr is True
