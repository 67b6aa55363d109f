"""
Extraction Pipeline — text layer first, vision OCR where the layer is thin
═══════════════════════════════════════════════════════════════════════════

Modes:

  direct   every page's text layer, in page order. Always succeeds on a
           readable PDF (scanned pages simply contribute nothing).

  smart    classify once (processing.classifier), then
             image-based AND OCR available → hybrid
             otherwise                     → direct

  hybrid   pass 1: text layer of every page; pages with fewer than
                   `ocr_threshold` characters are marked needs_ocr
           pass 2: each marked page is rendered (2.0×, JPEG 90→30) and
                   sent to the vision OCR client, one page at a time,
                   with a fixed delay between requests
           merge:  OCR text replaces the marked pages, by page number

Progress events (core.events):
  detecting → extract(current/total) → ocr_start → ocr(rendering|ocr) → complete

Failure policy: OCR errors propagate. Pages are never dropped silently;
the caller decides whether the ingestion is aborted.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from docqa.core.config import Settings, get_settings
from docqa.core.errors import NotInitializedError
from docqa.core.events import ProgressCallback, ProgressEvent, ProgressStage, emit
from docqa.processing.classifier import Classification, classify_document
from docqa.processing.ocr import VisionOCRClient
from docqa.processing.pdf import PdfDocument

logger = logging.getLogger(__name__)

PAGE_SEPARATOR = "\n\n"

# Rough throughput figures used by document_stats()
_CHARS_PER_CHUNK_EST     = 700
_CHUNKS_PER_SCANNED_PAGE = 1.5
_SECONDS_PER_EMBEDDING   = 4.5
_SECONDS_PER_OCR_PAGE    = 3


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class PageRecord:
    page_number: int
    text:        str
    needs_ocr:   bool = False
    ocr_applied: bool = False


@dataclass
class ExtractionStats:
    """
    total_pages      : pages in the document
    text_layer_pages : pages served by the text layer
    ocr_pages        : pages served by OCR
    """
    total_pages:      int
    text_layer_pages: int
    ocr_pages:        int
    is_image_based:   bool = False

    @property
    def ocr_used(self) -> bool:
        return self.ocr_pages > 0


@dataclass
class ExtractionResult:
    pages:          list[PageRecord]
    stats:          ExtractionStats
    full_text:      str
    mode:           str                          # "direct" | "hybrid"
    classification: Classification | None = None
    elapsed_ms:     float = 0.0


@dataclass
class DocumentStats:
    pages:             int
    estimated_chars:   int
    estimated_chunks:  int
    estimated_seconds: int
    is_image_based:    bool
    text_density:      float
    needs_ocr:         bool = field(init=False)

    def __post_init__(self) -> None:
        self.needs_ocr = self.is_image_based


def assemble_full_text(pages: list[PageRecord]) -> str:
    """Non-empty pages in page order, separated by blank lines."""
    ordered = sorted(pages, key=lambda p: p.page_number)
    return PAGE_SEPARATOR.join(p.text for p in ordered if p.text)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class ExtractionPipeline:
    """
    Usage:
        pipeline = ExtractionPipeline(ocr_client=VisionOCRClient(chat))
        with PyMuPDFDocument.open(pdf_bytes) as doc:
            result = await pipeline.extract_smart(doc, on_progress=print)
    """

    def __init__(
        self,
        ocr_client: VisionOCRClient | None = None,
        settings:   Settings | None = None,
        sleep:      Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._ocr      = ocr_client
        self._settings = settings or get_settings()
        self._sleep    = sleep

    @property
    def ocr_available(self) -> bool:
        return self._ocr is not None and self._ocr.is_available

    # ------------------------------------------------------------------
    # Smart mode
    # ------------------------------------------------------------------

    async def extract_smart(
        self,
        document:    PdfDocument,
        on_progress: ProgressCallback | None = None,
    ) -> ExtractionResult:
        t0 = time.monotonic()
        emit(on_progress, ProgressEvent(ProgressStage.DETECTING, "Detecting PDF type..."))

        classification = classify_document(document, self._settings.classifier_sample_pages)

        if classification.is_image_based and self.ocr_available:
            emit(on_progress, ProgressEvent(
                ProgressStage.DETECTING,
                "Image-based PDF detected, using OCR...",
                details={"classification": classification},
            ))
            result = await self._extract_hybrid(document, on_progress)
        else:
            if classification.is_image_based:
                logger.warning(
                    "Extraction | image-based PDF but no OCR credential, using the text layer only",
                )
            emit(on_progress, ProgressEvent(
                ProgressStage.DETECTING,
                "Text-based PDF detected, reading the text layer...",
                details={"classification": classification},
            ))
            result = await self._extract_direct(document, on_progress)

        result.classification = classification
        result.stats.is_image_based = classification.is_image_based
        result.elapsed_ms = (time.monotonic() - t0) * 1000
        self._complete(result, on_progress)
        return result

    # ------------------------------------------------------------------
    # Direct mode
    # ------------------------------------------------------------------

    async def extract_direct(
        self,
        document:    PdfDocument,
        on_progress: ProgressCallback | None = None,
    ) -> ExtractionResult:
        t0 = time.monotonic()
        result = await self._extract_direct(document, on_progress)
        result.elapsed_ms = (time.monotonic() - t0) * 1000
        self._complete(result, on_progress)
        return result

    async def _extract_direct(
        self,
        document:    PdfDocument,
        on_progress: ProgressCallback | None,
    ) -> ExtractionResult:
        total = document.page_count
        pages: list[PageRecord] = []

        for page_number in range(1, total + 1):
            emit(on_progress, ProgressEvent(
                ProgressStage.EXTRACT,
                f"Parsing... ({page_number}/{total})",
                current=page_number, total=total,
            ))
            pages.append(PageRecord(page_number, document.page_text(page_number).strip()))

        stats = ExtractionStats(total_pages=total, text_layer_pages=total, ocr_pages=0)
        return ExtractionResult(
            pages=pages, stats=stats,
            full_text=assemble_full_text(pages), mode="direct",
        )

    # ------------------------------------------------------------------
    # Hybrid mode
    # ------------------------------------------------------------------

    async def extract_hybrid(
        self,
        document:    PdfDocument,
        on_progress: ProgressCallback | None = None,
    ) -> ExtractionResult:
        t0 = time.monotonic()
        result = await self._extract_hybrid(document, on_progress)
        result.elapsed_ms = (time.monotonic() - t0) * 1000
        self._complete(result, on_progress)
        return result

    async def _extract_hybrid(
        self,
        document:    PdfDocument,
        on_progress: ProgressCallback | None,
    ) -> ExtractionResult:
        threshold = self._settings.ocr_threshold
        total = document.page_count
        pages: list[PageRecord] = []

        # ── Pass 1: text layer ────────────────────────────────────────
        for page_number in range(1, total + 1):
            emit(on_progress, ProgressEvent(
                ProgressStage.EXTRACT,
                f"Extracting text layer... ({page_number}/{total})",
                current=page_number, total=total,
            ))
            text = document.page_text(page_number).strip()
            pages.append(PageRecord(page_number, text, needs_ocr=len(text) < threshold))

        marked = [p for p in pages if p.needs_ocr]
        cap = self._settings.max_ocr_pages
        to_ocr = marked if cap is None else marked[:cap]
        if len(to_ocr) < len(marked):
            logger.warning(
                "Extraction | %d pages need OCR, capped at %d (max_ocr_pages)",
                len(marked), len(to_ocr),
            )

        # ── Pass 2: OCR ───────────────────────────────────────────────
        if to_ocr and self.ocr_available:
            emit(on_progress, ProgressEvent(
                ProgressStage.OCR_START,
                f"Starting OCR on {len(to_ocr)} pages...",
                total=len(to_ocr),
                details={"ocr_pages": len(to_ocr)},
            ))
            recognized = await self._ocr_pages(document, [p.page_number for p in to_ocr], on_progress)

            # ── Merge by page number ──────────────────────────────────
            by_number = {p.page_number: p for p in pages}
            for page_number, text in recognized.items():
                record = by_number[page_number]
                record.text = text.strip()
                record.ocr_applied = True
        elif to_ocr:
            logger.warning("Extraction | %d pages need OCR but no OCR client is available", len(to_ocr))

        stats = ExtractionStats(
            total_pages=total,
            text_layer_pages=sum(1 for p in pages if not p.ocr_applied),
            ocr_pages=sum(1 for p in pages if p.ocr_applied),
        )
        logger.info(
            "Extraction | mode=hybrid pages=%d text_layer=%d ocr=%d",
            stats.total_pages, stats.text_layer_pages, stats.ocr_pages,
        )
        return ExtractionResult(
            pages=pages, stats=stats,
            full_text=assemble_full_text(pages), mode="hybrid",
        )

    async def _ocr_pages(
        self,
        document:     PdfDocument,
        page_numbers: list[int],
        on_progress:  ProgressCallback | None,
    ) -> dict[int, str]:
        """OCR pages sequentially; a fixed delay separates consecutive requests."""
        if self._ocr is None:
            raise NotInitializedError("chat")
        loop = asyncio.get_running_loop()
        max_bytes = int(self._settings.ocr_max_image_mb * 1024 * 1024)
        results: dict[int, str] = {}
        total = len(page_numbers)

        for index, page_number in enumerate(page_numbers, start=1):
            emit(on_progress, ProgressEvent(
                ProgressStage.OCR,
                f"Rendering page {page_number}...",
                current=index, total=total, phase="rendering",
                details={"page_number": page_number},
            ))
            image = await loop.run_in_executor(
                None, document.render_page, page_number, self._settings.ocr_render_scale, max_bytes,
            )

            emit(on_progress, ProgressEvent(
                ProgressStage.OCR,
                f"OCR page {page_number}... ({index}/{total})",
                current=index, total=total, phase="ocr",
                details={"page_number": page_number},
            ))
            results[page_number] = await self._ocr.recognize(image, page_number)

            if index < total:
                await self._sleep(self._settings.ocr_delay_seconds)

        return results

    def _complete(self, result: ExtractionResult, on_progress: ProgressCallback | None) -> None:
        emit(on_progress, ProgressEvent(
            ProgressStage.COMPLETE,
            f"Extraction complete: {result.stats.total_pages} pages "
            f"({result.stats.ocr_pages} via OCR)",
            details={"stats": result.stats},
        ))


# ---------------------------------------------------------------------------
# Pre-upload estimate
# ---------------------------------------------------------------------------

def document_stats(document: PdfDocument, sample_pages: int = 3) -> DocumentStats:
    """Page count, character count and a processing-time estimate."""
    total_chars = sum(len(document.page_text(n)) for n in range(1, document.page_count + 1))
    classification = classify_document(document, sample_pages)

    if classification.is_image_based:
        chunks = math.ceil(document.page_count * _CHUNKS_PER_SCANNED_PAGE)
    else:
        chunks = math.ceil(total_chars / _CHARS_PER_CHUNK_EST)

    seconds = math.ceil(chunks * _SECONDS_PER_EMBEDDING)
    if classification.is_image_based:
        seconds += document.page_count * _SECONDS_PER_OCR_PAGE

    return DocumentStats(
        pages=document.page_count,
        estimated_chars=total_chars,
        estimated_chunks=chunks,
        estimated_seconds=seconds,
        is_image_based=classification.is_image_based,
        text_density=classification.text_density,
    )
