"""
Document Ingestion Service

Orchestrates the upload pipeline:
  1. Validate the upload (non-empty, %PDF magic bytes, sanitized name)
  2. Smart extraction (text layer, vision OCR for scanned pages)
  3. Sentence-bounded chunking
  4. Zero chunks → EmptyExtractionError (nothing is written)
  5. Batch embedding, one paced request per chunk
  6. Atomic write of the document and all its chunks

Every chunk carries metadata {"file_name", "ocr_used"}. A failure at any
step before 6 leaves the store untouched; step 6 is a single transaction.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, ContextManager

from docqa.core.config import Settings, get_settings
from docqa.core.errors import EmptyExtractionError, UnsupportedFileError
from docqa.core.events import ProgressCallback
from docqa.models.knowledge import DEFAULT_CATEGORY
from docqa.processing.chunking import SemanticChunker
from docqa.processing.embeddings import EmbeddingClient
from docqa.processing.extractor import DocumentStats, ExtractionPipeline, document_stats
from docqa.processing.pdf import PdfDocument, PyMuPDFDocument
from docqa.vectorstore.base import ChunkInput
from docqa.vectorstore.sql_store import KnowledgeStore

logger = logging.getLogger(__name__)

DocumentOpener = Callable[[bytes], ContextManager[PdfDocument]]

_PDF_MAGIC = b"%PDF"


def _sanitize_filename(filename: str) -> str:
    """Basename only, control characters removed, capped at 200 chars."""
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    safe = re.sub(r"[\x00-\x1f]", "", basename).strip()
    return safe[:200] or "document.pdf"


def _validate_pdf(pdf_bytes: bytes) -> None:
    if not pdf_bytes:
        raise UnsupportedFileError("The uploaded file is empty")
    if not pdf_bytes[:1024].lstrip().startswith(_PDF_MAGIC):
        raise UnsupportedFileError("Only PDF files are supported")


@dataclass
class IngestionResult:
    document_id:         int
    file_name:           str
    category:            str
    chunk_count:         int
    embedding_dimension: int
    total_pages:         int
    ocr_pages:           int
    mode:                str
    elapsed_ms:          float


class IngestionService:
    """
    All dependencies are injected (testable, no hidden globals).

    Usage:
        service = IngestionService(store, embedder, ExtractionPipeline(ocr))
        result = await service.ingest(pdf_bytes, "report.pdf", "Finance", on_progress=print)
    """

    def __init__(
        self,
        store:      KnowledgeStore,
        embedder:   EmbeddingClient,
        extraction: ExtractionPipeline,
        chunker:    SemanticChunker | None = None,
        settings:   Settings | None = None,
        opener:     DocumentOpener = PyMuPDFDocument.open,
    ) -> None:
        self._settings   = settings or get_settings()
        self._store      = store
        self._embedder   = embedder
        self._extraction = extraction
        self._chunker    = chunker or SemanticChunker(
            self._settings.chunk_max_size, self._settings.chunk_overlap_sentences,
        )
        self._opener = opener

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def ingest(
        self,
        pdf_bytes:   bytes,
        file_name:   str,
        category:    str | None = DEFAULT_CATEGORY,
        on_progress: ProgressCallback | None = None,
    ) -> IngestionResult:
        """
        Full ingestion pipeline.

        Raises:
            UnsupportedFileError: not a PDF.
            EmptyExtractionError: no chunk survived extraction + chunking.
            NotInitializedError / RateLimitedError / ProviderError from the
            OCR and embedding providers.
        """
        t0 = time.monotonic()
        _validate_pdf(pdf_bytes)
        file_name = _sanitize_filename(file_name)
        category = (category or "").strip() or DEFAULT_CATEGORY

        logger.info("Ingest start | file=%s size=%d category=%s", file_name, len(pdf_bytes), category)

        # ---- Step 1: Extraction --------------------------------------
        with self._opener(pdf_bytes) as document:
            extraction = await self._extraction.extract_smart(document, on_progress)

        # ---- Step 2: Chunking ----------------------------------------
        texts = self._chunker.chunk(extraction.full_text)
        if not texts:
            logger.warning(
                "Ingest aborted | file=%s pages=%d chars=%d: no usable chunks",
                file_name, extraction.stats.total_pages, len(extraction.full_text),
            )
            raise EmptyExtractionError(
                f"No usable text could be extracted from {file_name}; "
                "the PDF may be scanned and OCR unavailable, or empty"
            )

        # ---- Step 3: Embedding ---------------------------------------
        vectors = await self._embedder.embed_batch(texts, on_progress)

        dimension = len(vectors[0])
        if dimension != self._settings.embedding_dimensions:
            logger.warning(
                "Ingest | embedding dimension %d differs from configured %d",
                dimension, self._settings.embedding_dimensions,
            )

        # ---- Step 4: Atomic write ------------------------------------
        metadata = {"file_name": file_name, "ocr_used": extraction.stats.ocr_used}
        document_row = await self._store.add_document(
            file_name,
            [ChunkInput(content=t, embedding=v, metadata=dict(metadata)) for t, v in zip(texts, vectors)],
            category=category,
        )

        result = IngestionResult(
            document_id=document_row.id,
            file_name=file_name,
            category=category,
            chunk_count=len(texts),
            embedding_dimension=dimension,
            total_pages=extraction.stats.total_pages,
            ocr_pages=extraction.stats.ocr_pages,
            mode=extraction.mode,
            elapsed_ms=(time.monotonic() - t0) * 1000,
        )
        logger.info(
            "Ingest complete | doc=%d file=%s pages=%d ocr_pages=%d chunks=%d elapsed_ms=%.0f",
            result.document_id, file_name, result.total_pages, result.ocr_pages,
            result.chunk_count, result.elapsed_ms,
        )
        return result

    def estimate(self, pdf_bytes: bytes) -> DocumentStats:
        """Page count and processing-time estimate, without any provider call."""
        _validate_pdf(pdf_bytes)
        with self._opener(pdf_bytes) as document:
            return document_stats(document, self._settings.classifier_sample_pages)
