"""
Document Processing Package
════════════════════════════

The ingestion half of the pipeline:

  PDF → Classification → Extraction (text layer / vision OCR) → Chunking → Embedding

Modules
───────
  pdf.py         PyMuPDF page access and JPEG rasterization
  classifier.py  text-layer vs scanned detection by text density
  ocr.py         vision-model OCR of a rendered page
  extractor.py   direct / smart / hybrid extraction with progress events
  chunking.py    sentence-bounded chunker with sentence overlap
  embeddings.py  paced, retrying embedding client with batch progress

Design principles
─────────────────
  • Every component is dependency-injected; no module-level clients.
  • Provider calls are serialized through per-provider RateLimiters.
  • Every step emits structured log lines.
"""

from docqa.processing.chunking import SemanticChunker, chunk_text
from docqa.processing.classifier import Classification, classify_document
from docqa.processing.embeddings import EmbeddingClient
from docqa.processing.extractor import ExtractionPipeline, ExtractionResult, document_stats
from docqa.processing.pdf import PageImage, PyMuPDFDocument

__all__ = [
    "Classification",
    "EmbeddingClient",
    "ExtractionPipeline",
    "ExtractionResult",
    "PageImage",
    "PyMuPDFDocument",
    "SemanticChunker",
    "chunk_text",
    "classify_document",
    "document_stats",
]
