"""
PDF page access and rasterization (PyMuPDF).

The classifier and extractor only see the PdfDocument protocol:

  page_count            number of pages
  page_text(n)          text-layer content of page n (1-based)
  page_size(n)          (width, height) in points at scale 1.0
  render_page(n, ...)   JPEG PageImage sized for a vision request

PyMuPDFDocument is the production implementation; tests substitute
in-memory fakes.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

_MB = 1024 * 1024

# Rasterization for OCR
OCR_RENDER_SCALE   = 2.0
OCR_MAX_BASE64_MB  = 3.5
JPEG_START_QUALITY = 90
JPEG_MIN_QUALITY   = 30
JPEG_QUALITY_STEP  = 10

# Page capture for interactive vision analysis
CAPTURE_SCALE          = 1.5
CAPTURE_FALLBACK_SCALE = 1.0
CAPTURE_START_QUALITY  = 85
CAPTURE_FALLBACK_QUALITY = 70
CAPTURE_MAX_KB         = 800
BASE64_OVERHEAD        = 1.33


@dataclass
class PageImage:
    """
    A rendered page, held in memory for one vision session only.

    page_number : 1-based page index
    base64      : base64-encoded JPEG bytes (no data: prefix)
    quality     : JPEG quality actually used (30–90)
    scale       : render scale relative to 72 dpi
    """
    page_number: int
    base64:      str
    mime_type:   str   = "image/jpeg"
    quality:     int   = JPEG_START_QUALITY
    scale:       float = OCR_RENDER_SCALE
    width:       int   = 0
    height:      int   = 0

    @property
    def size_bytes(self) -> int:
        """Payload size as sent to the provider (base64 length)."""
        return len(self.base64)

    @property
    def size_mb(self) -> float:
        return self.size_bytes / _MB


class PdfDocument(Protocol):
    @property
    def page_count(self) -> int: ...

    def page_text(self, page_number: int) -> str: ...

    def page_size(self, page_number: int) -> tuple[float, float]: ...

    def render_page(
        self,
        page_number:      int,
        scale:            float = OCR_RENDER_SCALE,
        max_base64_bytes: int   = int(OCR_MAX_BASE64_MB * _MB),
    ) -> PageImage: ...


class PyMuPDFDocument:
    """
    PdfDocument backed by an open fitz.Document.

    Usage:
        with PyMuPDFDocument.open(pdf_bytes) as doc:
            text = doc.page_text(1)
    """

    def __init__(self, doc) -> None:
        self._doc = doc

    @classmethod
    def open(cls, pdf_bytes: bytes) -> "PyMuPDFDocument":
        import fitz  # PyMuPDF

        return cls(fitz.open(stream=pdf_bytes, filetype="pdf"))

    def __enter__(self) -> "PyMuPDFDocument":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._doc.close()

    @property
    def page_count(self) -> int:
        return self._doc.page_count

    def _page(self, page_number: int):
        if not 1 <= page_number <= self._doc.page_count:
            raise IndexError(f"page {page_number} out of range 1..{self._doc.page_count}")
        return self._doc.load_page(page_number - 1)

    def page_text(self, page_number: int) -> str:
        return self._page(page_number).get_text("text") or ""

    def page_size(self, page_number: int) -> tuple[float, float]:
        rect = self._page(page_number).rect
        return rect.width, rect.height

    def render_page(
        self,
        page_number:      int,
        scale:            float = OCR_RENDER_SCALE,
        max_base64_bytes: int   = int(OCR_MAX_BASE64_MB * _MB),
    ) -> PageImage:
        """
        Render at `scale`, then lower JPEG quality in steps of 10 until the
        base64 payload fits `max_base64_bytes` or quality reaches 30.
        """
        pixmap = self._pixmap(page_number, scale)
        quality = JPEG_START_QUALITY
        encoded = _encode_jpeg(pixmap, quality)

        while len(encoded) > max_base64_bytes and quality > JPEG_MIN_QUALITY:
            quality -= JPEG_QUALITY_STEP
            encoded = _encode_jpeg(pixmap, quality)

        logger.debug(
            "Render | page=%d scale=%.1f quality=%d size_kb=%.0f",
            page_number, scale, quality, len(encoded) / 1024,
        )
        return PageImage(
            page_number=page_number,
            base64=encoded,
            quality=quality,
            scale=scale,
            width=pixmap.width,
            height=pixmap.height,
        )

    def capture_page(self, page_number: int, max_size_kb: int = CAPTURE_MAX_KB) -> PageImage:
        """
        Lighter capture used for interactive multi-page analysis: scale 1.5
        starting at quality 85; if still over the target at quality 30,
        re-render at scale 1.0 with quality 70.
        """
        limit = int(max_size_kb * 1024 * BASE64_OVERHEAD)
        pixmap = self._pixmap(page_number, CAPTURE_SCALE)
        quality = CAPTURE_START_QUALITY
        encoded = _encode_jpeg(pixmap, quality)

        while len(encoded) > limit and quality > JPEG_MIN_QUALITY:
            quality -= JPEG_QUALITY_STEP
            encoded = _encode_jpeg(pixmap, quality)

        scale = CAPTURE_SCALE
        if len(encoded) > limit:
            scale = CAPTURE_FALLBACK_SCALE
            quality = CAPTURE_FALLBACK_QUALITY
            pixmap = self._pixmap(page_number, scale)
            encoded = _encode_jpeg(pixmap, quality)

        return PageImage(
            page_number=page_number,
            base64=encoded,
            quality=quality,
            scale=scale,
            width=pixmap.width,
            height=pixmap.height,
        )

    def _pixmap(self, page_number: int, scale: float):
        import fitz

        return self._page(page_number).get_pixmap(matrix=fitz.Matrix(scale, scale))


def _encode_jpeg(pixmap, quality: int) -> str:
    return base64.b64encode(pixmap.tobytes("jpeg", jpg_quality=quality)).decode("ascii")
