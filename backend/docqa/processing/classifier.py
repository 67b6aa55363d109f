"""
Document Classifier — text-layer vs scanned PDF detection

Samples the first N pages (default 3) and measures how much text the
text layer carries per unit of page area:

  text_density = non-whitespace chars / total page area (pt²)

  image-based  ⇔  text_density < 0.001  OR  total chars < 100

A US-letter page (612 × 792 pt) therefore needs roughly 485 characters
to count as machine-readable. Pure function of the sampled pages.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from docqa.core.errors import EmptyDocumentError
from docqa.processing.pdf import PdfDocument

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_PAGES  = 3
MIN_TEXT_DENSITY      = 0.001
MIN_TOTAL_CHARS       = 100

_WHITESPACE_RE = re.compile(r"\s")


@dataclass
class Classification:
    is_image_based: bool
    text_density:   float
    total_chars:    int
    pages_sampled:  int
    confidence:     str     # "high" when image-based, else "low"


def classify_document(document: PdfDocument, sample_pages: int = DEFAULT_SAMPLE_PAGES) -> Classification:
    """
    Classify a document as image-based (needs OCR) or text-based.

    Raises:
        EmptyDocumentError: the document has no pages.
    """
    page_count = document.page_count
    if page_count <= 0:
        raise EmptyDocumentError("Cannot classify a PDF with no pages")

    pages_to_check = min(max(sample_pages, 1), page_count)
    total_chars = 0
    total_area = 0.0

    for page_number in range(1, pages_to_check + 1):
        text = document.page_text(page_number)
        total_chars += len(_WHITESPACE_RE.sub("", text))
        width, height = document.page_size(page_number)
        total_area += width * height

    density = total_chars / total_area if total_area > 0 else 0.0
    is_image_based = density < MIN_TEXT_DENSITY or total_chars < MIN_TOTAL_CHARS

    logger.info(
        "Classifier | pages_sampled=%d chars=%d density=%.5f image_based=%s",
        pages_to_check, total_chars, density, is_image_based,
    )
    return Classification(
        is_image_based=is_image_based,
        text_density=density,
        total_chars=total_chars,
        pages_sampled=pages_to_check,
        confidence="high" if is_image_based else "low",
    )
