"""
Vision OCR — page images to text through the chat provider's vision model.

The OCR prompt asks for a faithful transcription only:
  - keep the original structure and reading order
  - tables as Markdown tables
  - unreadable glyphs as [?]
  - no commentary

Requests go through ChatClient, so the chat provider's RateLimiter
applies on top of the extractor's fixed inter-page delay.
"""

from __future__ import annotations

import logging
from typing import Final

from langchain_core.messages import HumanMessage, SystemMessage

from docqa.llm.chat import ChatClient, image_part
from docqa.processing.pdf import PageImage

logger = logging.getLogger(__name__)

OCR_TEMPERATURE: Final[float] = 0.1
OCR_MAX_TOKENS:  Final[int]   = 4096
UNREADABLE_MARK: Final[str]   = "[?]"

_OCR_SYSTEM_PROMPT: Final[str] = f"""\
You are a professional OCR assistant. Transcribe all text in the image accurately.

Rules:
1. Recognize every piece of text: titles, paragraphs, tables, lists.
2. Preserve the original structure and formatting.
3. Convert tables to Markdown tables.
4. For multi-column layouts, output the text in reading order.
5. Ignore page numbers, running headers and footers.
6. Output only the recognized text, without explanations or comments.
7. Mark blurred or unreadable characters with {UNREADABLE_MARK}.
"""


class VisionOCRClient:
    """recognize(image, page_hint) -> transcribed text."""

    def __init__(self, chat: ChatClient) -> None:
        self._chat = chat

    @property
    def is_available(self) -> bool:
        return self._chat.is_initialized

    async def recognize(self, image: PageImage, page_hint: int | None = None) -> str:
        page_number = page_hint if page_hint is not None else image.page_number
        messages = [
            SystemMessage(content=_OCR_SYSTEM_PROMPT),
            HumanMessage(content=[
                {"type": "text", "text": f"Transcribe all text in this image (page {page_number}):"},
                image_part(image),
            ]),
        ]
        text = await self._chat.complete_with_images(
            messages,
            temperature=OCR_TEMPERATURE,
            max_tokens=OCR_MAX_TOKENS,
            label=f"ocr page={page_number}",
        )
        logger.debug("OCR | page=%d chars=%d", page_number, len(text))
        return text
