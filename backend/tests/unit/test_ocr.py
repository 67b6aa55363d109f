"""
Unit Tests — VisionOCRClient
"""

from __future__ import annotations

import pytest

from docqa.processing.ocr import OCR_MAX_TOKENS, OCR_TEMPERATURE, UNREADABLE_MARK, VisionOCRClient
from docqa.processing.pdf import PageImage


@pytest.mark.unit
class TestVisionOCRClient:

    async def test_single_image_request(self, mock_chat):
        mock_chat.complete_with_images.return_value = "| a | b |\n|---|---|"
        image = PageImage(page_number=4, base64="QUJD")

        text = await VisionOCRClient(mock_chat).recognize(image, 4)

        assert text == "| a | b |\n|---|---|"
        messages = mock_chat.complete_with_images.await_args.args[0]
        kwargs = mock_chat.complete_with_images.await_args.kwargs
        assert (kwargs["temperature"], kwargs["max_tokens"]) == (OCR_TEMPERATURE, OCR_MAX_TOKENS)
        assert UNREADABLE_MARK in messages[0].content
        assert "page 4" in messages[1].content[0]["text"]
        assert messages[1].content[1]["image_url"]["url"] == "data:image/jpeg;base64,QUJD"

    async def test_page_hint_defaults_to_image_page(self, mock_chat):
        await VisionOCRClient(mock_chat).recognize(PageImage(page_number=9, base64="QQ=="))

        assert "page 9" in mock_chat.complete_with_images.await_args.args[0][1].content[0]["text"]

    def test_availability_follows_chat_credential(self, mock_chat):
        mock_chat.is_initialized = False
        assert VisionOCRClient(mock_chat).is_available is False
