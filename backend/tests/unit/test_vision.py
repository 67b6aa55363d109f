"""
Unit Tests — Multi-page vision batching
════════════════════════════════════════

Coverage targets:
  ✅ Partitioning       → size and count ceilings, oversized single image
  ✅ Direct validation  → no pages / too many / too large, nothing sent
  ✅ Direct call        → sampling parameters, history, placeholder
  ✅ Batch mode         → progress events, 2 s pause between batches only
  ✅ Synthesis          → summaries ordered and labelled with page numbers
  ✅ Timeouts           → reported with the batch number
"""

from __future__ import annotations

import pytest

from docqa.core.errors import NoPagesError, PayloadTooLargeError, ProviderTimeoutError, TooManyPagesError
from docqa.core.events import ProgressStage
from docqa.llm.vision import (
    BATCH_SEPARATOR,
    NO_RESPONSE_PLACEHOLDER,
    BatchResult,
    VisionBatcher,
    create_batches,
    needs_batch_mode,
)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def batcher(mock_chat, test_settings, no_sleep) -> VisionBatcher:
    return VisionBatcher(mock_chat, test_settings, sleep=no_sleep)


def _pages(images) -> list[list[int]]:
    return [[img.page_number for img in batch] for batch in images]


# ─────────────────────────────────────────────────────────────────────────────
# Partitioning
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestCreateBatches:

    def test_count_ceiling(self, make_image):
        images = [make_image(i, 0.4) for i in range(1, 13)]

        batches = create_batches(images, max_size_mb=3.0, max_images=5)

        assert [len(b) for b in batches] == [5, 5, 2]
        assert _pages(batches)[2] == [11, 12]

    def test_size_ceiling(self, make_image):
        images = [make_image(i, 1.2) for i in range(1, 6)]

        batches = create_batches(images, max_size_mb=3.0, max_images=5)

        assert [len(b) for b in batches] == [2, 2, 1]

    def test_oversized_image_gets_its_own_batch(self, make_image):
        images = [make_image(1, 0.5), make_image(2, 4.0), make_image(3, 0.5)]

        assert _pages(create_batches(images)) == [[1], [2], [3]]

    def test_order_and_coverage_preserved(self, make_image):
        images = [make_image(i, 0.9) for i in (4, 2, 9, 7, 1)]

        batches = create_batches(images)

        assert [p for batch in _pages(batches) for p in batch] == [4, 2, 9, 7, 1]

    def test_empty_input(self):
        assert create_batches([]) == []

    def test_invalid_count_ceiling(self, make_image):
        with pytest.raises(ValueError):
            create_batches([make_image(1)], max_images=0)

    def test_batch_mode_decision(self, make_image):
        assert needs_batch_mode([make_image(i, 0.1) for i in range(6)]) is True
        assert needs_batch_mode([make_image(1, 3.1)]) is True
        assert needs_batch_mode([make_image(i, 0.5) for i in range(5)]) is False


# ─────────────────────────────────────────────────────────────────────────────
# Direct path
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestDirectAnalysis:

    async def test_no_pages(self, batcher, mock_chat):
        with pytest.raises(NoPagesError):
            await batcher.analyze_pages([], "what is shown?")
        mock_chat.complete_with_images.assert_not_awaited()

    async def test_too_many_pages(self, batcher, make_image, mock_chat):
        with pytest.raises(TooManyPagesError, match="batch mode"):
            await batcher.analyze_pages([make_image(i) for i in range(1, 7)], "q")
        mock_chat.complete_with_images.assert_not_awaited()

    async def test_payload_too_large(self, batcher, make_image, mock_chat):
        with pytest.raises(PayloadTooLargeError, match="3.5MB"):
            await batcher.analyze_pages([make_image(1, 2.0), make_image(2, 2.0)], "q")
        mock_chat.complete_with_images.assert_not_awaited()

    async def test_single_call_with_images_and_recent_history(self, batcher, make_image, mock_chat):
        history = [{"role": "user", "content": f"turn {i}"} for i in range(5)]

        text = await batcher.analyze_pages([make_image(3), make_image(4)], "Summarize", history)

        assert text == "mock vision answer"
        messages = mock_chat.complete_with_images.await_args.args[0]
        kwargs = mock_chat.complete_with_images.await_args.kwargs
        assert (kwargs["temperature"], kwargs["max_tokens"], kwargs["timeout"]) == (0.7, 8192, 60.0)
        assert "pages 3, 4" in messages[0].content
        assert [m.content for m in messages[1:3]] == ["turn 3", "turn 4"]
        parts = messages[-1].content
        assert parts[0] == {"type": "text", "text": "Summarize"}
        assert [p["type"] for p in parts[1:]] == ["image_url", "image_url"]

    async def test_empty_response_gets_placeholder(self, batcher, make_image, mock_chat):
        mock_chat.complete_with_images.return_value = ""
        assert await batcher.analyze_pages([make_image(1)], "q") == NO_RESPONSE_PLACEHOLDER

    async def test_analyze_picks_direct_for_small_selection(self, batcher, make_image):
        answer = await batcher.analyze([make_image(i, 0.2) for i in range(1, 4)], "q")

        assert answer.mode == "direct"
        assert answer.batch_results == []


# ─────────────────────────────────────────────────────────────────────────────
# Batch path
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestBatchAnalysis:

    async def test_batches_then_synthesis(self, batcher, make_image, mock_chat, no_sleep):
        mock_chat.complete_with_images.side_effect = ["summary A", "summary B", "summary C"]
        mock_chat.complete.return_value = "final answer"
        images = [make_image(i, 0.4) for i in range(1, 13)]
        events = []

        answer = await batcher.analyze(images, "Compare the tables", on_progress=events.append)

        assert answer.mode == "batch"
        assert answer.total_batches == 3
        assert answer.response == "final answer"
        assert [r.pages for r in answer.batch_results] == [[1, 2, 3, 4, 5], [6, 7, 8, 9, 10], [11, 12]]
        assert [c.args[0] for c in no_sleep.await_args_list] == [2.0, 2.0]

        stages = [e.stage for e in events]
        assert stages == [
            ProgressStage.START,
            ProgressStage.BATCH, ProgressStage.BATCH, ProgressStage.BATCH,
            ProgressStage.SYNTHESIZE,
            ProgressStage.COMPLETE,
        ]
        assert events[0].total == 3
        assert events[3].details["pages"] == [11, 12]

    async def test_batch_request_parameters(self, batcher, make_image, mock_chat):
        await batcher.analyze_batch([make_image(6), make_image(7)], 1, 3, "find totals")

        messages = mock_chat.complete_with_images.await_args.args[0]
        kwargs = mock_chat.complete_with_images.await_args.kwargs
        assert (kwargs["temperature"], kwargs["max_tokens"], kwargs["timeout"]) == (0.3, 4096, 90.0)
        assert "batch 2/3" in messages[0].content
        assert "pages 6, 7" in messages[0].content
        assert '"find totals"' in messages[1].content[0]["text"]

    async def test_synthesis_orders_and_labels_batches(self, batcher, mock_chat):
        results = [
            BatchResult(batch_index=1, pages=[6, 7], summary="second"),
            BatchResult(batch_index=0, pages=[1, 2], summary="first"),
        ]

        await batcher.synthesize(results, "What changed?")

        messages = mock_chat.complete.await_args.args[0]
        assert messages[-1].content == (
            "## Batch analysis results\n\n"
            "## Batch 1 (pages 1, 2)\nfirst"
            f"{BATCH_SEPARATOR}"
            "## Batch 2 (pages 6, 7)\nsecond"
            f"{BATCH_SEPARATOR}"
            "## User question\nWhat changed?"
        )
        assert mock_chat.complete.await_args.kwargs["timeout"] == 60.0

    async def test_batch_timeout_names_the_batch(self, batcher, make_image, mock_chat):
        mock_chat.complete_with_images.side_effect = ProviderTimeoutError("timed out", timeout=90.0)

        with pytest.raises(ProviderTimeoutError, match="Batch 1 timed out"):
            await batcher.batch_analyze([make_image(i, 0.4) for i in range(1, 8)], "q")

        mock_chat.complete.assert_not_awaited()

    async def test_batch_mode_without_pages(self, batcher):
        with pytest.raises(NoPagesError):
            await batcher.batch_analyze([], "q")

    async def test_single_batch_has_no_pause(self, batcher, make_image, no_sleep):
        await batcher.batch_analyze([make_image(1, 0.1)], "q")
        no_sleep.assert_not_awaited()
