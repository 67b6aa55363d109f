"""
Multi-Page Vision Batcher — analyze many page images, then synthesize
══════════════════════════════════════════════════════════════════════

The vision endpoint accepts at most 5 images and ~4 MB of base64 per
request, so larger page selections are processed in two phases:

  create_batches()     greedy partition, every batch ≤ 3.0 MB and ≤ 5 images
        │
        ▼
  analyze_batch() × N  one vision call per batch (90 s timeout), asking for
        │              a "### Page X" summary per page; 2 s pause between
        ▼              consecutive batches
  synthesize()         one text-only call over all summaries, ordered by
                       batch index and labelled with page numbers (60 s)

Direct path:
  analyze_pages()      a single vision call for ≤ 5 pages and ≤ 3.5 MB;
                       the caps are checked locally before anything is sent

analyze() picks the direct path when the selection is ≤ 3.0 MB and ≤ 5
pages, else batch mode.

Progress events (core.events):
  start(total_batches) → batch(current, total_batches, pages) → synthesize → complete
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from docqa.core.config import Settings, get_settings
from docqa.core.errors import (
    NoPagesError,
    PayloadTooLargeError,
    ProviderTimeoutError,
    TooManyPagesError,
)
from docqa.core.events import ProgressCallback, ProgressEvent, ProgressStage, emit
from docqa.llm.chat import ChatClient, history_to_messages, image_part
from docqa.processing.pdf import PageImage

logger = logging.getLogger(__name__)

_MB = 1024 * 1024

NO_RESPONSE_PLACEHOLDER = "(no response content)"
BATCH_SEPARATOR = "\n\n---\n\n"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class BatchResult:
    batch_index: int            # 0-based
    pages:       list[int]
    summary:     str


@dataclass
class VisionAnswer:
    response:      str
    mode:          str                           # "direct" | "batch"
    batch_results: list[BatchResult] = field(default_factory=list)
    total_batches: int = 1


# ---------------------------------------------------------------------------
# Partitioning
# ---------------------------------------------------------------------------

def calculate_images_size_mb(images: Sequence[PageImage]) -> float:
    return sum(img.size_bytes for img in images) / _MB


def create_batches(
    images:      Sequence[PageImage],
    max_size_mb: float = 3.0,
    max_images:  int = 5,
) -> list[list[PageImage]]:
    """
    Greedy partition in input order.

    A new batch starts when the next image would push the current one past
    `max_size_mb` (only if the batch already holds something) or when the
    current one already holds `max_images`. An image larger than the size
    ceiling therefore gets a batch of its own.
    """
    if max_images < 1:
        raise ValueError("max_images must be at least 1")

    batches: list[list[PageImage]] = []
    current: list[PageImage] = []
    current_size = 0.0

    for image in images:
        size = image.size_mb
        would_exceed_size  = bool(current) and current_size + size > max_size_mb
        would_exceed_count = len(current) >= max_images

        if would_exceed_size or would_exceed_count:
            batches.append(current)
            current = []
            current_size = 0.0

        current.append(image)
        current_size += size

    if current:
        batches.append(current)
    return batches


def needs_batch_mode(images: Sequence[PageImage], max_size_mb: float = 3.0, max_images: int = 5) -> bool:
    return len(images) > max_images or calculate_images_size_mb(images) > max_size_mb


def _page_list(images: Sequence[PageImage]) -> str:
    return ", ".join(str(img.page_number) for img in images)


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_DIRECT_SYSTEM_PROMPT = """\
You are a professional PDF analysis assistant. The user has provided {count} PDF page images (pages {pages}).

Rules:
1. Analyze all text, charts and tables in every image carefully.
2. If content continues across pages, analyze it as a whole.
3. Answer in Markdown; format tables as Markdown tables.
4. Cite page numbers when referring to specific pages.
5. Base the answer on the images only; do not make things up.
"""

_BATCH_SYSTEM_PROMPT = """\
You are a professional PDF analysis assistant. This is batch {batch}/{total} of a batch analysis.

You are analyzing pages {pages}. Please:
1. Describe all important content on these pages in detail (text, tables, charts).
2. Convert any tables to Markdown.
3. Flag content that appears to continue on other pages (such as tables spanning pages).
4. Keep the content complete; do not omit important information.

Output format:
### Page X
[summary of that page]

### Page Y
[summary of that page]
"""

_SYNTHESIS_SYSTEM_PROMPT = """\
You are a professional document analysis assistant. Below are the results of analyzing several PDF pages in batches.

Answer the user's question from these results. Rules:
1. Integrate the information from all batches.
2. Merge tables or content that span pages.
3. Use Markdown and keep tables complete.
4. Cite the source page numbers.
5. If the information is insufficient to answer, say so.
"""


# ---------------------------------------------------------------------------
# Batcher
# ---------------------------------------------------------------------------

class VisionBatcher:
    """
    Usage:
        batcher = VisionBatcher(chat_client)
        answer = await batcher.analyze(images, "Summarize the tables", history, on_progress=print)
    """

    def __init__(
        self,
        chat:     ChatClient,
        settings: Settings | None = None,
        sleep:    Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._chat     = chat
        self._settings = settings or get_settings()
        self._sleep    = sleep

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def analyze(
        self,
        images:      Sequence[PageImage],
        prompt:      str,
        history:     Sequence[Any] = (),
        on_progress: ProgressCallback | None = None,
    ) -> VisionAnswer:
        cfg = self._settings
        if images and not needs_batch_mode(images, cfg.vision_batch_max_mb, cfg.vision_batch_max_images):
            response = await self.analyze_pages(images, prompt, history)
            return VisionAnswer(response=response, mode="direct")
        return await self.batch_analyze(images, prompt, history, on_progress)

    # ------------------------------------------------------------------
    # Direct path
    # ------------------------------------------------------------------

    def validate_direct(self, images: Sequence[PageImage]) -> None:
        """
        Raises:
            NoPagesError, TooManyPagesError, PayloadTooLargeError
        """
        cfg = self._settings
        if not images:
            raise NoPagesError("Select at least one page")
        if len(images) > cfg.vision_direct_max_pages:
            raise TooManyPagesError(
                f"At most {cfg.vision_direct_max_pages} pages per request "
                f"({len(images)} selected); use batch mode instead"
            )
        size_mb = calculate_images_size_mb(images)
        if size_mb > cfg.vision_direct_max_mb:
            raise PayloadTooLargeError(
                f"Total image size {size_mb:.2f}MB exceeds the limit "
                f"(max {cfg.vision_direct_max_mb}MB); select fewer pages or pages with more text"
            )

    async def analyze_pages(
        self,
        images:  Sequence[PageImage],
        prompt:  str,
        history: Sequence[Any] = (),
    ) -> str:
        """Single vision request over at most 5 pages / 3.5 MB."""
        self.validate_direct(images)
        cfg = self._settings
        logger.info(
            "VisionBatcher | direct pages=%d size_mb=%.2f",
            len(images), calculate_images_size_mb(images),
        )

        messages: list[BaseMessage] = [
            SystemMessage(content=_DIRECT_SYSTEM_PROMPT.format(count=len(images), pages=_page_list(images))),
            *history_to_messages(history, cfg.vision_history_turns),
            HumanMessage(content=[{"type": "text", "text": prompt}, *(image_part(img) for img in images)]),
        ]
        text = await self._chat.complete_with_images(
            messages,
            temperature=0.7,
            max_tokens=8192,
            timeout=cfg.vision_direct_timeout,
            label=f"vision direct pages={len(images)}",
        )
        return text or NO_RESPONSE_PLACEHOLDER

    # ------------------------------------------------------------------
    # Batch path
    # ------------------------------------------------------------------

    async def analyze_batch(
        self,
        images:        Sequence[PageImage],
        batch_index:   int,
        total_batches: int,
        user_prompt:   str,
    ) -> BatchResult:
        pages = [img.page_number for img in images]
        messages = [
            SystemMessage(content=_BATCH_SYSTEM_PROMPT.format(
                batch=batch_index + 1, total=total_batches, pages=_page_list(images),
            )),
            HumanMessage(content=[
                {
                    "type": "text",
                    "text": f"Analyze these {len(images)} pages. The user ultimately wants to know: \"{user_prompt}\"",
                },
                *(image_part(img) for img in images),
            ]),
        ]

        try:
            summary = await self._chat.complete_with_images(
                messages,
                temperature=0.3,
                max_tokens=4096,
                timeout=self._settings.vision_batch_timeout,
                label=f"vision batch {batch_index + 1}/{total_batches}",
            )
        except ProviderTimeoutError as exc:
            raise ProviderTimeoutError(f"Batch {batch_index + 1} timed out", timeout=exc.timeout) from exc

        return BatchResult(batch_index=batch_index, pages=pages, summary=summary)

    async def synthesize(
        self,
        batch_results: Sequence[BatchResult],
        user_prompt:   str,
        history:       Sequence[Any] = (),
    ) -> str:
        ordered = sorted(batch_results, key=lambda r: r.batch_index)
        summaries = BATCH_SEPARATOR.join(
            f"## Batch {r.batch_index + 1} (pages {', '.join(map(str, r.pages))})\n{r.summary}"
            for r in ordered
        )

        messages: list[BaseMessage] = [
            SystemMessage(content=_SYNTHESIS_SYSTEM_PROMPT),
            *history_to_messages(history, self._settings.vision_history_turns),
            HumanMessage(content=(
                f"## Batch analysis results\n\n{summaries}{BATCH_SEPARATOR}## User question\n{user_prompt}"
            )),
        ]

        try:
            text = await self._chat.complete(
                messages,
                temperature=0.7,
                max_tokens=8192,
                timeout=self._settings.vision_synthesis_timeout,
                label="vision synthesis",
            )
        except ProviderTimeoutError as exc:
            raise ProviderTimeoutError("Synthesis of the batch results timed out", timeout=exc.timeout) from exc

        return text or NO_RESPONSE_PLACEHOLDER

    async def batch_analyze(
        self,
        images:      Sequence[PageImage],
        prompt:      str,
        history:     Sequence[Any] = (),
        on_progress: ProgressCallback | None = None,
    ) -> VisionAnswer:
        if not images:
            raise NoPagesError("Select at least one page")

        cfg = self._settings
        batches = create_batches(images, cfg.vision_batch_max_mb, cfg.vision_batch_max_images)
        total = len(batches)

        logger.info(
            "VisionBatcher | batch mode pages=%d size_mb=%.2f batches=%d",
            len(images), calculate_images_size_mb(images), total,
        )
        emit(on_progress, ProgressEvent(
            ProgressStage.START, f"Split into {total} batches", total=total,
        ))

        results: list[BatchResult] = []
        for index, batch in enumerate(batches):
            pages = [img.page_number for img in batch]
            emit(on_progress, ProgressEvent(
                ProgressStage.BATCH,
                f"Analyzing batch {index + 1}/{total} (pages {_page_list(batch)})",
                current=index + 1, total=total,
                details={"pages": pages},
            ))
            results.append(await self.analyze_batch(batch, index, total, prompt))

            if index < total - 1:
                await self._sleep(cfg.vision_batch_delay_seconds)

        emit(on_progress, ProgressEvent(ProgressStage.SYNTHESIZE, "Combining all batch results..."))
        response = await self.synthesize(results, prompt, history)
        emit(on_progress, ProgressEvent(ProgressStage.COMPLETE, "Analysis complete"))

        return VisionAnswer(response=response, mode="batch", batch_results=results, total_batches=total)
