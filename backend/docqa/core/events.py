"""
Progress events for long-running operations.

Callbacks are synchronous observers: the pipeline calls them inline and
never awaits or inspects their result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable


class ProgressStage(str, Enum):
    # extraction
    DETECTING  = "detecting"
    EXTRACT    = "extract"
    OCR_START  = "ocr_start"
    OCR        = "ocr"            # phase: "rendering" | "ocr"
    COMPLETE   = "complete"
    # embedding
    EMBEDDING  = "embedding"
    # vision batching
    START      = "start"
    BATCH      = "batch"
    SYNTHESIZE = "synthesize"


@dataclass
class ProgressEvent:
    stage:   ProgressStage
    message: str
    current: int | None = None
    total:   int | None = None
    phase:   str | None = None
    details: dict[str, Any] = field(default_factory=dict)


ProgressCallback = Callable[[ProgressEvent], None]


def emit(callback: ProgressCallback | None, event: ProgressEvent) -> None:
    if callback is not None:
        callback(event)
