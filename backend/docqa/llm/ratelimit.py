"""
Per-provider request pacing.

Two rules, applied in order on every outbound call:

  1. Window: at most `max_requests` calls per rolling `window_seconds`.
     A full window blocks until it expires (+1 s slack), then restarts.
  2. Spacing: at least `min_delay_seconds` between consecutive calls,
     whatever the window state.

One RateLimiter exists per provider per session and is shared by
reference with every call site of that provider. Callers are serialized
through an asyncio.Lock so pacing holds across concurrent tasks.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

_WINDOW_SLACK_SECONDS = 1.0


@dataclass
class RateLimitWindow:
    request_count: int   = 0
    window_start:  float = 0.0
    last_request:  float = 0.0


class RateLimiter:

    def __init__(
        self,
        name:              str,
        max_requests:      int | None,
        window_seconds:    float = 60.0,
        min_delay_seconds: float = 0.0,
        clock:             Callable[[], float] = time.monotonic,
        sleep:             Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.min_delay_seconds = min_delay_seconds
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._state = RateLimitWindow(window_start=clock(), last_request=float("-inf"))

    def snapshot(self) -> RateLimitWindow:
        return RateLimitWindow(
            request_count=self._state.request_count,
            window_start=self._state.window_start,
            last_request=self._state.last_request,
        )

    async def acquire(self) -> None:
        """Wait until a request may be issued, then record it."""
        async with self._lock:
            state = self._state
            now = self._clock()

            if self.max_requests is not None:
                if now - state.window_start > self.window_seconds:
                    state.request_count = 0
                    state.window_start = now

                if state.request_count >= self.max_requests:
                    wait = self.window_seconds - (now - state.window_start) + _WINDOW_SLACK_SECONDS
                    logger.info(
                        "RateLimiter | provider=%s window full (%d requests) waiting=%.1fs",
                        self.name, state.request_count, wait,
                    )
                    await self._sleep(wait)
                    now = self._clock()
                    state.request_count = 0
                    state.window_start = now

            since_last = now - state.last_request
            if since_last < self.min_delay_seconds:
                await self._sleep(self.min_delay_seconds - since_last)

            state.last_request = self._clock()
            state.request_count += 1
