"""
LLM Client Package

Chat, vision and OCR requests all go to one OpenAI-compatible provider
through ChatClient; each provider gets its own RateLimiter.

Public API::

    from docqa.llm import ChatClient, RateLimiter, VisionBatcher

    limiter = RateLimiter("chat", max_requests=None, min_delay_seconds=2.0)
    chat = ChatClient(credentials, limiter)
    answer = await VisionBatcher(chat).analyze(images, prompt)
"""

from docqa.llm.chat import ChatClient
from docqa.llm.ratelimit import RateLimiter, RateLimitWindow
from docqa.llm.vision import BatchResult, VisionAnswer, VisionBatcher, create_batches

__all__ = [
    "BatchResult",
    "ChatClient",
    "RateLimitWindow",
    "RateLimiter",
    "VisionAnswer",
    "VisionBatcher",
    "create_batches",
]
