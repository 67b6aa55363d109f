from docqa.models.knowledge import (
    DEFAULT_CATEGORY,
    Base,
    ChatMessage,
    Chunk,
    Document,
    SchemaInfo,
    Setting,
)

__all__ = [
    "DEFAULT_CATEGORY",
    "Base",
    "ChatMessage",
    "Chunk",
    "Document",
    "SchemaInfo",
    "Setting",
]
