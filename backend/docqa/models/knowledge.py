"""
SQLAlchemy ORM Models — Local Knowledge Base

Tables:
  documents     one row per ingested PDF
  chunks        embedded text spans; FK + index on document_id
  chat_history  append-only conversation log; index on timestamp
  settings      key → JSON value, last write wins
  schema_info   single row holding the schema version (db/session.py migrates)

Embeddings are stored as JSON arrays of floats. Similarity is computed in
Python (vectorstore/), so no vector extension is required.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

DEFAULT_CATEGORY = "Uncategorized"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------

class Document(Base):
    """
    An ingested PDF.

    Invariant: every chunk's embedding has `embedding_dimension` entries.
    Rows are written together with their chunks in one transaction, so a
    document never exists without chunks.
    """

    __tablename__ = "documents"

    id:   Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)

    # Nullable so rows written before schema v2 can be detected and backfilled
    category: Mapped[Optional[str]] = mapped_column(
        String(200), nullable=True, default=DEFAULT_CATEGORY,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow,
    )
    chunk_count:         Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    embedding_dimension: Mapped[int] = mapped_column(Integer, nullable=False)

    chunks: Mapped[list["Chunk"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Document id={self.id} name={self.name!r} "
            f"category={self.category!r} chunks={self.chunk_count}>"
        )


# ---------------------------------------------------------------------------
# Chunk
# ---------------------------------------------------------------------------

class Chunk(Base):
    """One embedded span of document text."""

    __tablename__ = "chunks"
    __table_args__ = (
        Index("idx_chunks_document_id", "document_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    content:   Mapped[str]         = mapped_column(Text, nullable=False)
    embedding: Mapped[list[float]] = mapped_column(JSON, nullable=False)

    # {"file_name": str, "ocr_used": bool}
    chunk_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict,
    )

    document: Mapped[Document] = relationship(back_populates="chunks")

    def __repr__(self) -> str:
        return f"<Chunk id={self.id} document={self.document_id} chars={len(self.content)}>"


# ---------------------------------------------------------------------------
# Chat history
# ---------------------------------------------------------------------------

class ChatMessage(Base):
    """
    One conversation turn. Ordered by (timestamp, id); the id breaks ties
    between messages written within the same clock tick.
    """

    __tablename__ = "chat_history"
    __table_args__ = (
        Index("idx_chat_history_timestamp", "timestamp"),
    )

    id:        Mapped[int]      = mapped_column(Integer, primary_key=True, autoincrement=True)
    role:      Mapped[str]      = mapped_column(String(16), nullable=False)   # user | assistant
    content:   Mapped[str]      = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<ChatMessage id={self.id} role={self.role} chars={len(self.content)}>"


# ---------------------------------------------------------------------------
# Settings / schema version
# ---------------------------------------------------------------------------

class Setting(Base):
    __tablename__ = "settings"

    key:   Mapped[str] = mapped_column(String(200), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)


class SchemaInfo(Base):
    __tablename__ = "schema_info"

    id:      Mapped[int] = mapped_column(Integer, primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
