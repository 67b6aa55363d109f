"""
Knowledge Base Backup — Pydantic Schemas

Wire format (camelCase keys, version 2):

  {
    "version":    2,
    "exportDate": "2026-01-31T12:00:00+00:00",
    "data": {
      "documents":   [{id, name, category, createdAt, chunkCount, embeddingDimension}],
      "chunks":      [{id, docId, content, embedding, metadata}],
      "chatHistory": [{id, role, content, timestamp}],
      "settings":    [{key, value}]
    }
  }

Design decisions:
  - ids in the file are only meaningful inside the file; import assigns new
    ones and rewrites chunk.docId through an id map.
  - Validation happens entirely here, before the store is touched. A chunk
    pointing at a document id absent from the file, a chunk whose vector
    length differs from its document's embeddingDimension and a document
    with no chunks are structural errors. chunkCount is recomputed.
  - Missing categories (files written before categories existed) load as
    "Uncategorized".
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from docqa.models.knowledge import DEFAULT_CATEGORY

BACKUP_FORMAT_VERSION = 2


def as_utc(value: datetime) -> datetime:
    """Naive timestamps are taken to be UTC; aware ones are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class DocumentRecord(_CamelModel):
    id:                  int
    name:                str
    category:            str | None = DEFAULT_CATEGORY
    created_at:          datetime   = Field(..., alias="createdAt")
    chunk_count:         int        = Field(0, alias="chunkCount", ge=0)
    embedding_dimension: int        = Field(..., alias="embeddingDimension", gt=0)

    @field_validator("category")
    @classmethod
    def _default_category(cls, v: str | None) -> str:
        return v or DEFAULT_CATEGORY

    @field_validator("created_at")
    @classmethod
    def _utc_created_at(cls, v: datetime) -> datetime:
        return as_utc(v)


class ChunkRecord(_CamelModel):
    id:        int | None = None
    doc_id:    int        = Field(..., alias="docId")
    content:   str
    embedding: list[float]
    metadata:  dict[str, Any] = Field(default_factory=dict)


class ChatMessageRecord(_CamelModel):
    id:        int | None = None
    role:      Literal["user", "assistant"]
    content:   str
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, v: datetime) -> datetime:
        return as_utc(v)


class SettingRecord(_CamelModel):
    key:   str
    value: Any = None


class BackupData(_CamelModel):
    documents:    list[DocumentRecord]    = Field(default_factory=list)
    chunks:       list[ChunkRecord]       = Field(default_factory=list)
    chat_history: list[ChatMessageRecord] = Field(default_factory=list, alias="chatHistory")
    settings:     list[SettingRecord]     = Field(default_factory=list)

    @model_validator(mode="after")
    def _documents_and_chunks_agree(self) -> "BackupData":
        documents = {doc.id: doc for doc in self.documents}
        if len(documents) != len(self.documents):
            raise ValueError("duplicate document ids in backup")
        orphans = sorted({c.doc_id for c in self.chunks if c.doc_id not in documents})
        if orphans:
            raise ValueError(f"chunks reference unknown document ids: {orphans[:10]}")

        counts = {doc_id: 0 for doc_id in documents}
        for chunk in self.chunks:
            expected = documents[chunk.doc_id].embedding_dimension
            if len(chunk.embedding) != expected:
                raise ValueError(
                    f"chunk of document {chunk.doc_id} has {len(chunk.embedding)} dimensions, "
                    f"expected {expected}"
                )
            counts[chunk.doc_id] += 1

        empty = sorted(doc_id for doc_id, count in counts.items() if count == 0)
        if empty:
            raise ValueError(f"documents without chunks: {empty[:10]}")

        # chunkCount in the file is advisory; the stored count is the real one
        for doc_id, count in counts.items():
            documents[doc_id].chunk_count = count
        return self


class BackupFile(_CamelModel):
    version:     int      = BACKUP_FORMAT_VERSION
    export_date: datetime | None = Field(None, alias="exportDate")
    data:        BackupData

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys and ISO-8601 timestamps."""
        return self.model_dump(mode="json", by_alias=True)


class ImportCounts(BaseModel):
    documents_imported: int = 0
    chunks_imported:    int = 0
    messages_imported:  int = 0
    settings_imported:  int = 0
