"""
KnowledgeStore — documents, chunks, chat history and settings on SQLAlchemy

Every public method opens its own transactional session through
KnowledgeDatabase.session(), so each call is atomic on its own:

  add_document     document row + all chunk rows, or nothing
  delete_document  chunks (scan-and-delete by document_id index) + document
  delete_category  every matching document and its chunks
  import_snapshot  optional clear + every imported row

Search is exhaustive cosine similarity over the (optionally filtered) chunk
set. An explicit empty filter means "nothing is in scope" and returns no
results; `None` means "search everything".
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Sequence

from sqlalchemy import delete, func, select, update

from docqa.db.session import KnowledgeDatabase
from docqa.models.knowledge import DEFAULT_CATEGORY, ChatMessage, Chunk, Document, Setting
from docqa.schemas.backup import BackupData, ImportCounts
from docqa.vectorstore.base import (
    ChunkInput,
    DimensionCheck,
    SearchResult,
    StorageStats,
    cosine_similarity,
)

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT  = 5
DEFAULT_HISTORY_LIMIT = 100


class KnowledgeStore:
    """
    Usage:
        store = KnowledgeStore(db)
        doc = await store.add_document("report.pdf", chunks, category="Finance")
        hits = await store.search(query_vector, document_ids=None, limit=5)
    """

    def __init__(self, db: KnowledgeDatabase) -> None:
        self._db = db

    @property
    def db(self) -> KnowledgeDatabase:
        return self._db

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def add_document(
        self,
        name:     str,
        chunks:   Sequence[ChunkInput],
        category: str | None = DEFAULT_CATEGORY,
    ) -> Document:
        """
        Persist a document with its chunks in one transaction.

        Raises:
            ValueError: no chunks, or chunks with differing embedding lengths.
        """
        if not chunks:
            raise ValueError("A document must have at least one chunk")
        dimensions = {len(c.embedding) for c in chunks}
        if len(dimensions) != 1 or 0 in dimensions:
            raise ValueError(f"Inconsistent embedding dimensions: {sorted(dimensions)}")

        async with self._db.session() as session:
            document = Document(
                name=name,
                category=category or DEFAULT_CATEGORY,
                chunk_count=len(chunks),
                embedding_dimension=dimensions.pop(),
            )
            session.add(document)
            await session.flush()

            session.add_all(
                Chunk(
                    document_id=document.id,
                    content=c.content,
                    embedding=list(c.embedding),
                    chunk_metadata=dict(c.metadata),
                )
                for c in chunks
            )

        logger.info(
            "KnowledgeStore | added document id=%d name=%r category=%r chunks=%d",
            document.id, name, document.category, document.chunk_count,
        )
        return document

    async def list_documents(self) -> list[Document]:
        async with self._db.session() as session:
            result = await session.execute(select(Document).order_by(Document.id))
            return list(result.scalars().all())

    async def get_document(self, document_id: int) -> Document | None:
        async with self._db.session() as session:
            return await session.get(Document, document_id)

    async def delete_document(self, document_id: int) -> int:
        """Delete a document and all of its chunks. Returns chunks removed."""
        async with self._db.session() as session:
            removed = await self._delete_documents(session, [document_id])
        logger.info("KnowledgeStore | deleted document id=%d chunks=%d", document_id, removed)
        return removed

    @staticmethod
    async def _delete_documents(session, document_ids: Iterable[int]) -> int:
        ids = list(document_ids)
        if not ids:
            return 0
        chunk_result = await session.execute(delete(Chunk).where(Chunk.document_id.in_(ids)))
        await session.execute(delete(Document).where(Document.id.in_(ids)))
        return chunk_result.rowcount or 0

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    async def list_categories(self) -> list[str]:
        async with self._db.session() as session:
            result = await session.execute(select(Document.category).distinct())
            return sorted({c or DEFAULT_CATEGORY for c in result.scalars().all()})

    async def rename_category(self, old_name: str, new_name: str) -> int:
        """Relabel every document in `old_name`. Returns documents updated."""
        if not new_name.strip():
            raise ValueError("Category name cannot be empty")
        async with self._db.session() as session:
            result = await session.execute(
                update(Document)
                .where(Document.category == old_name)
                .values(category=new_name.strip())
            )
        logger.info("KnowledgeStore | renamed category %r → %r docs=%d", old_name, new_name, result.rowcount)
        return result.rowcount or 0

    async def delete_category(self, category: str) -> int:
        """Delete every document in `category` together with its chunks."""
        async with self._db.session() as session:
            ids = (await session.execute(
                select(Document.id).where(Document.category == category)
            )).scalars().all()
            await self._delete_documents(session, ids)
        logger.info("KnowledgeStore | deleted category %r docs=%d", category, len(ids))
        return len(ids)

    async def document_ids_for_categories(self, categories: Iterable[str]) -> list[int]:
        wanted = list(categories)
        if not wanted:
            return []
        async with self._db.session() as session:
            result = await session.execute(
                select(Document.id).where(Document.category.in_(wanted)).order_by(Document.id)
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        query_vector: Sequence[float],
        document_ids: Iterable[int] | None = None,
        limit:        int = DEFAULT_SEARCH_LIMIT,
    ) -> list[SearchResult]:
        """Top `limit` chunks by cosine similarity, descending."""
        stmt = select(Chunk)
        if document_ids is not None:
            ids = list(document_ids)
            if not ids:
                return []
            stmt = stmt.where(Chunk.document_id.in_(ids))

        async with self._db.session() as session:
            chunks = (await session.execute(stmt)).scalars().all()

        scored = [
            SearchResult(
                chunk_id=c.id,
                document_id=c.document_id,
                content=c.content,
                similarity=cosine_similarity(query_vector, c.embedding),
                metadata=dict(c.chunk_metadata or {}),
            )
            for c in chunks
        ]
        scored.sort(key=lambda r: r.similarity, reverse=True)
        top = scored[:limit]

        logger.debug(
            "KnowledgeStore | search candidates=%d returned=%d top=%.3f",
            len(scored), len(top), top[0].similarity if top else 0.0,
        )
        return top

    async def count_chunks(self, document_ids: Iterable[int] | None = None) -> int:
        stmt = select(func.count(Chunk.id))
        if document_ids is not None:
            ids = list(document_ids)
            if not ids:
                return 0
            stmt = stmt.where(Chunk.document_id.in_(ids))
        async with self._db.session() as session:
            return (await session.execute(stmt)).scalar_one()

    # ------------------------------------------------------------------
    # Chat history
    # ------------------------------------------------------------------

    async def append_message(self, role: str, content: str) -> ChatMessage:
        if role not in ("user", "assistant"):
            raise ValueError(f"Unknown chat role: {role!r}")
        async with self._db.session() as session:
            message = ChatMessage(role=role, content=content)
            session.add(message)
        return message

    async def get_chat_history(self, limit: int = DEFAULT_HISTORY_LIMIT) -> list[ChatMessage]:
        """The last `limit` messages, oldest first."""
        async with self._db.session() as session:
            result = await session.execute(
                select(ChatMessage)
                .order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc())
                .limit(limit)
            )
            return list(reversed(result.scalars().all()))

    async def clear_chat_history(self) -> None:
        async with self._db.session() as session:
            await session.execute(delete(ChatMessage))

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def save_setting(self, key: str, value: Any) -> None:
        async with self._db.session() as session:
            await session.merge(Setting(key=key, value=value))

    async def get_setting(self, key: str, default: Any = None) -> Any:
        async with self._db.session() as session:
            row = await session.get(Setting, key)
            if row is None or row.value is None:
                return default
            return row.value

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def clear_all(self) -> None:
        """Remove documents, chunks and chat history. Settings are kept."""
        async with self._db.session() as session:
            await self._clear(session)
        logger.info("KnowledgeStore | cleared documents, chunks and chat history")

    @staticmethod
    async def _clear(session) -> None:
        await session.execute(delete(Chunk))
        await session.execute(delete(Document))
        await session.execute(delete(ChatMessage))

    async def validate_embedding_dimension(self, expected: int = 3072) -> DimensionCheck:
        """Report the first stored chunk whose vector length differs from `expected`."""
        async with self._db.session() as session:
            embeddings = (await session.execute(select(Chunk.embedding))).scalars().all()

        for embedding in embeddings:
            found = len(embedding) if embedding is not None else None
            if found != expected:
                return DimensionCheck(valid=False, count=len(embeddings), expected=expected, found=found)
        return DimensionCheck(valid=True, count=len(embeddings))

    async def storage_stats(self) -> StorageStats:
        snapshot = await self.export_snapshot()
        sizes = {
            table: len(json.dumps(rows, default=str).encode("utf-8"))
            for table, rows in snapshot.items()
            if table != "settings"
        }
        sizes["total"] = sum(sizes.values())
        return StorageStats(
            document_count=len(snapshot["documents"]),
            chunk_count=len(snapshot["chunks"]),
            message_count=len(snapshot["chatHistory"]),
            estimated_size=sizes,
        )

    # ------------------------------------------------------------------
    # Snapshot / restore
    # ------------------------------------------------------------------

    async def export_snapshot(self) -> dict[str, list[dict[str, Any]]]:
        """Every row of every table as camelCase dicts (backup wire shape)."""
        async with self._db.session() as session:
            documents = (await session.execute(select(Document).order_by(Document.id))).scalars().all()
            chunks    = (await session.execute(select(Chunk).order_by(Chunk.id))).scalars().all()
            messages  = (await session.execute(
                select(ChatMessage).order_by(ChatMessage.timestamp, ChatMessage.id)
            )).scalars().all()
            settings  = (await session.execute(select(Setting).order_by(Setting.key))).scalars().all()

        return {
            "documents": [
                {
                    "id":                 d.id,
                    "name":               d.name,
                    "category":           d.category or DEFAULT_CATEGORY,
                    "createdAt":          d.created_at,
                    "chunkCount":         d.chunk_count,
                    "embeddingDimension": d.embedding_dimension,
                }
                for d in documents
            ],
            "chunks": [
                {
                    "id":        c.id,
                    "docId":     c.document_id,
                    "content":   c.content,
                    "embedding": list(c.embedding),
                    "metadata":  dict(c.chunk_metadata or {}),
                }
                for c in chunks
            ],
            "chatHistory": [
                {"id": m.id, "role": m.role, "content": m.content, "timestamp": m.timestamp}
                for m in messages
            ],
            "settings": [{"key": s.key, "value": s.value} for s in settings],
        }

    async def import_snapshot(self, data: BackupData, clear_existing: bool = False) -> ImportCounts:
        """
        Insert validated backup rows with fresh ids.

        Chunk document ids are rewritten through the old→new id map. With
        clear_existing the wipe and the import share one transaction.
        """
        async with self._db.session() as session:
            if clear_existing:
                await self._clear(session)

            id_map: dict[int, int] = {}
            for record in data.documents:
                document = Document(
                    name=record.name,
                    category=record.category,
                    created_at=record.created_at,
                    chunk_count=record.chunk_count,
                    embedding_dimension=record.embedding_dimension,
                )
                session.add(document)
                await session.flush()
                id_map[record.id] = document.id

            session.add_all(
                Chunk(
                    document_id=id_map[record.doc_id],
                    content=record.content,
                    embedding=list(record.embedding),
                    chunk_metadata=dict(record.metadata),
                )
                for record in data.chunks
            )
            session.add_all(
                ChatMessage(role=record.role, content=record.content, timestamp=record.timestamp)
                for record in data.chat_history
            )
            for record in data.settings:
                await session.merge(Setting(key=record.key, value=record.value))

        counts = ImportCounts(
            documents_imported=len(data.documents),
            chunks_imported=len(data.chunks),
            messages_imported=len(data.chat_history),
            settings_imported=len(data.settings),
        )
        logger.info(
            "KnowledgeStore | imported docs=%d chunks=%d messages=%d settings=%d clear=%s",
            counts.documents_imported, counts.chunks_imported,
            counts.messages_imported, counts.settings_imported, clear_existing,
        )
        return counts
