"""
Database session management for the local knowledge base.

Flow:
  1. KnowledgeDatabase(url) builds the async engine (sqlite+aiosqlite by
     default) and a session factory.
  2. init() creates missing tables, then brings the schema up to
     SCHEMA_VERSION with additive migrations.
  3. session() yields a session inside a transaction: commit on normal
     exit, rollback on any exception. Multi-step writes (a document and its
     chunks) therefore land together or not at all.

Migrations are "load all, transform, write back" inside one transaction:

  v1 → v2   documents.category added; NULL rows backfilled to "Uncategorized"
  v2 → v3   schema_info table introduced (no data change)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import event, select, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from docqa.core.config import Settings, get_settings
from docqa.models.knowledge import DEFAULT_CATEGORY, Base, Document, SchemaInfo

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 3


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class KnowledgeDatabase:
    """
    Usage:
        db = KnowledgeDatabase("sqlite+aiosqlite:///docqa.db")
        await db.init()
        async with db.session() as session:
            ...
        await db.dispose()
    """

    def __init__(self, url: str | None = None, settings: Settings | None = None) -> None:
        cfg = settings or get_settings()
        self.url = url or cfg.database_url

        self.engine: AsyncEngine = create_async_engine(self.url, echo=cfg.db_echo_sql)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

        # expire_on_commit=False keeps ORM objects readable after the transaction
        self._session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Transactional session; commits on exit, rolls back on error."""
        async with self._session_factory() as session:
            async with session.begin():
                yield session

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def init(self) -> int:
        """Create tables and run pending migrations. Returns the schema version."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        async with self.session() as session:
            info = await session.get(SchemaInfo, 1)
            if info is None:
                # No version row: either a fresh database or one written before v3
                has_documents = (await session.execute(select(Document.id).limit(1))).first()
                version = 1 if has_documents else SCHEMA_VERSION
                info = SchemaInfo(id=1, version=version)
                session.add(info)

            if info.version < 2:
                await self._backfill_categories(session)

            if info.version < SCHEMA_VERSION:
                logger.info("Database | migrated schema v%d → v%d", info.version, SCHEMA_VERSION)
                info.version = SCHEMA_VERSION

        return SCHEMA_VERSION

    async def _backfill_categories(self, session: AsyncSession) -> int:
        documents = (await session.execute(select(Document))).scalars().all()
        updated = 0
        for document in documents:
            if not document.category:
                document.category = DEFAULT_CATEGORY
                updated += 1
        logger.info("Database | category backfill updated=%d of %d", updated, len(documents))
        return updated

    async def schema_version(self) -> int | None:
        async with self.session() as session:
            info = await session.get(SchemaInfo, 1)
            return info.version if info else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def check_health(self) -> dict:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return {"status": "ok"}
        except Exception as exc:
            logger.error("DB health check failed: %s", exc)
            return {"status": "error", "detail": str(exc)}

    async def dispose(self) -> None:
        await self.engine.dispose()
