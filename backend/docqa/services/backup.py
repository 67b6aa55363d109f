"""
Backup Service — export / import of the whole knowledge base

  export_knowledge_base()  → JSON-ready dict, format version 2
  export_json()            → the same, serialized
  import_knowledge_base()  → validate → (optionally clear) → insert with new ids

Import is all-or-nothing: the payload is validated against
schemas.backup before the store is touched, and the insert itself runs in a
single transaction.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from docqa.core.errors import InvalidImportError
from docqa.schemas.backup import BACKUP_FORMAT_VERSION, BackupData, BackupFile, ImportCounts
from docqa.vectorstore.sql_store import KnowledgeStore

logger = logging.getLogger(__name__)


class BackupService:
    def __init__(self, store: KnowledgeStore) -> None:
        self._store = store

    async def export_knowledge_base(self) -> dict[str, Any]:
        snapshot = await self._store.export_snapshot()
        backup = BackupFile(
            version=BACKUP_FORMAT_VERSION,
            export_date=datetime.now(timezone.utc),
            data=BackupData.model_validate(snapshot),
        )
        logger.info(
            "Backup | exported docs=%d chunks=%d messages=%d settings=%d",
            len(backup.data.documents), len(backup.data.chunks),
            len(backup.data.chat_history), len(backup.data.settings),
        )
        return backup.to_wire()

    async def export_json(self, indent: int | None = 2) -> str:
        return json.dumps(await self.export_knowledge_base(), indent=indent, ensure_ascii=False)

    async def import_knowledge_base(
        self,
        payload:        dict[str, Any] | str | bytes,
        clear_existing: bool = False,
    ) -> ImportCounts:
        """
        Restore a backup produced by export_knowledge_base().

        Raises:
            InvalidImportError: payload is not valid JSON or not a backup file.
        """
        backup = parse_backup(payload)
        if clear_existing:
            logger.warning("Backup | clearing existing documents, chunks and history before import")
        return await self._store.import_snapshot(backup.data, clear_existing=clear_existing)


def parse_backup(payload: dict[str, Any] | str | bytes) -> BackupFile:
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise InvalidImportError(f"Backup file is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
        raise InvalidImportError("Invalid import format: missing 'data' section")

    try:
        return BackupFile.model_validate(payload)
    except ValidationError as exc:
        raise InvalidImportError(f"Invalid import format: {exc.error_count()} problem(s): {exc}") from exc
