from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from qbo_sync.db import repo
from qbo_sync.db.models import MAPPING_MODELS, EntityMappingMixin, SyncLogEntries, SyncStatus


ERROR_MESSAGE_LIMIT = 2000

logger = logging.getLogger("qbo_sync.services.mappings")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MappingStore:
    """Local to QuickBooks identity mappings plus the append-only sync log.

    ``kind`` is one of ``vendor``, ``customer``, ``product``, ``vendor_bill``,
    ``invoice`` or ``estimate``. Each kind has its own table and at most one
    row per local id.
    """

    def __init__(self, session: AsyncSession, tenant_id: uuid.UUID):
        self.session = session
        self.tenant_id = tenant_id

    async def get(self, kind: str, local_id: uuid.UUID) -> Optional[EntityMappingMixin]:
        return await repo.get_mapping(self.session, self._model(kind), self.tenant_id, local_id)

    async def upsert_synced(
        self,
        kind: str,
        local_id: uuid.UUID,
        external_id: str,
        *,
        doc_number: Optional[str] = None,
    ) -> EntityMappingMixin:
        mapping = await self._get_or_create(kind, local_id)
        mapping.external_id = external_id
        if doc_number is not None:
            mapping.external_doc_number = doc_number
        mapping.sync_status = SyncStatus.SYNCED
        mapping.last_synced_at = _now()
        mapping.error_message = None
        await self.session.flush()
        return mapping

    async def mark_syncing(self, kind: str, local_id: uuid.UUID) -> EntityMappingMixin:
        mapping = await self._get_or_create(kind, local_id)
        mapping.sync_status = SyncStatus.SYNCING
        mapping.last_synced_at = _now()
        await self.session.flush()
        return mapping

    async def mark_synced(
        self,
        kind: str,
        local_id: uuid.UUID,
        *,
        doc_number: Optional[str] = None,
    ) -> EntityMappingMixin:
        mapping = await self._get_or_create(kind, local_id)
        if doc_number is not None:
            mapping.external_doc_number = doc_number
        mapping.sync_status = SyncStatus.SYNCED
        mapping.last_synced_at = _now()
        mapping.error_message = None
        await self.session.flush()
        return mapping

    async def mark_error(self, kind: str, local_id: uuid.UUID, message: str) -> EntityMappingMixin:
        mapping = await self._get_or_create(kind, local_id)
        mapping.sync_status = SyncStatus.ERROR
        mapping.error_message = message[:ERROR_MESSAGE_LIMIT]
        await self.session.flush()
        return mapping

    async def append_log(
        self,
        *,
        entity_type: str,
        entity_id: uuid.UUID | str | None,
        action: str,
        status: str,
        external_id: Optional[str] = None,
        error_message: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> SyncLogEntries:
        entry = SyncLogEntries(
            tenant_id=self.tenant_id,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            external_id=external_id,
            action=action,
            status=status,
            error_message=error_message[:ERROR_MESSAGE_LIMIT] if error_message else None,
            details=details,
        )
        return await repo.add_sync_log(self.session, entry)

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    async def _get_or_create(self, kind: str, local_id: uuid.UUID) -> EntityMappingMixin:
        model = self._model(kind)
        mapping = await repo.get_mapping(self.session, model, self.tenant_id, local_id)
        if mapping is not None:
            return mapping
        mapping = model(tenant_id=self.tenant_id, local_id=local_id, sync_status=SyncStatus.PENDING)
        try:
            async with self.session.begin_nested():
                self.session.add(mapping)
        except IntegrityError:
            # Another writer inserted the row first.
            logger.info(
                "mapping_insert_conflict",
                extra={"kind": kind, "local_id": str(local_id)},
            )
            existing = await repo.get_mapping(self.session, model, self.tenant_id, local_id)
            if existing is None:
                raise
            return existing
        return mapping

    def _model(self, kind: str) -> type[EntityMappingMixin]:
        try:
            return MAPPING_MODELS[kind]
        except KeyError as exc:
            raise ValueError(f"Unknown mapping kind: {kind}") from exc
