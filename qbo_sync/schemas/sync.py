from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


SyncAction = Literal["create", "update"]
SyncEntityType = Literal["vendor_bill", "invoice", "estimate"]
MappingStatus = Literal["pending", "syncing", "synced", "error", "voided", "deleted"]


class SyncOutcome(BaseModel):
    entity_type: SyncEntityType
    entity_id: uuid.UUID
    action: SyncAction
    external_id: Optional[str] = None
    doc_number: Optional[str] = None
    already_synced: bool = False
    updated: Optional[bool] = None
    conflict_recovered: bool = False
    attachments_synced: int = 0
    attachments_failed: int = 0
    message: Optional[str] = None


class MappingStatusResponse(BaseModel):
    entity_type: str
    entity_id: uuid.UUID
    external_id: Optional[str] = None
    external_doc_number: Optional[str] = None
    sync_status: Optional[MappingStatus] = Field(
        default=None,
        description="None when the entity has never been synced.",
    )
    last_synced_at: Optional[datetime] = None
    error_message: Optional[str] = None


class SyncLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    entity_type: str
    entity_id: Optional[str]
    external_id: Optional[str]
    action: str
    status: str
    error_message: Optional[str]
    details: Optional[dict[str, Any]]
    created_at: datetime


class SyncLogListResponse(BaseModel):
    tenant_id: uuid.UUID
    items: list[SyncLogRead] = Field(default_factory=list)
