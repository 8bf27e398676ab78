from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


TenantStatus = Literal["active", "inactive"]
Environment = Literal["sandbox", "prod"]


class TenantCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    status: TenantStatus = "active"


class TenantRead(TenantCreate):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    created_at: datetime
    updated_at: datetime


class CredentialSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    realm_id: str
    environment: Environment
    is_connected: bool
    access_expires_at: Optional[datetime]
    refresh_expires_at: Optional[datetime]
    scopes: list[str] | None = None
    refresh_counter: int


class TenantWithCredential(TenantRead):
    credential: Optional[CredentialSummary] = None


class CredentialRotateResponse(BaseModel):
    tenant_id: uuid.UUID
    credential_id: uuid.UUID
    refreshed: bool
    access_expires_at: Optional[datetime]
    refresh_expires_at: Optional[datetime]
