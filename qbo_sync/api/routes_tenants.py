from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from qbo_sync.db import repo
from qbo_sync.db.session import get_session
from qbo_sync.schemas.tenant import TenantCreate, TenantRead, TenantWithCredential
from qbo_sync.utils.validators import parse_uuid


router = APIRouter(prefix="/tenants", tags=["tenants"])
logger = logging.getLogger("qbo_sync.api.tenants")


@router.post("", response_model=TenantRead, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    payload: TenantCreate,
    session: AsyncSession = Depends(get_session),
) -> TenantRead:
    tenant = await repo.create_tenant(session, payload)
    await session.commit()
    logger.info("tenant_created", extra={"tenant_id": str(tenant.id)})
    return TenantRead.model_validate(tenant)


@router.get("/{tenant_id}", response_model=TenantWithCredential)
async def get_tenant(
    tenant_id: str,
    session: AsyncSession = Depends(get_session),
) -> TenantWithCredential:
    tenant_uuid = parse_uuid(tenant_id, "tenant_id")
    tenant = await repo.get_tenant_by_id(session, tenant_uuid)
    return TenantWithCredential.model_validate(tenant)
