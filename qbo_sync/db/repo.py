from __future__ import annotations

import uuid
from typing import Iterable, Optional, TypeVar

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from qbo_sync.db.models import (
    Base,
    Customers,
    Estimates,
    Invoices,
    LockedPeriodSettings,
    LockedPeriodViolations,
    Products,
    SyncLogEntries,
    TenantCredentials,
    Tenants,
    UserRoles,
    VendorBills,
    Vendors,
)
from qbo_sync.schemas.tenant import TenantCreate


ModelT = TypeVar("ModelT", bound=Base)


async def create_tenant(session: AsyncSession, payload: TenantCreate) -> Tenants:
    tenant = Tenants(
        name=payload.name,
        status=payload.status,
    )
    session.add(tenant)
    await session.flush()
    await session.refresh(tenant)
    return tenant


async def get_tenant_by_id(session: AsyncSession, tenant_id: uuid.UUID) -> Tenants:
    result = await session.execute(
        select(Tenants).where(Tenants.id == tenant_id)
    )
    tenant = result.scalar_one_or_none()
    if tenant is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant not found",
        )
    return tenant


async def get_credential_optional(
    session: AsyncSession,
    *,
    tenant_id: uuid.UUID,
) -> Optional[TenantCredentials]:
    result = await session.execute(
        select(TenantCredentials).where(TenantCredentials.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


async def save_credential(session: AsyncSession, credential: TenantCredentials) -> TenantCredentials:
    session.add(credential)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Credential conflict",
        ) from exc
    await session.refresh(credential)
    return credential


async def get_locked_period_setting(
    session: AsyncSession,
    *,
    tenant_id: uuid.UUID,
) -> Optional[LockedPeriodSettings]:
    result = await session.execute(
        select(LockedPeriodSettings).where(LockedPeriodSettings.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


async def add_locked_period_violation(
    session: AsyncSession,
    violation: LockedPeriodViolations,
) -> LockedPeriodViolations:
    session.add(violation)
    await session.flush()
    return violation


async def get_mapping(
    session: AsyncSession,
    model: type[ModelT],
    tenant_id: uuid.UUID,
    local_id: uuid.UUID,
) -> Optional[ModelT]:
    result = await session.execute(
        select(model).where(
            model.tenant_id == tenant_id,  # type: ignore[attr-defined]
            model.local_id == local_id,  # type: ignore[attr-defined]
        )
    )
    return result.scalar_one_or_none()


async def add_sync_log(session: AsyncSession, entry: SyncLogEntries) -> SyncLogEntries:
    session.add(entry)
    await session.flush()
    return entry


async def list_sync_logs(
    session: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    limit: int = 50,
) -> Iterable[SyncLogEntries]:
    stmt = select(SyncLogEntries).where(SyncLogEntries.tenant_id == tenant_id)
    if entity_type:
        stmt = stmt.where(SyncLogEntries.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(SyncLogEntries.entity_id == entity_id)
    stmt = stmt.order_by(SyncLogEntries.created_at.desc()).limit(limit)
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_user_roles(session: AsyncSession, user_id: str) -> list[str]:
    result = await session.execute(
        select(UserRoles.role).where(UserRoles.user_id == user_id)
    )
    return [str(role) for role in result.scalars().all()]


async def _get_optional(
    session: AsyncSession,
    model: type[ModelT],
    record_id: uuid.UUID,
) -> Optional[ModelT]:
    result = await session.execute(
        select(model)
        .where(model.id == record_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_vendor(session: AsyncSession, vendor_id: uuid.UUID) -> Optional[Vendors]:
    return await _get_optional(session, Vendors, vendor_id)


async def get_customer(session: AsyncSession, customer_id: uuid.UUID) -> Optional[Customers]:
    return await _get_optional(session, Customers, customer_id)


async def get_product(session: AsyncSession, product_id: uuid.UUID) -> Optional[Products]:
    return await _get_optional(session, Products, product_id)


async def get_vendor_bill(session: AsyncSession, bill_id: uuid.UUID) -> Optional[VendorBills]:
    return await _get_optional(session, VendorBills, bill_id)


async def get_invoice(session: AsyncSession, invoice_id: uuid.UUID) -> Optional[Invoices]:
    return await _get_optional(session, Invoices, invoice_id)


async def get_estimate(session: AsyncSession, estimate_id: uuid.UUID) -> Optional[Estimates]:
    return await _get_optional(session, Estimates, estimate_id)
