from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from qbo_sync.api.deps import Caller, get_caller, get_qbo_service, get_token_manager, require_roles
from qbo_sync.core import logging as logging_utils
from qbo_sync.core.config import Settings, get_settings
from qbo_sync.db import repo
from qbo_sync.db.models import MAPPING_MODELS, TenantStatus
from qbo_sync.db.session import get_session
from qbo_sync.schemas.sync import MappingStatusResponse, SyncLogListResponse, SyncLogRead, SyncOutcome
from qbo_sync.services.bills import BillSync
from qbo_sync.services.estimates import EstimateSync
from qbo_sync.services.invoices import InvoiceSync
from qbo_sync.services.orchestrator import DocumentSync
from qbo_sync.services.qbo_client import QuickBooksService
from qbo_sync.services.token_manager import TokenManager
from qbo_sync.utils.validators import normalize_limit, parse_uuid


router = APIRouter(prefix="/sync/{tenant_id}", tags=["sync"])
logger = logging.getLogger("qbo_sync.api.sync")

ENTITY_PATHS: dict[str, str] = {
    "bills": "vendor_bill",
    "invoices": "invoice",
    "estimates": "estimate",
}

require_bill_roles = require_roles("admin", "manager")


async def _run(
    sync_cls: type[DocumentSync],
    action: str,
    *,
    tenant_id: str,
    entity_id: str,
    caller: Caller,
    session: AsyncSession,
    settings: Settings,
    qbo: QuickBooksService,
    tokens: TokenManager,
) -> SyncOutcome:
    tenant_uuid = parse_uuid(tenant_id, "tenant_id")
    entity_uuid = parse_uuid(entity_id, "entity_id")
    logging_utils.set_request_context(tenant_id=str(tenant_uuid))

    tenant = await repo.get_tenant_by_id(session, tenant_uuid)
    if tenant.status != TenantStatus.ACTIVE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Tenant is inactive",
        )

    sync = sync_cls(session, tenant_uuid, settings=settings, qbo=qbo, tokens=tokens)
    if action == "create":
        return await sync.create(entity_uuid, user_id=caller.user_id)
    return await sync.update(entity_uuid, user_id=caller.user_id)


@router.post("/bills/{bill_id}", response_model=SyncOutcome)
async def create_bill(
    tenant_id: str,
    bill_id: str,
    caller: Caller = Depends(require_bill_roles),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    qbo: QuickBooksService = Depends(get_qbo_service),
    tokens: TokenManager = Depends(get_token_manager),
) -> SyncOutcome:
    return await _run(
        BillSync, "create",
        tenant_id=tenant_id, entity_id=bill_id, caller=caller,
        session=session, settings=settings, qbo=qbo, tokens=tokens,
    )


@router.put("/bills/{bill_id}", response_model=SyncOutcome)
async def update_bill(
    tenant_id: str,
    bill_id: str,
    caller: Caller = Depends(require_bill_roles),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    qbo: QuickBooksService = Depends(get_qbo_service),
    tokens: TokenManager = Depends(get_token_manager),
) -> SyncOutcome:
    return await _run(
        BillSync, "update",
        tenant_id=tenant_id, entity_id=bill_id, caller=caller,
        session=session, settings=settings, qbo=qbo, tokens=tokens,
    )


@router.post("/invoices/{invoice_id}", response_model=SyncOutcome)
async def create_invoice(
    tenant_id: str,
    invoice_id: str,
    caller: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    qbo: QuickBooksService = Depends(get_qbo_service),
    tokens: TokenManager = Depends(get_token_manager),
) -> SyncOutcome:
    return await _run(
        InvoiceSync, "create",
        tenant_id=tenant_id, entity_id=invoice_id, caller=caller,
        session=session, settings=settings, qbo=qbo, tokens=tokens,
    )


@router.put("/invoices/{invoice_id}", response_model=SyncOutcome)
async def update_invoice(
    tenant_id: str,
    invoice_id: str,
    caller: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    qbo: QuickBooksService = Depends(get_qbo_service),
    tokens: TokenManager = Depends(get_token_manager),
) -> SyncOutcome:
    return await _run(
        InvoiceSync, "update",
        tenant_id=tenant_id, entity_id=invoice_id, caller=caller,
        session=session, settings=settings, qbo=qbo, tokens=tokens,
    )


@router.post("/estimates/{estimate_id}", response_model=SyncOutcome)
async def create_estimate(
    tenant_id: str,
    estimate_id: str,
    caller: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    qbo: QuickBooksService = Depends(get_qbo_service),
    tokens: TokenManager = Depends(get_token_manager),
) -> SyncOutcome:
    return await _run(
        EstimateSync, "create",
        tenant_id=tenant_id, entity_id=estimate_id, caller=caller,
        session=session, settings=settings, qbo=qbo, tokens=tokens,
    )


@router.put("/estimates/{estimate_id}", response_model=SyncOutcome)
async def update_estimate(
    tenant_id: str,
    estimate_id: str,
    caller: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    qbo: QuickBooksService = Depends(get_qbo_service),
    tokens: TokenManager = Depends(get_token_manager),
) -> SyncOutcome:
    return await _run(
        EstimateSync, "update",
        tenant_id=tenant_id, entity_id=estimate_id, caller=caller,
        session=session, settings=settings, qbo=qbo, tokens=tokens,
    )


@router.get("/logs", response_model=SyncLogListResponse)
async def list_sync_logs(
    tenant_id: str,
    entity_type: Optional[str] = Query(default=None),
    entity_id: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None),
    _: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
) -> SyncLogListResponse:
    tenant_uuid = parse_uuid(tenant_id, "tenant_id")
    await repo.get_tenant_by_id(session, tenant_uuid)
    entries = await repo.list_sync_logs(
        session,
        tenant_id=tenant_uuid,
        entity_type=ENTITY_PATHS.get(entity_type, entity_type) if entity_type else None,
        entity_id=entity_id,
        limit=normalize_limit(limit),
    )
    return SyncLogListResponse(
        tenant_id=tenant_uuid,
        items=[SyncLogRead.model_validate(entry) for entry in entries],
    )


@router.get("/{entity_path}/{entity_id}/status", response_model=MappingStatusResponse)
async def get_sync_status(
    tenant_id: str,
    entity_path: str,
    entity_id: str,
    _: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
) -> MappingStatusResponse:
    tenant_uuid = parse_uuid(tenant_id, "tenant_id")
    entity_uuid = parse_uuid(entity_id, "entity_id")
    kind = ENTITY_PATHS.get(entity_path)
    if kind is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown entity type '{entity_path}'",
        )
    await repo.get_tenant_by_id(session, tenant_uuid)
    mapping = await repo.get_mapping(session, MAPPING_MODELS[kind], tenant_uuid, entity_uuid)
    if mapping is None:
        return MappingStatusResponse(entity_type=kind, entity_id=entity_uuid)
    return MappingStatusResponse(
        entity_type=kind,
        entity_id=entity_uuid,
        external_id=mapping.external_id,
        external_doc_number=mapping.external_doc_number,
        sync_status=mapping.sync_status,
        last_synced_at=mapping.last_synced_at,
        error_message=mapping.error_message,
    )
