from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from qbo_sync.api.deps import get_token_manager
from qbo_sync.core import logging as logging_utils
from qbo_sync.core.config import Settings, get_settings
from qbo_sync.core.errors import AuthError
from qbo_sync.core.security import decode_oauth_state, encode_oauth_state
from qbo_sync.db import repo
from qbo_sync.db.models import TenantStatus
from qbo_sync.db.session import get_session
from qbo_sync.schemas.tenant import CredentialRotateResponse, CredentialSummary, TenantRead
from qbo_sync.services.token_manager import TokenManager
from qbo_sync.utils.validators import parse_uuid, resolve_environment


router = APIRouter(prefix="/auth", tags=["auth"])
public_router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("qbo_sync.api.auth")


@router.get("/connect", status_code=status.HTTP_307_TEMPORARY_REDIRECT)
async def connect_oauth(
    tenant_id: str,
    env: Optional[str] = Query(default=None),
    settings: Settings = Depends(get_settings),
    session: AsyncSession = Depends(get_session),
    tokens: TokenManager = Depends(get_token_manager),
):
    tenant_uuid = parse_uuid(tenant_id, "tenant_id")
    environment = resolve_environment(env, settings.environment)
    logging_utils.set_request_context(tenant_id=str(tenant_uuid))

    tenant = await repo.get_tenant_by_id(session, tenant_uuid)
    if tenant.status != TenantStatus.ACTIVE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Tenant is inactive",
        )

    state_payload = {
        "tenant_id": str(tenant_uuid),
        "environment": environment,
        "nonce": str(uuid.uuid4()),
    }
    state = encode_oauth_state(settings.fernet_key, state_payload)
    auth_url = tokens.build_authorization_url(state=state, environment=environment)
    logger.info(
        "oauth_connect_redirect",
        extra={"tenant_id": str(tenant_uuid), "environment": environment},
    )
    return RedirectResponse(auth_url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)


@public_router.get("/callback")
async def oauth_callback(
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    realmId: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
    error_description: Optional[str] = Query(default=None),
    settings: Settings = Depends(get_settings),
    session: AsyncSession = Depends(get_session),
    tokens: TokenManager = Depends(get_token_manager),
):
    if error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"OAuth error: {error_description or error}",
        )
    if not code or not state or not realmId:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required OAuth parameters",
        )

    try:
        state_payload = decode_oauth_state(settings.fernet_key, state)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    tenant_uuid = parse_uuid(state_payload.get("tenant_id", ""), "tenant_id")
    environment = resolve_environment(state_payload.get("environment"), settings.environment)
    logging_utils.set_request_context(tenant_id=str(tenant_uuid), realm_id=realmId)

    tenant = await repo.get_tenant_by_id(session, tenant_uuid)

    try:
        token_bundle = await tokens.exchange_authorization_code(code=code, realm_id=realmId)
    except AuthError as exc:
        logger.error(
            "oauth_exchange_failed",
            extra={"tenant_id": str(tenant_uuid), "environment": environment},
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to exchange authorization code",
        ) from exc

    credential = await tokens.upsert_credential(
        session,
        tenant_id=tenant.id,
        environment=environment,
        realm_id=realmId,
        bundle=token_bundle,
    )
    await session.commit()

    logger.info(
        "oauth_callback_completed",
        extra={"tenant_id": str(tenant_uuid), "realm_id": realmId, "environment": environment},
    )
    return {
        "message": "OAuth flow completed",
        "tenant": TenantRead.model_validate(tenant).model_dump(mode="json"),
        "credential": CredentialSummary.model_validate(credential).model_dump(mode="json"),
    }


@router.post("/{tenant_id}/rotate", response_model=CredentialRotateResponse)
async def rotate_credential(
    tenant_id: str,
    session: AsyncSession = Depends(get_session),
    tokens: TokenManager = Depends(get_token_manager),
) -> CredentialRotateResponse:
    tenant_uuid = parse_uuid(tenant_id, "tenant_id")
    logging_utils.set_request_context(tenant_id=str(tenant_uuid))
    await repo.get_tenant_by_id(session, tenant_uuid)

    credential = await tokens.rotate(session, tenant_uuid)
    logger.info("credential_rotated", extra={"tenant_id": str(tenant_uuid)})
    return CredentialRotateResponse(
        tenant_id=tenant_uuid,
        credential_id=credential.id,
        refreshed=True,
        access_expires_at=credential.access_expires_at,
        refresh_expires_at=credential.refresh_expires_at,
    )


@router.post("/{tenant_id}/disconnect", response_model=CredentialSummary)
async def disconnect(
    tenant_id: str,
    session: AsyncSession = Depends(get_session),
    tokens: TokenManager = Depends(get_token_manager),
) -> CredentialSummary:
    tenant_uuid = parse_uuid(tenant_id, "tenant_id")
    await repo.get_tenant_by_id(session, tenant_uuid)
    credential = await tokens.disconnect(session, tenant_uuid)
    if credential is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Credential not found",
        )
    await session.commit()
    return CredentialSummary.model_validate(credential)
