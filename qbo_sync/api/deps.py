from __future__ import annotations

from dataclasses import dataclass, field

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from qbo_sync.core.config import Settings, get_settings
from qbo_sync.db import repo
from qbo_sync.db.session import get_session
from qbo_sync.services.qbo_client import QuickBooksService
from qbo_sync.services.token_manager import TokenManager


@dataclass
class Caller:
    user_id: str
    roles: list[str] = field(default_factory=list)


async def enforce_api_key(
    api_key_header: str | None = Header(default=None, alias="X-API-Key"),
    settings: Settings = Depends(get_settings),
) -> None:
    if api_key_header is None or api_key_header != settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )


async def get_caller(
    user_id: str | None = Header(default=None, alias="X-User-Id"),
    session: AsyncSession = Depends(get_session),
) -> Caller:
    if not user_id or not user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity",
        )
    roles = await repo.get_user_roles(session, user_id.strip())
    if not roles:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown caller",
        )
    return Caller(user_id=user_id.strip(), roles=roles)


def require_roles(*allowed: str):
    async def _require(caller: Caller = Depends(get_caller)) -> Caller:
        if not set(caller.roles).intersection(allowed):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of roles: {', '.join(allowed)}",
            )
        return caller

    return _require


def get_qbo_service(settings: Settings = Depends(get_settings)) -> QuickBooksService:
    return QuickBooksService(settings)


def get_token_manager(settings: Settings = Depends(get_settings)) -> TokenManager:
    return TokenManager(settings)
