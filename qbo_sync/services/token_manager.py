from __future__ import annotations

import base64
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from qbo_sync.core.config import Settings, get_settings
from qbo_sync.core.errors import AuthError, truncate_body
from qbo_sync.core.http import get_async_client, request_with_retry_and_backoff
from qbo_sync.core.security import decrypt_token, encrypt_token
from qbo_sync.db import repo
from qbo_sync.db.models import TenantCredentials
from qbo_sync.schemas.tenant import Environment
from qbo_sync.services.qbo_client import AccessContext


@dataclass
class TokenBundle:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    scopes: list[str]
    token_type: str


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TokenManager:
    """Owns the tenant credential: OAuth connect, refresh and rotation.

    Refreshes are not serialized across concurrent callers. Two syncs racing
    near expiry may both refresh; QuickBooks honors the newest token.
    """

    AUTH_URL = "https://appcenter.intuit.com/connect/oauth2"
    TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
    SCOPES = ["com.intuit.quickbooks.accounting"]
    REFRESH_THRESHOLD = timedelta(minutes=5)

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self.transport = transport
        self.logger = logging.getLogger("qbo_sync.services.tokens")

    async def get_valid_credential(self, session: AsyncSession, tenant_id: uuid.UUID) -> AccessContext:
        credential = await repo.get_credential_optional(session, tenant_id=tenant_id)
        if credential is None or not credential.is_connected:
            raise AuthError("QuickBooks not connected")
        if self.needs_refresh(credential):
            await self._refresh_credential(session, credential)
        if not credential.access_token:
            raise AuthError("Missing access token after refresh")
        return AccessContext(
            access_token=credential.access_token,
            realm_id=credential.realm_id,
            environment=credential.environment,
        )

    def needs_refresh(self, credential: TenantCredentials, now: Optional[datetime] = None) -> bool:
        if not credential.access_token or credential.access_expires_at is None:
            return True
        now = now or _now()
        return now + self.REFRESH_THRESHOLD >= _as_aware(credential.access_expires_at)

    async def rotate(self, session: AsyncSession, tenant_id: uuid.UUID) -> TenantCredentials:
        credential = await repo.get_credential_optional(session, tenant_id=tenant_id)
        if credential is None:
            raise AuthError("QuickBooks not connected")
        await self._refresh_credential(session, credential, force=True)
        return credential

    async def disconnect(self, session: AsyncSession, tenant_id: uuid.UUID) -> Optional[TenantCredentials]:
        credential = await repo.get_credential_optional(session, tenant_id=tenant_id)
        if credential is None:
            return None
        credential.is_connected = False
        credential.access_token = None
        credential.access_expires_at = None
        await repo.save_credential(session, credential)
        self.logger.info("credential_disconnected", extra={"tenant_id": str(tenant_id)})
        return credential

    def build_authorization_url(self, state: str, environment: Environment) -> str:
        params = {
            "client_id": self.settings.qbo_client_id,
            "redirect_uri": str(self.settings.qbo_redirect_uri),
            "response_type": "code",
            "scope": " ".join(self.SCOPES),
            "state": state,
        }
        url = httpx.URL(self.AUTH_URL, params=params)
        self.logger.info(
            "oauth_authorization_url_generated",
            extra={"environment": environment},
        )
        return str(url)

    async def exchange_authorization_code(self, *, code: str, realm_id: str) -> TokenBundle:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": str(self.settings.qbo_redirect_uri),
        }
        response = await self._token_request(data)
        return self._parse_token_response(response, realm_id)

    async def refresh_tokens(self, *, refresh_token: str, realm_id: str) -> TokenBundle:
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        response = await self._token_request(data)
        return self._parse_token_response(response, realm_id)

    async def upsert_credential(
        self,
        session: AsyncSession,
        *,
        tenant_id: uuid.UUID,
        environment: Environment,
        realm_id: str,
        bundle: TokenBundle,
    ) -> TenantCredentials:
        credential = await repo.get_credential_optional(session, tenant_id=tenant_id)
        encrypted_refresh = encrypt_token(self.settings.fernet_key, bundle.refresh_token)

        if credential is None:
            credential = TenantCredentials(
                tenant_id=tenant_id,
                refresh_counter=0,
            )
            event = "credential_created"
        else:
            event = "credential_updated"

        credential.realm_id = realm_id
        credential.environment = environment
        credential.refresh_token_enc = encrypted_refresh
        credential.access_token = bundle.access_token
        credential.access_expires_at = bundle.access_expires_at
        credential.refresh_expires_at = bundle.refresh_expires_at
        credential.scopes = bundle.scopes
        credential.is_connected = True
        await repo.save_credential(session, credential)
        self.logger.info(
            event,
            extra={
                "tenant_id": str(tenant_id),
                "realm_id": realm_id,
                "environment": environment,
            },
        )
        return credential

    async def _refresh_credential(
        self,
        session: AsyncSession,
        credential: TenantCredentials,
        *,
        force: bool = False,
    ) -> None:
        try:
            refresh_token = decrypt_token(self.settings.fernet_key, credential.refresh_token_enc)
            bundle = await self.refresh_tokens(refresh_token=refresh_token, realm_id=credential.realm_id)
        except (AuthError, ValueError) as exc:
            credential.is_connected = False
            credential.last_error_at = _now()
            await repo.save_credential(session, credential)
            await session.commit()
            self.logger.error(
                "credential_refresh_failed",
                extra={
                    "tenant_id": str(credential.tenant_id),
                    "realm_id": credential.realm_id,
                    "force": force,
                },
            )
            if isinstance(exc, AuthError):
                raise
            raise AuthError(str(exc)) from exc

        credential.access_token = bundle.access_token
        credential.access_expires_at = bundle.access_expires_at
        credential.refresh_expires_at = bundle.refresh_expires_at
        credential.refresh_token_enc = encrypt_token(self.settings.fernet_key, bundle.refresh_token)
        credential.scopes = bundle.scopes or credential.scopes
        credential.refresh_counter = (credential.refresh_counter or 0) + 1
        await repo.save_credential(session, credential)
        # Persist right away so a later failure in the same run cannot lose the new refresh token.
        await session.commit()
        self.logger.info(
            "credential_refreshed",
            extra={
                "tenant_id": str(credential.tenant_id),
                "realm_id": credential.realm_id,
                "environment": credential.environment,
                "force": force,
            },
        )

    async def _token_request(self, data: dict[str, str]) -> dict:
        headers = {
            "Authorization": self._basic_auth_header(),
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        try:
            async with get_async_client(self.settings, transport=self.transport) as client:
                response = await request_with_retry_and_backoff(
                    client,
                    "POST",
                    self.TOKEN_URL,
                    data=data,
                    headers=headers,
                    settings=self.settings,
                )
        except httpx.HTTPError as exc:
            self.logger.error("oauth_token_transport_error", extra={"error": str(exc)})
            raise AuthError("Token endpoint unreachable") from exc
        if response.status_code >= 400:
            self.logger.error(
                "oauth_token_error",
                extra={
                    "status": response.status_code,
                    "body": truncate_body(response.text),
                },
            )
            raise AuthError(
                f"Failed to obtain tokens from Intuit (status {response.status_code}): "
                f"{truncate_body(response.text)}"
            )
        return response.json()

    def _parse_token_response(self, payload: dict, realm_id: str) -> TokenBundle:
        now = _now()
        try:
            access_expires_in = int(payload["expires_in"])
            refresh_expires_in = int(payload.get("x_refresh_token_expires_in", 0))
            access_token = payload["access_token"]
            refresh_token = payload["refresh_token"]
            scope_raw = payload.get("scope", "")
            token_type = payload.get("token_type", "Bearer")
        except KeyError as exc:
            raise AuthError("Incomplete token response") from exc

        bundle = TokenBundle(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_at=now + timedelta(seconds=access_expires_in),
            refresh_expires_at=now + timedelta(seconds=refresh_expires_in),
            scopes=[scope for scope in scope_raw.split() if scope],
            token_type=token_type,
        )
        self.logger.info(
            "token_bundle_parsed",
            extra={
                "realm_id": realm_id,
                "access_expires_at": bundle.access_expires_at.isoformat(),
            },
        )
        return bundle

    def _basic_auth_header(self) -> str:
        credentials = f"{self.settings.qbo_client_id}:{self.settings.qbo_client_secret}"
        encoded = base64.b64encode(credentials.encode("utf-8")).decode("utf-8")
        return f"Basic {encoded}"
