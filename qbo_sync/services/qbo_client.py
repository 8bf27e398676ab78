from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Optional

import httpx

from qbo_sync.core.config import Settings, get_settings
from qbo_sync.core.errors import AuthError, ExternalApiError, truncate_body
from qbo_sync.core.http import get_async_client, request_with_retry_and_backoff


@dataclass(frozen=True)
class AccessContext:
    """Credential material needed for one outbound QuickBooks call."""

    access_token: str
    realm_id: str
    environment: str = "prod"


class QuickBooksService:
    SANDBOX_API_BASE = "https://sandbox-quickbooks.api.intuit.com"
    PROD_API_BASE = "https://quickbooks.api.intuit.com"

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self.transport = transport
        self.logger = logging.getLogger("qbo_sync.services.qbo")

    async def query(
        self,
        ctx: AccessContext,
        *,
        entity: str,
        select_sql: str,
        maxresults: int | None = None,
    ) -> list[dict[str, Any]]:
        statement = select_sql.strip()
        if maxresults:
            statement = f"{statement} MAXRESULTS {maxresults}"
        payload = await self._send(
            ctx,
            "GET",
            self._build_entity_url(ctx, "query"),
            entity=entity,
            params={"query": statement, "minorversion": self.settings.qbo_minor_version},
        )
        items = (payload.get("QueryResponse") or {}).get(entity) or []
        if isinstance(items, dict):
            return [items]
        return list(items)

    async def read(
        self,
        ctx: AccessContext,
        *,
        entity: str,
        resource: str,
        entity_id: str,
    ) -> dict[str, Any]:
        payload = await self._send(
            ctx,
            "GET",
            self._build_entity_url(ctx, f"{resource}/{entity_id}"),
            entity=entity,
            params={"minorversion": self.settings.qbo_minor_version},
        )
        return self._extract_entity(payload, entity)

    async def post(
        self,
        ctx: AccessContext,
        *,
        entity: str,
        resource: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        response_payload = await self._send(
            ctx,
            "POST",
            self._build_entity_url(ctx, resource),
            entity=entity,
            json=payload,
            params={"minorversion": self.settings.qbo_minor_version},
            headers={"Content-Type": "application/json"},
        )
        return self._extract_entity(response_payload, entity)

    async def upload_attachment(
        self,
        ctx: AccessContext,
        *,
        entity_type: str,
        entity_id: str,
        file_name: str,
        content_type: str,
        content: bytes,
    ) -> str:
        """Upload a file and attach it to an existing transaction.

        Returns the id of the created Attachable.
        """
        metadata = {
            "AttachableRef": [
                {
                    "EntityRef": {"type": entity_type, "value": entity_id},
                }
            ],
            "FileName": file_name,
            "ContentType": content_type,
        }
        files = {
            "file_metadata_01": (None, json.dumps(metadata), "application/json"),
            "file_content_01": (file_name, content, content_type),
        }
        payload = await self._send(
            ctx,
            "POST",
            self._build_entity_url(ctx, "upload"),
            entity="Attachable",
            files=files,
            params={"minorversion": self.settings.qbo_minor_version},
        )
        responses = payload.get("AttachableResponse") or []
        attachable = responses[0].get("Attachable") if responses else None
        if not attachable or attachable.get("Id") is None:
            fault = responses[0].get("Fault") if responses else None
            raise ExternalApiError(
                "QuickBooks upload returned no attachable",
                body=json.dumps(fault) if fault else None,
                entity="Attachable",
            )
        return str(attachable["Id"])

    async def _send(
        self,
        ctx: AccessContext,
        method: str,
        url: str,
        *,
        entity: str,
        headers: Optional[dict[str, str]] = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        request_headers = {
            "Authorization": f"Bearer {ctx.access_token}",
            "Accept": "application/json",
        }
        if headers:
            request_headers.update(headers)
        start = perf_counter()
        try:
            async with get_async_client(self.settings, transport=self.transport) as client:
                if method == "GET":
                    response = await request_with_retry_and_backoff(
                        client,
                        method,
                        url,
                        headers=request_headers,
                        settings=self.settings,
                        **kwargs,
                    )
                else:
                    # Writes are not idempotent; a repeated create can duplicate the entity.
                    response = await client.request(method, url, headers=request_headers, **kwargs)
        except httpx.TimeoutException as exc:
            self.logger.error(
                "qbo_request_timeout",
                extra={"entity": entity, "method": method, "realm_id": ctx.realm_id},
            )
            raise ExternalApiError(f"QuickBooks request timed out for {entity}", entity=entity) from exc
        except httpx.TransportError as exc:
            self.logger.error(
                "qbo_transport_error",
                extra={"entity": entity, "method": method, "realm_id": ctx.realm_id, "error": str(exc)},
            )
            raise ExternalApiError(f"QuickBooks request failed for {entity}", entity=entity) from exc
        latency_ms = (perf_counter() - start) * 1000

        if response.status_code == 401:
            self.logger.warning(
                "qbo_unauthorized",
                extra={"entity": entity, "realm_id": ctx.realm_id},
            )
            raise AuthError("QuickBooks rejected the access token")

        if response.status_code >= 400:
            body = response.text
            self.logger.error(
                "qbo_request_failed",
                extra={
                    "entity": entity,
                    "method": method,
                    "status": response.status_code,
                    "body": truncate_body(body),
                    "realm_id": ctx.realm_id,
                    "latency_ms": round(latency_ms, 2),
                },
            )
            raise ExternalApiError(
                f"QuickBooks {method.lower()} error for {entity}",
                qbo_status_code=response.status_code,
                body=body,
                entity=entity,
            )

        self.logger.debug(
            "qbo_request_completed",
            extra={
                "entity": entity,
                "method": method,
                "status": response.status_code,
                "latency_ms": round(latency_ms, 2),
            },
        )
        try:
            return response.json()
        except ValueError as exc:
            raise ExternalApiError(
                f"QuickBooks returned a non-JSON response for {entity}",
                qbo_status_code=response.status_code,
                body=response.text,
                entity=entity,
            ) from exc

    def _extract_entity(self, payload: dict[str, Any], entity: str) -> dict[str, Any]:
        record = payload.get(entity)
        if not isinstance(record, dict) or record.get("Id") is None:
            raise ExternalApiError(
                f"Malformed QuickBooks {entity} payload",
                body=json.dumps(payload)[:400],
                entity=entity,
            )
        return record

    def _build_entity_url(self, ctx: AccessContext, resource: str) -> str:
        base = self.SANDBOX_API_BASE if ctx.environment == "sandbox" else self.PROD_API_BASE
        return f"{base}/v3/company/{ctx.realm_id}/{resource}"


def escape_query_value(value: str) -> str:
    return value.replace("'", "\\'")
