from __future__ import annotations

import logging
import logging.config
from contextvars import ContextVar
from typing import Any, Optional

from pythonjsonlogger import jsonlogger


request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
tenant_id_ctx: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)
realm_id_ctx: ContextVar[Optional[str]] = ContextVar("realm_id", default=None)


class RequestContextFilter(logging.Filter):
    """Injects request scoped context variables into each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx.get()
        record.tenant_id = tenant_id_ctx.get()
        record.realm_id = realm_id_ctx.get()
        return True


def configure_logging(level: int = logging.INFO) -> None:
    """Configure JSON structured logging."""
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "request_context": {
                    "()": RequestContextFilter,
                }
            },
            "formatters": {
                "json": {
                    "()": jsonlogger.JsonFormatter,
                    "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stdout",
                    "level": level,
                    "formatter": "json",
                    "filters": ["request_context"],
                }
            },
            "loggers": {
                "": {
                    "handlers": ["default"],
                    "level": level,
                }
            },
        }
    )


def set_request_context(
    request_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    realm_id: Optional[str] = None,
) -> None:
    if request_id is not None:
        request_id_ctx.set(request_id)
    if tenant_id is not None:
        tenant_id_ctx.set(tenant_id)
    if realm_id is not None:
        realm_id_ctx.set(realm_id)


def clear_request_context() -> None:
    request_id_ctx.set(None)
    tenant_id_ctx.set(None)
    realm_id_ctx.set(None)


def _redact_value(value: Any) -> str:
    if value is None:
        return ""
    return "***redacted***"


def sanitize_payload(payload: Any) -> Any:
    """Remove obvious secrets from a payload while keeping business fields."""

    sensitive_keys = {
        "authorization",
        "access_token",
        "refresh_token",
        "token",
        "secret",
        "password",
    }

    def _sanitize(value: Any) -> Any:
        if isinstance(value, dict):
            sanitized: dict[str, Any] = {}
            for key, val in value.items():
                key_lower = str(key).lower()
                # SyncToken is a concurrency version, not a credential.
                if key_lower != "synctoken" and any(token in key_lower for token in sensitive_keys):
                    sanitized[key] = _redact_value(val)
                else:
                    sanitized[key] = _sanitize(val)
            return sanitized
        if isinstance(value, list):
            return [_sanitize(item) for item in value]
        return value

    return _sanitize(payload)


def _base_sync_log_extra(
    *,
    event: str,
    entity_type: str,
    entity_id: Optional[str],
    action: str,
    external_id: Optional[str] = None,
) -> dict[str, Any]:
    return {
        "event": event,
        "request_id": request_id_ctx.get(),
        "tenant_id": tenant_id_ctx.get(),
        "realm_id": realm_id_ctx.get(),
        "entity_type": entity_type,
        "entity_id": entity_id,
        "action": action,
        "external_id": external_id,
    }


def log_sync_started(
    *,
    entity_type: str,
    entity_id: Optional[str],
    action: str,
    user_id: Optional[str] = None,
) -> None:
    logger = logging.getLogger("qbo_sync.sync")
    logger.info(
        "sync_attempt_started",
        extra={
            **_base_sync_log_extra(
                event="sync_attempt_started",
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
            ),
            "user_id": user_id,
        },
    )


def log_sync_finished(
    *,
    entity_type: str,
    entity_id: Optional[str],
    action: str,
    result: str,
    external_id: Optional[str] = None,
    error_type: Optional[str] = None,
    error_message: Optional[str] = None,
    payload: Any = None,
) -> None:
    logger = logging.getLogger("qbo_sync.sync")
    level = logging.INFO if error_type is None else logging.WARNING
    logger.log(
        level,
        "sync_attempt_finished",
        extra={
            **_base_sync_log_extra(
                event="sync_attempt_finished",
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                external_id=external_id,
            ),
            "result": result,
            "error_type": error_type,
            "error_message": error_message,
            "payload": sanitize_payload(payload) if payload is not None else None,
        },
    )
