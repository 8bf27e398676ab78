from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from fastapi import status


BODY_PREVIEW_LIMIT = 400


def truncate_body(body: Optional[str], limit: int = BODY_PREVIEW_LIMIT) -> Optional[str]:
    if body is None:
        return None
    if len(body) <= limit:
        return body
    return body[:limit] + "..."


class SyncError(RuntimeError):
    """Base class for failures surfaced by the sync engine."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict[str, Any] | str:
        return self.message


class AuthError(SyncError):
    status_code = status.HTTP_401_UNAUTHORIZED


class LockedPeriodError(SyncError):
    status_code = status.HTTP_403_FORBIDDEN

    def to_detail(self) -> dict[str, Any]:
        return {"error": self.message, "blocked_by": "locked_period"}


class ResolutionError(SyncError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class EntityNotFoundError(SyncError):
    status_code = status.HTTP_404_NOT_FOUND


class ExternalApiError(SyncError):
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        message: str,
        *,
        qbo_status_code: Optional[int] = None,
        body: Optional[str] = None,
        entity: Optional[str] = None,
    ) -> None:
        self.qbo_status_code = qbo_status_code
        self.body = body
        self.entity = entity
        preview = truncate_body(body)
        if qbo_status_code is not None:
            message = f"{message}: {qbo_status_code}"
        if preview:
            message = f"{message} {preview}"
        super().__init__(message)


@dataclass(frozen=True)
class ConflictRecovered:
    """A create that raced another writer and was linked to the existing document."""

    external_id: str
    doc_number: Optional[str]
    fault_code: Optional[str]
