from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from qbo_sync.core.config import Settings, get_settings
from qbo_sync.core.errors import (
    ConflictRecovered,
    EntityNotFoundError,
    ExternalApiError,
    LockedPeriodError,
)
from qbo_sync.core.logging import log_sync_finished, log_sync_started
from qbo_sync.db.models import SyncStatus
from qbo_sync.schemas.sync import SyncOutcome
from qbo_sync.services.locked_period import LockedPeriodGuard, TxnDate
from qbo_sync.services.mapping_store import MappingStore
from qbo_sync.services.qbo_client import AccessContext, QuickBooksService
from qbo_sync.services.qbo_errors import extract_fault_code, is_duplicate_document, parse_conflicting_id
from qbo_sync.services.resolver import AccountResolutionCache, EntityResolver
from qbo_sync.services.token_manager import TokenManager


DOC_NUMBER_MAX_LENGTH = 21

logger = logging.getLogger("qbo_sync.services.orchestrator")


class DocumentSync:
    """Create and update workflow shared by bills, invoices and estimates.

    Subclasses describe the document: how to load it, its transaction date and
    number, and how to turn it into a QuickBooks payload. This class owns the
    mapping row and the sync log for the document.
    """

    entity_type: str = ""
    qbo_entity: str = ""
    qbo_resource: str = ""

    def __init__(
        self,
        session: AsyncSession,
        tenant_id: uuid.UUID,
        *,
        settings: Settings | None = None,
        qbo: QuickBooksService | None = None,
        tokens: TokenManager | None = None,
        mappings: MappingStore | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session = session
        self.tenant_id = tenant_id
        self.qbo = qbo or QuickBooksService(self.settings)
        self.tokens = tokens or TokenManager(self.settings)
        self.mappings = mappings or MappingStore(session, tenant_id)
        self.cache = AccountResolutionCache()

    async def load_document(self, entity_id: uuid.UUID) -> Optional[Any]:
        raise NotImplementedError

    def transaction_date(self, document: Any) -> TxnDate:
        raise NotImplementedError

    def doc_number(self, document: Any) -> Optional[str]:
        return getattr(document, "number", None)

    async def build_payload(self, document: Any, resolver: EntityResolver) -> dict[str, Any]:
        raise NotImplementedError

    async def after_sync(
        self,
        ctx: AccessContext,
        document: Any,
        external_id: str,
    ) -> tuple[int, int]:
        """Hook run after a committed create or update. Returns (synced, failed) attachment counts."""
        return 0, 0

    async def create(self, entity_id: uuid.UUID, user_id: Optional[str] = None) -> SyncOutcome:
        self.cache = AccountResolutionCache()
        log_sync_started(entity_type=self.entity_type, entity_id=str(entity_id), action="create", user_id=user_id)

        mapping = await self.mappings.get(self.entity_type, entity_id)
        if mapping is not None and mapping.external_id and mapping.sync_status != SyncStatus.ERROR:
            log_sync_finished(
                entity_type=self.entity_type,
                entity_id=str(entity_id),
                action="create",
                result="already_synced",
                external_id=mapping.external_id,
            )
            return SyncOutcome(
                entity_type=self.entity_type,
                entity_id=entity_id,
                action="create",
                external_id=mapping.external_id,
                doc_number=mapping.external_doc_number,
                already_synced=True,
            )

        document = await self._require_document(entity_id)
        conflict: Optional[ConflictRecovered] = None
        try:
            await self._check_period(document, entity_id, user_id, "create")
            ctx = await self.tokens.get_valid_credential(self.session, self.tenant_id)
            resolver = self._resolver(ctx)
            payload = await self.build_payload(document, resolver)
            try:
                created = await self.qbo.post(
                    ctx,
                    entity=self.qbo_entity,
                    resource=self.qbo_resource,
                    payload=payload,
                )
                external_id = str(created["Id"])
                doc_number = created.get("DocNumber") or self.doc_number(document)
            except ExternalApiError as exc:
                if not is_duplicate_document(exc):
                    raise
                conflict = self._recover_conflict(exc, document)
                external_id = conflict.external_id
                doc_number = conflict.doc_number

            await self.mappings.upsert_synced(
                self.entity_type,
                entity_id,
                external_id,
                doc_number=doc_number,
            )
            if conflict is not None:
                await self.mappings.append_log(
                    entity_type=self.entity_type,
                    entity_id=entity_id,
                    action="create",
                    status="conflict_recovered",
                    external_id=external_id,
                    details={"doc_number": doc_number, "fault_code": conflict.fault_code},
                )
            else:
                await self.mappings.append_log(
                    entity_type=self.entity_type,
                    entity_id=entity_id,
                    action="create",
                    status="success",
                    external_id=external_id,
                    details={"doc_number": doc_number},
                )
            await self.mappings.commit()
        except LockedPeriodError as exc:
            await self._record_blocked(entity_id, "create", exc)
            raise
        except Exception as exc:
            await self._record_failure(entity_id, "create", exc)
            raise

        synced, failed = await self.after_sync(ctx, document, external_id)
        log_sync_finished(
            entity_type=self.entity_type,
            entity_id=str(entity_id),
            action="create",
            result="conflict_recovered" if conflict is not None else "success",
            external_id=external_id,
            payload=payload,
        )
        return SyncOutcome(
            entity_type=self.entity_type,
            entity_id=entity_id,
            action="create",
            external_id=external_id,
            doc_number=doc_number,
            conflict_recovered=conflict is not None,
            attachments_synced=synced,
            attachments_failed=failed,
        )

    async def update(self, entity_id: uuid.UUID, user_id: Optional[str] = None) -> SyncOutcome:
        self.cache = AccountResolutionCache()
        log_sync_started(entity_type=self.entity_type, entity_id=str(entity_id), action="update", user_id=user_id)

        mapping = await self.mappings.get(self.entity_type, entity_id)
        skip_reason: Optional[str] = None
        if mapping is None or not mapping.external_id:
            skip_reason = "not synced to QuickBooks"
        elif mapping.sync_status in SyncStatus.INACTIVE:
            skip_reason = f"mapping is {mapping.sync_status}"
        if skip_reason is not None:
            log_sync_finished(
                entity_type=self.entity_type,
                entity_id=str(entity_id),
                action="update",
                result="skipped",
                error_message=skip_reason,
            )
            return SyncOutcome(
                entity_type=self.entity_type,
                entity_id=entity_id,
                action="update",
                external_id=mapping.external_id if mapping is not None else None,
                updated=False,
                message=skip_reason,
            )

        external_id = mapping.external_id
        document = await self._require_document(entity_id)
        try:
            await self._check_period(document, entity_id, user_id, "update")
            ctx = await self.tokens.get_valid_credential(self.session, self.tenant_id)
            remote = await self.qbo.read(
                ctx,
                entity=self.qbo_entity,
                resource=self.qbo_resource,
                entity_id=external_id,
            )
            sync_token = remote.get("SyncToken")
            if sync_token is None:
                raise ExternalApiError(
                    f"QuickBooks {self.qbo_entity} {external_id} has no SyncToken",
                    entity=self.qbo_entity,
                )
            resolver = self._resolver(ctx)
            payload = await self.build_payload(document, resolver)
            payload["Id"] = external_id
            payload["SyncToken"] = str(sync_token)

            # QuickBooks webhooks for this update can arrive before the response;
            # the mapping must already look fresh when they do.
            await self.mappings.mark_syncing(self.entity_type, entity_id)
            await self.mappings.commit()

            updated = await self.qbo.post(
                ctx,
                entity=self.qbo_entity,
                resource=self.qbo_resource,
                payload=payload,
            )
            doc_number = updated.get("DocNumber") or self.doc_number(document)
            await self.mappings.mark_synced(self.entity_type, entity_id, doc_number=doc_number)
            await self.mappings.append_log(
                entity_type=self.entity_type,
                entity_id=entity_id,
                action="update",
                status="success",
                external_id=external_id,
                details={"doc_number": doc_number, "sync_token": updated.get("SyncToken")},
            )
            await self.mappings.commit()
        except LockedPeriodError as exc:
            await self._record_blocked(entity_id, "update", exc)
            raise
        except Exception as exc:
            await self._record_failure(entity_id, "update", exc)
            raise

        synced, failed = await self.after_sync(ctx, document, external_id)
        log_sync_finished(
            entity_type=self.entity_type,
            entity_id=str(entity_id),
            action="update",
            result="success",
            external_id=external_id,
            payload=payload,
        )
        return SyncOutcome(
            entity_type=self.entity_type,
            entity_id=entity_id,
            action="update",
            external_id=external_id,
            doc_number=doc_number,
            updated=True,
            attachments_synced=synced,
            attachments_failed=failed,
        )

    def _resolver(self, ctx: AccessContext) -> EntityResolver:
        return EntityResolver(self.qbo, ctx, self.session, self.mappings, self.cache)

    async def _require_document(self, entity_id: uuid.UUID) -> Any:
        document = await self.load_document(entity_id)
        if document is None:
            raise EntityNotFoundError(f"{self.entity_type.replace('_', ' ').capitalize()} not found: {entity_id}")
        return document

    async def _check_period(
        self,
        document: Any,
        entity_id: uuid.UUID,
        user_id: Optional[str],
        action: str,
    ) -> None:
        guard = LockedPeriodGuard(self.session, self.tenant_id)
        check = await guard.check_allowed(
            self.transaction_date(document),
            entity_type=self.entity_type,
            entity_id=entity_id,
            user_id=user_id,
            action=action,
        )
        if not check.allowed:
            raise LockedPeriodError(check.message or "Transaction date falls in a locked accounting period")

    def _recover_conflict(self, exc: ExternalApiError, document: Any) -> ConflictRecovered:
        external_id = parse_conflicting_id(exc.body)
        if external_id is None:
            logger.error(
                "duplicate_document_unrecoverable",
                extra={"entity_type": self.entity_type, "doc_number": self.doc_number(document)},
            )
            raise exc
        logger.info(
            "duplicate_document_linked",
            extra={
                "entity_type": self.entity_type,
                "doc_number": self.doc_number(document),
                "external_id": external_id,
            },
        )
        return ConflictRecovered(
            external_id=external_id,
            doc_number=self.doc_number(document),
            fault_code=extract_fault_code(exc.body),
        )

    async def _record_blocked(self, entity_id: uuid.UUID, action: str, exc: LockedPeriodError) -> None:
        # Keeps the violation row; a blocked sync does not touch the mapping.
        await self.mappings.commit()
        log_sync_finished(
            entity_type=self.entity_type,
            entity_id=str(entity_id),
            action=action,
            result="blocked",
            error_type=type(exc).__name__,
            error_message=exc.message,
        )

    async def _record_failure(self, entity_id: uuid.UUID, action: str, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        if isinstance(exc, SQLAlchemyError):
            await self.mappings.rollback()
        try:
            await self.mappings.mark_error(self.entity_type, entity_id, message)
            await self.mappings.append_log(
                entity_type=self.entity_type,
                entity_id=entity_id,
                action=action,
                status="failed",
                error_message=message,
                details={"error_type": type(exc).__name__},
            )
            await self.mappings.commit()
        except SQLAlchemyError:
            logger.exception(
                "sync_failure_not_recorded",
                extra={"entity_type": self.entity_type, "entity_id": str(entity_id)},
            )
            await self.mappings.rollback()
        log_sync_finished(
            entity_type=self.entity_type,
            entity_id=str(entity_id),
            action=action,
            result="failed",
            error_type=type(exc).__name__,
            error_message=message,
        )
