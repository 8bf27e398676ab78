from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession

from qbo_sync.core.config import Settings, get_settings
from qbo_sync.core.errors import SyncError
from qbo_sync.db.models import BillAttachments, VendorBills
from qbo_sync.services.qbo_client import AccessContext, QuickBooksService


logger = logging.getLogger("qbo_sync.services.attachments")


@dataclass
class AttachmentResult:
    synced: int = 0
    failed: int = 0


class AttachmentUploader:
    """Uploads local bill files to QuickBooks.

    Upload failures are counted and logged; they never fail the bill sync.
    """

    def __init__(
        self,
        session: AsyncSession,
        qbo: QuickBooksService,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.qbo = qbo
        self.settings = settings or get_settings()

    async def upload_pending(
        self,
        ctx: AccessContext,
        bill: VendorBills,
        external_bill_id: str,
    ) -> AttachmentResult:
        result = AttachmentResult()
        pending = [a for a in bill.attachments if not a.quickbooks_attachable_id]
        if not pending:
            return result

        for attachment in pending:
            try:
                content = await asyncio.to_thread(self._resolve_path(attachment).read_bytes)
                attachable_id = await self.qbo.upload_attachment(
                    ctx,
                    entity_type="Bill",
                    entity_id=external_bill_id,
                    file_name=attachment.file_name,
                    content_type=attachment.file_type or "application/octet-stream",
                    content=content,
                )
            except (OSError, SyncError) as exc:
                result.failed += 1
                logger.warning(
                    "attachment_upload_failed",
                    extra={
                        "attachment_id": str(attachment.id),
                        "file_name": attachment.file_name,
                        "error": str(exc),
                    },
                )
                continue
            attachment.quickbooks_attachable_id = attachable_id
            result.synced += 1

        await self.session.commit()
        logger.info(
            "attachments_uploaded",
            extra={
                "bill_id": str(bill.id),
                "external_bill_id": external_bill_id,
                "synced": result.synced,
                "failed": result.failed,
            },
        )
        return result

    def _resolve_path(self, attachment: BillAttachments) -> Path:
        base = Path(self.settings.attachment_storage_dir).resolve()
        path = (base / attachment.storage_path).resolve()
        if path != base and base not in path.parents:
            raise FileNotFoundError(f"Attachment path escapes storage: {attachment.storage_path}")
        return path
