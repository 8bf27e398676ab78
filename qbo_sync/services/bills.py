from __future__ import annotations

import uuid
from typing import Any, Optional

from qbo_sync.db import repo
from qbo_sync.db.models import VendorBills
from qbo_sync.services.attachments import AttachmentUploader
from qbo_sync.services.line_items import build_bill_lines, is_billable
from qbo_sync.services.locked_period import TxnDate
from qbo_sync.services.orchestrator import DOC_NUMBER_MAX_LENGTH, DocumentSync
from qbo_sync.services.qbo_client import AccessContext
from qbo_sync.services.resolver import EntityResolver


class BillSync(DocumentSync):
    entity_type = "vendor_bill"
    qbo_entity = "Bill"
    qbo_resource = "bill"

    async def load_document(self, entity_id: uuid.UUID) -> Optional[VendorBills]:
        return await repo.get_vendor_bill(self.session, entity_id)

    def transaction_date(self, document: VendorBills) -> TxnDate:
        return document.bill_date

    async def build_payload(self, document: VendorBills, resolver: EntityResolver) -> dict[str, Any]:
        vendor_id = await resolver.resolve_vendor(document.vendor_id)
        lines = list(document.line_items)
        billable = is_billable(document, lines)
        customer_ref = None
        if billable and document.customer_id is not None:
            customer_ref = {"value": await resolver.resolve_customer(document.customer_id)}

        payload: dict[str, Any] = {
            "VendorRef": {"value": vendor_id},
            "Line": await build_bill_lines(
                lines,
                billable=billable,
                resolver=resolver,
                customer_ref=customer_ref,
                fallback_amount=document.subtotal,
                fallback_description=f"Bill {document.number}",
            ),
            "TxnDate": document.bill_date.isoformat(),
            "DocNumber": document.number[:DOC_NUMBER_MAX_LENGTH],
            "PrivateNote": document.notes or f"Vendor Bill: {document.number}",
        }
        if document.due_date is not None:
            payload["DueDate"] = document.due_date.isoformat()
        return payload

    async def after_sync(
        self,
        ctx: AccessContext,
        document: VendorBills,
        external_id: str,
    ) -> tuple[int, int]:
        uploader = AttachmentUploader(self.session, self.qbo, self.settings)
        result = await uploader.upload_pending(ctx, document, external_id)
        return result.synced, result.failed
