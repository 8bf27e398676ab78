from __future__ import annotations

import uuid
from typing import Any, Optional

from qbo_sync.db import repo
from qbo_sync.db.models import Invoices
from qbo_sync.services.line_items import build_sales_lines
from qbo_sync.services.locked_period import TxnDate
from qbo_sync.services.orchestrator import DOC_NUMBER_MAX_LENGTH, DocumentSync
from qbo_sync.services.resolver import EntityResolver


class InvoiceSync(DocumentSync):
    entity_type = "invoice"
    qbo_entity = "Invoice"
    qbo_resource = "invoice"

    async def load_document(self, entity_id: uuid.UUID) -> Optional[Invoices]:
        return await repo.get_invoice(self.session, entity_id)

    def transaction_date(self, document: Invoices) -> TxnDate:
        return document.invoice_date or document.created_at

    async def build_payload(self, document: Invoices, resolver: EntityResolver) -> dict[str, Any]:
        customer_id = await resolver.resolve_customer(document.customer_id)
        payload: dict[str, Any] = {
            "CustomerRef": {"value": customer_id},
            "Line": await build_sales_lines(
                list(document.line_items),
                resolver=resolver,
                tax_amount=document.tax_amount,
                fallback_amount=document.subtotal,
                fallback_description=f"Invoice {document.number}",
            ),
            "DocNumber": document.number[:DOC_NUMBER_MAX_LENGTH],
            "PrivateNote": document.notes or f"Invoice: {document.number}",
        }
        if document.invoice_date is not None:
            payload["TxnDate"] = document.invoice_date.isoformat()
        if document.due_date is not None:
            payload["DueDate"] = document.due_date.isoformat()
        if document.project_name:
            payload["CustomerMemo"] = {"value": f"Project: {document.project_name}"}
        return payload
