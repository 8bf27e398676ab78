from __future__ import annotations

import uuid
from typing import Any, Optional

from qbo_sync.db import repo
from qbo_sync.db.models import Estimates
from qbo_sync.services.line_items import build_sales_lines
from qbo_sync.services.locked_period import TxnDate
from qbo_sync.services.orchestrator import DOC_NUMBER_MAX_LENGTH, DocumentSync
from qbo_sync.services.resolver import EntityResolver


class EstimateSync(DocumentSync):
    entity_type = "estimate"
    qbo_entity = "Estimate"
    qbo_resource = "estimate"

    async def load_document(self, entity_id: uuid.UUID) -> Optional[Estimates]:
        return await repo.get_estimate(self.session, entity_id)

    def transaction_date(self, document: Estimates) -> TxnDate:
        return document.estimate_date or document.created_at

    async def build_payload(self, document: Estimates, resolver: EntityResolver) -> dict[str, Any]:
        customer_id = await resolver.resolve_customer(document.customer_id)
        # Line totals already include markup.
        payload: dict[str, Any] = {
            "CustomerRef": {"value": customer_id},
            "Line": await build_sales_lines(
                list(document.line_items),
                resolver=resolver,
                tax_amount=document.tax_amount,
                fallback_amount=document.subtotal,
                fallback_description=f"Estimate {document.number}",
            ),
            "DocNumber": document.number[:DOC_NUMBER_MAX_LENGTH],
            "PrivateNote": document.notes or f"Estimate: {document.number}",
        }
        if document.estimate_date is not None:
            payload["TxnDate"] = document.estimate_date.isoformat()
        if document.valid_until is not None:
            payload["ExpirationDate"] = document.valid_until.isoformat()
        return payload
