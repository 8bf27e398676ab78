from __future__ import annotations

import logging
import uuid
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from qbo_sync.core.errors import ExternalApiError, ResolutionError
from qbo_sync.db import repo
from qbo_sync.db.models import Customers, Products, Vendors
from qbo_sync.services.mapping_store import MappingStore
from qbo_sync.services.qbo_client import AccessContext, QuickBooksService, escape_query_value
from qbo_sync.services.qbo_errors import is_duplicate_name, parse_conflicting_id


EXPENSE_ACCOUNT_TYPES = ("Expense", "Cost of Goods Sold", "Other Expense")
FALLBACK_ACCOUNT_TYPES = ("Cost of Goods Sold", "Expense")
ACCOUNT_SEARCH_LIMIT = 50
FUZZY_SEARCH_LIMIT = 10

logger = logging.getLogger("qbo_sync.services.resolver")


def normalize_name(value: Optional[str]) -> str:
    return " ".join((value or "").split())


class AccountResolutionCache:
    """Expense account lookups for a single sync run.

    Keys are normalized category names; the empty key holds the default
    account used when a category has no match.
    """

    def __init__(self) -> None:
        self._entries: dict[str, dict[str, str]] = {}

    @staticmethod
    def key(category_name: Optional[str]) -> str:
        return normalize_name(category_name).casefold()

    def get(self, category_name: Optional[str]) -> Optional[dict[str, str]]:
        return self._entries.get(self.key(category_name))

    def put(self, category_name: Optional[str], reference: dict[str, str]) -> None:
        self._entries[self.key(category_name)] = reference

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, category_name: object) -> bool:
        return isinstance(category_name, str) and self.key(category_name) in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class EntityResolver:
    """Find-or-create for the QuickBooks references a document points at.

    Vendors, customers and service items follow the same steps: stored mapping,
    exact name query, create, and on a duplicate-name fault either the id named
    in the fault or a substring search. Every hit is written to the mapping store.
    """

    def __init__(
        self,
        qbo: QuickBooksService,
        ctx: AccessContext,
        session: AsyncSession,
        mappings: MappingStore,
        cache: AccountResolutionCache,
    ) -> None:
        self.qbo = qbo
        self.ctx = ctx
        self.session = session
        self.mappings = mappings
        self.cache = cache
        self._income_account: Optional[dict[str, str]] = None

    async def resolve_vendor(self, vendor_id: uuid.UUID) -> str:
        return await self._resolve(
            kind="vendor",
            local_id=vendor_id,
            entity="Vendor",
            resource="vendor",
            name_field="DisplayName",
            load=lambda: repo.get_vendor(self.session, vendor_id),
            build_payload=self._vendor_payload,
        )

    async def resolve_customer(self, customer_id: uuid.UUID) -> str:
        return await self._resolve(
            kind="customer",
            local_id=customer_id,
            entity="Customer",
            resource="customer",
            name_field="DisplayName",
            load=lambda: repo.get_customer(self.session, customer_id),
            build_payload=self._customer_payload,
        )

    async def resolve_product_item(self, product_id: uuid.UUID) -> str:
        """Resolve a local product to a billable QuickBooks Service item."""
        return await self._resolve(
            kind="product",
            local_id=product_id,
            entity="Item",
            resource="item",
            name_field="Name",
            load=lambda: repo.get_product(self.session, product_id),
            build_payload=self._item_payload,
        )

    async def resolve_expense_account(self, category_name: Optional[str]) -> dict[str, str]:
        cached = self.cache.get(category_name)
        if cached is not None:
            return cached

        normalized = normalize_name(category_name)
        if normalized:
            reference = await self._search_expense_account(normalized)
            if reference is not None:
                self.cache.put(normalized, reference)
                return reference

        reference = self.cache.get(None)
        if reference is None:
            reference = await self._default_expense_account()
            self.cache.put(None, reference)
        if normalized:
            self.cache.put(normalized, reference)
        return reference

    async def resolve_income_account(self) -> dict[str, str]:
        if self._income_account is not None:
            return self._income_account
        rows = await self.qbo.query(
            self.ctx,
            entity="Account",
            select_sql="SELECT * FROM Account WHERE AccountType = 'Income'",
            maxresults=1,
        )
        if not rows:
            raise ResolutionError("no income account available")
        self._income_account = self._account_reference(rows[0])
        return self._income_account

    async def _resolve(
        self,
        *,
        kind: str,
        local_id: uuid.UUID,
        entity: str,
        resource: str,
        name_field: str,
        load: Callable[[], Awaitable[Optional[Any]]],
        build_payload: Callable[[Any], Awaitable[dict[str, Any]]],
    ) -> str:
        mapping = await self.mappings.get(kind, local_id)
        if mapping is not None and mapping.external_id:
            return mapping.external_id

        local = await load()
        if local is None:
            raise ResolutionError(f"{entity} not found: {local_id}")
        normalized = normalize_name(local.name)
        if not normalized:
            raise ResolutionError(f"{entity} {local_id} has no name")

        record = await self._find_exact(entity, name_field, normalized)
        if record is not None:
            external_id = str(record["Id"])
            logger.info(
                "reference_matched_by_name",
                extra={"entity": entity, "local_id": str(local_id), "external_id": external_id},
            )
            await self.mappings.upsert_synced(kind, local_id, external_id)
            return external_id

        payload = await build_payload(local)
        try:
            created = await self.qbo.post(self.ctx, entity=entity, resource=resource, payload=payload)
            external_id = str(created["Id"])
            logger.info(
                "reference_created",
                extra={"entity": entity, "local_id": str(local_id), "external_id": external_id},
            )
        except ExternalApiError as exc:
            if not is_duplicate_name(exc):
                raise
            external_id = await self._recover_duplicate(exc, entity, name_field, normalized)

        await self.mappings.upsert_synced(kind, local_id, external_id)
        return external_id

    async def _recover_duplicate(
        self,
        exc: ExternalApiError,
        entity: str,
        name_field: str,
        name: str,
    ) -> str:
        external_id = parse_conflicting_id(exc.body)
        if external_id is not None:
            logger.info(
                "duplicate_name_recovered",
                extra={"entity": entity, "external_id": external_id, "source": "fault"},
            )
            return external_id

        try:
            rows = await self.qbo.query(
                self.ctx,
                entity=entity,
                select_sql=(
                    f"SELECT * FROM {entity} WHERE {name_field} LIKE "
                    f"'%{escape_query_value(name)}%'"
                ),
                maxresults=FUZZY_SEARCH_LIMIT,
            )
        except ExternalApiError:
            logger.warning(
                "duplicate_name_search_failed",
                exc_info=True,
                extra={"entity": entity},
            )
            raise exc
        record = self._best_match(rows, name_field, name)
        if record is None:
            logger.error("duplicate_name_recovery_failed", extra={"entity": entity})
            raise exc
        logger.info(
            "duplicate_name_recovered",
            extra={"entity": entity, "external_id": str(record["Id"]), "source": "search"},
        )
        return str(record["Id"])

    async def _find_exact(self, entity: str, name_field: str, name: str) -> Optional[dict[str, Any]]:
        rows = await self.qbo.query(
            self.ctx,
            entity=entity,
            select_sql=f"SELECT * FROM {entity} WHERE {name_field} = '{escape_query_value(name)}'",
            maxresults=1,
        )
        return self._best_match(rows, name_field, name)

    async def _search_expense_account(self, name: str) -> Optional[dict[str, str]]:
        rows = await self.qbo.query(
            self.ctx,
            entity="Account",
            select_sql=f"SELECT * FROM Account WHERE Name LIKE '%{escape_query_value(name)}%'",
            maxresults=ACCOUNT_SEARCH_LIMIT,
        )
        candidates = [
            row
            for row in rows
            if row.get("AccountType") in EXPENSE_ACCOUNT_TYPES and row.get("Active", True)
        ]
        record = self._best_match(candidates, "Name", name)
        if record is None:
            return None
        return self._account_reference(record)

    async def _default_expense_account(self) -> dict[str, str]:
        for account_type in FALLBACK_ACCOUNT_TYPES:
            rows = await self.qbo.query(
                self.ctx,
                entity="Account",
                select_sql=f"SELECT * FROM Account WHERE AccountType = '{account_type}'",
                maxresults=1,
            )
            if rows:
                return self._account_reference(rows[0])
        raise ResolutionError("no expense account available")

    def _best_match(
        self,
        rows: list[dict[str, Any]],
        name_field: str,
        name: str,
    ) -> Optional[dict[str, Any]]:
        rows = [row for row in rows if row.get("Id") is not None]
        if not rows:
            return None
        wanted = name.casefold()
        for row in rows:
            if normalize_name(row.get(name_field)).casefold() == wanted:
                return row
        return rows[0]

    def _account_reference(self, record: dict[str, Any]) -> dict[str, str]:
        return {"value": str(record["Id"]), "name": str(record.get("Name") or "")}

    async def _vendor_payload(self, vendor: Vendors) -> dict[str, Any]:
        name = normalize_name(vendor.name)
        payload: dict[str, Any] = {
            "DisplayName": name,
            "CompanyName": vendor.company or name,
            "Active": vendor.status == "active",
        }
        if vendor.email:
            payload["PrimaryEmailAddr"] = {"Address": vendor.email}
        if vendor.phone:
            payload["PrimaryPhone"] = {"FreeFormNumber": vendor.phone}
        if vendor.address:
            address = {"Line1": vendor.address}
            if vendor.city:
                address["City"] = vendor.city
            if vendor.state:
                address["CountrySubDivisionCode"] = vendor.state
            if vendor.zip:
                address["PostalCode"] = vendor.zip
            payload["BillAddr"] = address
        return payload

    async def _customer_payload(self, customer: Customers) -> dict[str, Any]:
        name = normalize_name(customer.name)
        payload: dict[str, Any] = {"DisplayName": name}
        if customer.company:
            payload["CompanyName"] = customer.company
        if customer.email:
            payload["PrimaryEmailAddr"] = {"Address": customer.email}
        if customer.phone:
            payload["PrimaryPhone"] = {"FreeFormNumber": customer.phone}
        if customer.address:
            payload["BillAddr"] = {"Line1": customer.address}
        return payload

    async def _item_payload(self, product: Products) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "Name": normalize_name(product.name)[:100],
            "Type": "Service",
            "IncomeAccountRef": await self.resolve_income_account(),
            "ExpenseAccountRef": await self.resolve_expense_account(None),
        }
        if product.description:
            payload["Description"] = product.description[:4000]
        if product.unit_price is not None:
            payload["UnitPrice"] = float(product.unit_price)
        return payload
