from __future__ import annotations

import os
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Optional, Union

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

os.environ.setdefault("API_KEY", "test-api-key")
os.environ.setdefault("FERNET_KEY", Fernet.generate_key().decode())
os.environ.setdefault("QBO_CLIENT_ID", "client-id")
os.environ.setdefault("QBO_CLIENT_SECRET", "client-secret")
os.environ.setdefault("QBO_REDIRECT_URI", "https://example.com/callback")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["RETRY_MAX_ATTEMPTS"] = "1"

from qbo_sync.core.config import Settings, get_settings  # noqa: E402
from qbo_sync.core.errors import ExternalApiError  # noqa: E402
from qbo_sync.db.models import (  # noqa: E402
    Base,
    Customers,
    ExpenseCategories,
    Tenants,
    VendorBillLineItems,
    VendorBills,
    Vendors,
)
from qbo_sync.services.mapping_store import MappingStore  # noqa: E402
from qbo_sync.services.qbo_client import AccessContext  # noqa: E402


QueryResult = Union[list[dict[str, Any]], Callable[[str], list[dict[str, Any]]]]

COGS_ACCOUNT = {"Id": "80", "Name": "Cost of Goods Sold", "AccountType": "Cost of Goods Sold"}
INCOME_ACCOUNT = {"Id": "79", "Name": "Sales of Product Income", "AccountType": "Income"}


def fault_body(code: str, detail: str, message: str = "Business Validation Error") -> str:
    return (
        '{"Fault": {"Error": [{"Message": "%s", "Detail": "%s", "code": "%s"}], '
        '"type": "ValidationFault"}}' % (message, detail, code)
    )


def fault_error(code: str, detail: str, message: str = "Business Validation Error") -> ExternalApiError:
    return ExternalApiError(
        "QuickBooks post error",
        qbo_status_code=400,
        body=fault_body(code, detail, message),
    )


def default_accounts(select_sql: str) -> list[dict[str, Any]]:
    if "AccountType = 'Cost of Goods Sold'" in select_sql:
        return [COGS_ACCOUNT]
    if "AccountType = 'Income'" in select_sql:
        return [INCOME_ACCOUNT]
    return []


class FakeQuickBooks:
    """Records every call; ``events`` can be shared with a RecordingMappingStore."""

    def __init__(self, events: Optional[list[tuple]] = None) -> None:
        self.events: list[tuple] = events if events is not None else []
        self.calls: list[tuple] = []
        self.query_results: dict[str, QueryResult] = {"Account": default_accounts}
        self.post_results: dict[str, list[Any]] = {}
        self.read_results: dict[str, dict[str, Any]] = {}
        self.uploads: list[dict[str, Any]] = []
        self.upload_error: Optional[Exception] = None
        self._next_id = 1000

    def queries(self, entity: Optional[str] = None) -> list[str]:
        return [
            call[2]
            for call in self.calls
            if call[0] == "query" and (entity is None or call[1] == entity)
        ]

    def posts(self, entity: Optional[str] = None) -> list[dict[str, Any]]:
        return [
            call[2]
            for call in self.calls
            if call[0] == "post" and (entity is None or call[1] == entity)
        ]

    async def query(
        self,
        ctx: AccessContext,
        *,
        entity: str,
        select_sql: str,
        maxresults: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        self.calls.append(("query", entity, select_sql, maxresults))
        self.events.append(("query", entity))
        result = self.query_results.get(entity, [])
        if callable(result):
            return result(select_sql)
        return list(result)

    async def read(self, ctx: AccessContext, *, entity: str, resource: str, entity_id: str) -> dict[str, Any]:
        self.calls.append(("read", entity, entity_id))
        self.events.append(("read", entity))
        return self.read_results.get(entity, {"Id": entity_id, "SyncToken": "3"})

    async def post(
        self,
        ctx: AccessContext,
        *,
        entity: str,
        resource: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        self.calls.append(("post", entity, payload))
        self.events.append(("post", entity))
        queue = self.post_results.get(entity)
        if queue:
            result = queue.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        self._next_id += 1
        record: dict[str, Any] = {"Id": payload.get("Id") or str(self._next_id), "SyncToken": "0"}
        if "DocNumber" in payload:
            record["DocNumber"] = payload["DocNumber"]
        return record

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
        self.events.append(("upload", entity_type))
        if self.upload_error is not None:
            raise self.upload_error
        self.uploads.append(
            {
                "entity_type": entity_type,
                "entity_id": entity_id,
                "file_name": file_name,
                "content_type": content_type,
                "content": content,
            }
        )
        return f"att-{len(self.uploads)}"


class FakeTokens:
    def __init__(self) -> None:
        self.ctx = AccessContext(access_token="access-token", realm_id="realm-1", environment="sandbox")
        self.calls = 0

    async def get_valid_credential(self, session, tenant_id) -> AccessContext:
        self.calls += 1
        return self.ctx


class RecordingMappingStore(MappingStore):
    def __init__(self, session, tenant_id, events: list[tuple]) -> None:
        super().__init__(session, tenant_id)
        self.events = events

    async def mark_syncing(self, kind, local_id):
        self.events.append(("mark_syncing", kind))
        return await super().mark_syncing(kind, local_id)

    async def commit(self) -> None:
        self.events.append(("commit",))
        await super().commit()


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def events() -> list[tuple]:
    return []


@pytest.fixture
def fake_qbo(events) -> FakeQuickBooks:
    return FakeQuickBooks(events)


@pytest.fixture
def fake_tokens() -> FakeTokens:
    return FakeTokens()


@pytest.fixture
def ctx(fake_tokens) -> AccessContext:
    return fake_tokens.ctx


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def seed(session_factory):
    async def _seed(*objects: Base) -> None:
        async with session_factory() as seed_session:
            seed_session.add_all(objects)
            await seed_session.commit()

    return _seed


@pytest_asyncio.fixture
async def tenant(seed) -> Tenants:
    tenant = Tenants(id=uuid.uuid4(), name="Northwind Builders")
    await seed(tenant)
    return tenant


@pytest_asyncio.fixture
async def session(session_factory, tenant):
    async with session_factory() as session:
        yield session


@pytest.fixture
def mappings(session, tenant, events) -> RecordingMappingStore:
    return RecordingMappingStore(session, tenant.id, events)


def bill_records(
    *,
    number: str = "VB-1001",
    bill_date: date = date(2026, 5, 14),
    lines: Optional[list[dict[str, Any]]] = None,
    with_customer: bool = True,
    purchase_order_id: Optional[uuid.UUID] = None,
) -> tuple[VendorBills, list[Base]]:
    """Build a vendor bill plus its vendor, customer, categories and lines."""
    vendor = Vendors(id=uuid.uuid4(), name="Acme Supply", company="Acme Supply LLC", email="ap@acme.test")
    customer = Customers(id=uuid.uuid4(), name="Harbor View HOA") if with_customer else None
    bill = VendorBills(
        id=uuid.uuid4(),
        number=number,
        vendor_id=vendor.id,
        vendor_name=vendor.name,
        customer_id=customer.id if customer else None,
        purchase_order_id=purchase_order_id,
        bill_date=bill_date,
        subtotal=Decimal("0"),
        total=Decimal("0"),
    )
    records: list[Base] = [vendor]
    if customer is not None:
        records.append(customer)
    records.append(bill)
    categories: dict[str, ExpenseCategories] = {}
    total = Decimal("0")
    for index, values in enumerate(lines or [{"description": "Lumber", "quantity": "2", "total": "150.00", "category": "Materials"}]):
        category_id = None
        category_name = values.get("category")
        if category_name:
            if category_name not in categories:
                categories[category_name] = ExpenseCategories(id=uuid.uuid4(), name=category_name)
                records.insert(0, categories[category_name])
            category_id = categories[category_name].id
        line_total = Decimal(str(values["total"]))
        total += line_total
        records.append(
            VendorBillLineItems(
                id=uuid.uuid4(),
                bill_id=bill.id,
                description=values.get("description"),
                quantity=Decimal(str(values.get("quantity", "1"))),
                total=line_total,
                category_id=category_id,
                product_id=values.get("product_id"),
                sort_order=index,
            )
        )
    bill.subtotal = total
    bill.total = total
    return bill, records
