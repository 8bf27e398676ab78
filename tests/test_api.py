from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from qbo_sync.api.deps import get_qbo_service, get_token_manager
from qbo_sync.core.config import get_settings
from qbo_sync.core.errors import AuthError
from qbo_sync.db.models import (
    Base,
    BillMappings,
    Customers,
    InvoiceLineItems,
    Invoices,
    LockedPeriodSettings,
    SyncStatus,
    Tenants,
    TenantStatus,
    UserRoles,
)
from qbo_sync.db.session import get_session
from qbo_sync.main import app

from tests.conftest import FakeQuickBooks, FakeTokens, bill_records


@pytest.fixture
def database(tmp_path):
    path = tmp_path / "api.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    yield sync_engine, f"sqlite+aiosqlite:///{path}"
    sync_engine.dispose()


@pytest.fixture
def db(database):
    sync_engine, _ = database

    def _seed(*objects):
        with Session(sync_engine, expire_on_commit=False) as session:
            session.add_all(objects)
            session.commit()

    return _seed


@pytest.fixture
def api_tenant(db):
    tenant = Tenants(id=uuid.uuid4(), name="Northwind Builders")
    db(
        tenant,
        UserRoles(user_id="manager-1", role="manager"),
        UserRoles(user_id="viewer-1", role="viewer"),
    )
    return tenant


@pytest.fixture
def api_qbo():
    return FakeQuickBooks()


@pytest.fixture
def api_tokens():
    return FakeTokens()


@pytest.fixture
def client(database, settings, api_qbo, api_tokens):
    _, async_url = database
    async_engine = create_async_engine(async_url, poolclass=NullPool)
    factory = async_sessionmaker(bind=async_engine, expire_on_commit=False)

    async def override_session():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_qbo_service] = lambda: api_qbo
    app.dependency_overrides[get_token_manager] = lambda: api_tokens
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def headers(settings, user_id=None):
    values = {"X-API-Key": settings.api_key}
    if user_id:
        values["X-User-Id"] = user_id
    return values


def test_health_is_public(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_missing_api_key_rejected(client, api_tenant):
    bill_id = uuid.uuid4()

    response = client.post(f"/sync/{api_tenant.id}/bills/{bill_id}", headers={"X-User-Id": "manager-1"})

    assert response.status_code == 401
    body = response.json()
    assert body["code"] == 401
    assert body["message"] == "Invalid or missing API key"
    assert "correlation_id" in body


def test_missing_caller_identity_rejected(client, settings, api_tenant):
    response = client.post(f"/sync/{api_tenant.id}/bills/{uuid.uuid4()}", headers=headers(settings))

    assert response.status_code == 401
    assert response.json()["message"] == "Missing caller identity"


def test_unknown_caller_rejected(client, settings, api_tenant):
    response = client.post(
        f"/sync/{api_tenant.id}/invoices/{uuid.uuid4()}",
        headers=headers(settings, "stranger"),
    )

    assert response.status_code == 401


def test_bill_sync_requires_manager_role(client, settings, api_tenant, api_qbo):
    response = client.post(
        f"/sync/{api_tenant.id}/bills/{uuid.uuid4()}",
        headers=headers(settings, "viewer-1"),
    )

    assert response.status_code == 403
    assert api_qbo.calls == []


def test_manager_creates_bill_and_reads_status(client, settings, db, api_tenant, api_qbo):
    bill, records = bill_records()
    db(*records)

    response = client.post(
        f"/sync/{api_tenant.id}/bills/{bill.id}",
        headers=headers(settings, "manager-1"),
    )

    assert response.status_code == 200, response.text
    outcome = response.json()
    assert outcome["entity_type"] == "vendor_bill"
    assert outcome["external_id"] == "1002"
    assert len(api_qbo.posts("Bill")) == 1
    assert outcome["already_synced"] is False

    status_response = client.get(
        f"/sync/{api_tenant.id}/bills/{bill.id}/status",
        headers=headers(settings, "viewer-1"),
    )
    assert status_response.status_code == 200
    assert status_response.json()["sync_status"] == "synced"
    assert status_response.json()["external_id"] == outcome["external_id"]

    logs = client.get(
        f"/sync/{api_tenant.id}/logs",
        params={"entity_type": "bills"},
        headers=headers(settings, "viewer-1"),
    )
    assert logs.status_code == 200
    items = logs.json()["items"]
    assert [(item["entity_id"], item["status"]) for item in items] == [(str(bill.id), "success")]


def test_locked_period_returns_blocked_envelope(client, settings, db, api_tenant, api_qbo):
    bill, records = bill_records(bill_date=date(2026, 1, 5))
    db(*records, LockedPeriodSettings(tenant_id=api_tenant.id, enabled=True, cutoff_date=date(2026, 3, 31)))

    response = client.post(
        f"/sync/{api_tenant.id}/bills/{bill.id}",
        headers=headers(settings, "manager-1"),
    )

    assert response.status_code == 403
    body = response.json()
    assert body["success"] is False
    assert body["blocked_by"] == "locked_period"
    assert "2026-03-31" in body["message"]
    assert api_qbo.calls == []


def test_invoice_sync_allowed_for_any_known_caller(client, settings, db, api_tenant):
    customer = Customers(id=uuid.uuid4(), name="Harbor View HOA")
    invoice = Invoices(
        id=uuid.uuid4(),
        number="INV-9",
        customer_id=customer.id,
        invoice_date=date(2026, 5, 1),
        subtotal=Decimal("100"),
        total=Decimal("100"),
    )
    line = InvoiceLineItems(invoice_id=invoice.id, description="Consulting", quantity=Decimal("1"), total=Decimal("100"))
    db(customer, invoice, line)

    response = client.post(
        f"/sync/{api_tenant.id}/invoices/{invoice.id}",
        headers=headers(settings, "viewer-1"),
    )

    assert response.status_code == 200, response.text
    assert response.json()["entity_type"] == "invoice"


def test_update_of_voided_bill_is_skipped(client, settings, db, api_tenant, api_qbo):
    bill, records = bill_records()
    db(*records, BillMappings(tenant_id=api_tenant.id, local_id=bill.id, external_id="77", sync_status=SyncStatus.VOIDED))

    response = client.put(
        f"/sync/{api_tenant.id}/bills/{bill.id}",
        headers=headers(settings, "manager-1"),
    )

    assert response.status_code == 200
    assert response.json()["updated"] is False
    assert api_qbo.calls == []


def test_missing_document_returns_not_found(client, settings, api_tenant):
    response = client.post(
        f"/sync/{api_tenant.id}/bills/{uuid.uuid4()}",
        headers=headers(settings, "manager-1"),
    )

    assert response.status_code == 404
    assert response.json()["code"] == 404


def test_disconnected_tenant_returns_unauthorized(client, settings, db, api_tenant, api_tokens, monkeypatch, database):
    bill, records = bill_records()
    db(*records)

    async def not_connected(session, tenant_id):
        raise AuthError("QuickBooks not connected")

    monkeypatch.setattr(api_tokens, "get_valid_credential", not_connected)

    response = client.post(
        f"/sync/{api_tenant.id}/bills/{bill.id}",
        headers=headers(settings, "manager-1"),
    )

    assert response.status_code == 401
    assert response.json()["message"] == "QuickBooks not connected"
    sync_engine, _ = database
    with Session(sync_engine) as session:
        mapping = session.scalars(select(BillMappings).where(BillMappings.local_id == bill.id)).one()
    assert mapping.sync_status == SyncStatus.ERROR


def test_inactive_tenant_is_rejected(client, settings, db):
    tenant = Tenants(id=uuid.uuid4(), name="Dormant Co", status=TenantStatus.INACTIVE)
    db(tenant, UserRoles(user_id="manager-2", role="manager"))

    response = client.post(
        f"/sync/{tenant.id}/bills/{uuid.uuid4()}",
        headers=headers(settings, "manager-2"),
    )

    assert response.status_code == 403
    assert response.json()["message"] == "Tenant is inactive"


def test_create_and_fetch_tenant(client, settings):
    created = client.post("/tenants", json={"name": "Summit Roofing"}, headers=headers(settings))

    assert created.status_code == 201
    tenant_id = created.json()["id"]

    fetched = client.get(f"/tenants/{tenant_id}", headers=headers(settings))
    assert fetched.status_code == 200
    assert fetched.json()["name"] == "Summit Roofing"
    assert fetched.json()["credential"] is None


def test_invalid_tenant_id_is_bad_request(client, settings):
    response = client.get("/tenants/not-a-uuid", headers=headers(settings))

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid tenant_id format"
