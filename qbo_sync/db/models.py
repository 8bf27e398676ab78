from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column, relationship
from sqlalchemy.types import CHAR, TypeDecorator


class GUID(TypeDecorator):
    """Platform-independent GUID type."""

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return str(value)
        return str(uuid.UUID(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


class Base(DeclarativeBase):
    """Shared base class for ORM models."""

    id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        primary_key=True,
        default=uuid.uuid4,
    )


MONEY = Numeric(14, 2)
QUANTITY = Numeric(14, 4)


class SyncStatus:
    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"
    VOIDED = "voided"
    DELETED = "deleted"

    ALL = (PENDING, SYNCING, SYNCED, ERROR, VOIDED, DELETED)
    INACTIVE = (VOIDED, DELETED)


class TenantStatus:
    ACTIVE = "active"
    INACTIVE = "inactive"


def _created_at() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


def _updated_at() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# ---------------------------------------------------------------------------
# Tenancy and credentials
# ---------------------------------------------------------------------------


class Tenants(Base):
    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        Enum(
            TenantStatus.ACTIVE,
            TenantStatus.INACTIVE,
            name="tenant_status_enum",
            native_enum=False,
        ),
        default=TenantStatus.ACTIVE,
        nullable=False,
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    credential: Mapped[Optional["TenantCredentials"]] = relationship(
        back_populates="tenant",
        cascade="all, delete-orphan",
        uselist=False,
        lazy="selectin",
    )


class TenantCredentials(Base):
    __tablename__ = "tenant_credentials"
    __table_args__ = (
        UniqueConstraint("tenant_id", name="uq_tenant_credential"),
        Index("ix_tenant_credentials_realm_id", "realm_id"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )
    realm_id: Mapped[str] = mapped_column(String(64), nullable=False)
    environment: Mapped[str] = mapped_column(
        Enum("sandbox", "prod", name="environment_enum", native_enum=False),
        default="sandbox",
        nullable=False,
    )
    refresh_token_enc: Mapped[str] = mapped_column(String, nullable=False)
    access_token: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    access_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    refresh_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    scopes: Mapped[Optional[list[str]]] = mapped_column(JSON(none_as_null=True))
    refresh_counter: Mapped[int] = mapped_column(default=0, nullable=False)
    is_connected: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_error_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    tenant: Mapped["Tenants"] = relationship(back_populates="credential")


class LockedPeriodSettings(Base):
    __tablename__ = "locked_period_settings"
    __table_args__ = (UniqueConstraint("tenant_id", name="uq_locked_period_tenant"),)

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cutoff_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    updated_at: Mapped[datetime] = _updated_at()


class LockedPeriodViolations(Base):
    __tablename__ = "locked_period_violations"
    __table_args__ = (Index("ix_locked_period_violations_tenant_id", "tenant_id"),)

    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(64))
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    attempted_date: Mapped[date] = mapped_column(Date, nullable=False)
    cutoff_date: Mapped[date] = mapped_column(Date, nullable=False)
    blocked: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = _created_at()


# ---------------------------------------------------------------------------
# Mapping store
# ---------------------------------------------------------------------------


class EntityMappingMixin:
    @declared_attr.directive
    def __table_args__(cls) -> tuple[Any, ...]:
        return (
            UniqueConstraint("tenant_id", "local_id", name=f"uq_{cls.__tablename__}_tenant_local"),
        )

    tenant_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    local_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    external_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    external_doc_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    sync_status: Mapped[str] = mapped_column(
        Enum(*SyncStatus.ALL, name="sync_status_enum", native_enum=False),
        default=SyncStatus.PENDING,
        nullable=False,
    )
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class VendorMappings(EntityMappingMixin, Base):
    __tablename__ = "quickbooks_vendor_mappings"


class CustomerMappings(EntityMappingMixin, Base):
    __tablename__ = "quickbooks_customer_mappings"


class ProductMappings(EntityMappingMixin, Base):
    __tablename__ = "quickbooks_product_mappings"


class BillMappings(EntityMappingMixin, Base):
    __tablename__ = "quickbooks_bill_mappings"


class InvoiceMappings(EntityMappingMixin, Base):
    __tablename__ = "quickbooks_invoice_mappings"


class EstimateMappings(EntityMappingMixin, Base):
    __tablename__ = "quickbooks_estimate_mappings"


MAPPING_MODELS: dict[str, type[EntityMappingMixin]] = {
    "vendor": VendorMappings,
    "customer": CustomerMappings,
    "product": ProductMappings,
    "vendor_bill": BillMappings,
    "invoice": InvoiceMappings,
    "estimate": EstimateMappings,
}


class SyncLogEntries(Base):
    __tablename__ = "quickbooks_sync_log"
    __table_args__ = (
        Index("ix_sync_log_entity", "entity_type", "entity_id"),
        Index("ix_sync_log_tenant_created", "tenant_id", "created_at"),
    )

    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), nullable=True)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    external_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON(none_as_null=True))
    created_at: Mapped[datetime] = _created_at()


# ---------------------------------------------------------------------------
# Local source records read by the sync engine
# ---------------------------------------------------------------------------


class UserRoles(Base):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_role"),)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False)


class Vendors(Base):
    __tablename__ = "vendors"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    company: Mapped[Optional[str]] = mapped_column(String(255))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(100))
    address: Mapped[Optional[str]] = mapped_column(String(500))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    state: Mapped[Optional[str]] = mapped_column(String(100))
    zip: Mapped[Optional[str]] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(String(32), default="active", nullable=False)


class Customers(Base):
    __tablename__ = "customers"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    company: Mapped[Optional[str]] = mapped_column(String(255))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(100))
    address: Mapped[Optional[str]] = mapped_column(String(500))


class Products(Base):
    __tablename__ = "products"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    unit_price: Mapped[Optional[Decimal]] = mapped_column(MONEY)


class ExpenseCategories(Base):
    __tablename__ = "expense_categories"

    name: Mapped[str] = mapped_column(String(255), nullable=False)


class VendorBills(Base):
    __tablename__ = "vendor_bills"

    number: Mapped[str] = mapped_column(String(100), nullable=False)
    vendor_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("vendors.id"), nullable=False)
    vendor_name: Mapped[Optional[str]] = mapped_column(String(255))
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("customers.id"))
    purchase_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), nullable=True)
    bill_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    subtotal: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    total: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    line_items: Mapped[list["VendorBillLineItems"]] = relationship(
        order_by="VendorBillLineItems.sort_order",
        lazy="selectin",
    )
    attachments: Mapped[list["BillAttachments"]] = relationship(lazy="selectin")


class VendorBillLineItems(Base):
    __tablename__ = "vendor_bill_line_items"

    bill_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("vendor_bills.id", ondelete="CASCADE"), nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    quantity: Mapped[Decimal] = mapped_column(QUANTITY, default=Decimal("1"), nullable=False)
    unit_cost: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    total: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    category_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("expense_categories.id"))
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("products.id"))
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    category: Mapped[Optional["ExpenseCategories"]] = relationship(lazy="selectin")


class BillAttachments(Base):
    __tablename__ = "vendor_bill_attachments"

    bill_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("vendor_bills.id", ondelete="CASCADE"), nullable=False
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_type: Mapped[str] = mapped_column(String(100), default="application/octet-stream", nullable=False)
    storage_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    quickbooks_attachable_id: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = _created_at()


class Invoices(Base):
    __tablename__ = "invoices"

    number: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("customers.id"), nullable=False)
    invoice_date: Mapped[Optional[date]] = mapped_column(Date)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    subtotal: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(7, 4), default=Decimal("0"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    total: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    project_name: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = _created_at()

    line_items: Mapped[list["InvoiceLineItems"]] = relationship(
        order_by="InvoiceLineItems.display_order",
        lazy="selectin",
    )


class InvoiceLineItems(Base):
    __tablename__ = "invoice_line_items"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("products.id"))
    product_name: Mapped[Optional[str]] = mapped_column(String(255))
    quantity: Mapped[Decimal] = mapped_column(QUANTITY, default=Decimal("1"), nullable=False)
    unit_price: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    total: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Estimates(Base):
    __tablename__ = "estimates"

    number: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("customers.id"), nullable=False)
    estimate_date: Mapped[Optional[date]] = mapped_column(Date)
    valid_until: Mapped[Optional[date]] = mapped_column(Date)
    subtotal: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(7, 4), default=Decimal("0"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    total: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = _created_at()

    line_items: Mapped[list["EstimateLineItems"]] = relationship(
        order_by="EstimateLineItems.sort_order",
        lazy="selectin",
    )


class EstimateLineItems(Base):
    __tablename__ = "estimate_line_items"

    estimate_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("estimates.id", ondelete="CASCADE"), nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), ForeignKey("products.id"))
    product_name: Mapped[Optional[str]] = mapped_column(String(255))
    quantity: Mapped[Decimal] = mapped_column(QUANTITY, default=Decimal("1"), nullable=False)
    unit_price: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    markup: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 4))
    total: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
