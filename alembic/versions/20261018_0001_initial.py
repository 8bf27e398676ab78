"""Initial sync engine schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 09:30:00.000000
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql


revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


tenant_status_enum = sa.Enum(
    "active",
    "inactive",
    name="tenant_status_enum",
    native_enum=False,
)

environment_enum = sa.Enum(
    "sandbox",
    "prod",
    name="environment_enum",
    native_enum=False,
)

sync_status_enum = sa.Enum(
    "pending",
    "syncing",
    "synced",
    "error",
    "voided",
    "deleted",
    name="sync_status_enum",
    native_enum=False,
)

MAPPING_TABLES = (
    "quickbooks_vendor_mappings",
    "quickbooks_customer_mappings",
    "quickbooks_product_mappings",
    "quickbooks_bill_mappings",
    "quickbooks_invoice_mappings",
    "quickbooks_estimate_mappings",
)


def _guid_type(bind) -> sa.types.TypeEngine:
    if bind.dialect.name == "postgresql":
        return postgresql.UUID(as_uuid=True)
    return sa.String(length=36)


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def _money(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.Numeric(14, 2), nullable=True)
    return sa.Column(name, sa.Numeric(14, 2), nullable=False, server_default="0")


def upgrade() -> None:
    bind = op.get_bind()
    guid = _guid_type(bind)

    tenant_status_enum.create(op.get_bind(), checkfirst=True)
    environment_enum.create(op.get_bind(), checkfirst=True)
    sync_status_enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "tenants",
        sa.Column("id", guid, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("status", tenant_status_enum, nullable=False, server_default="active"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "tenant_credentials",
        sa.Column("id", guid, nullable=False),
        sa.Column("tenant_id", guid, nullable=False),
        sa.Column("realm_id", sa.String(length=64), nullable=False),
        sa.Column("environment", environment_enum, nullable=False, server_default="sandbox"),
        sa.Column("refresh_token_enc", sa.String(), nullable=False),
        sa.Column("access_token", sa.String(), nullable=True),
        sa.Column("access_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refresh_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scopes", sa.JSON(), nullable=True),
        sa.Column("refresh_counter", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_connected", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_error_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", name="uq_tenant_credential"),
    )
    op.create_index(
        "ix_tenant_credentials_realm_id",
        "tenant_credentials",
        ["realm_id"],
    )

    op.create_table(
        "locked_period_settings",
        sa.Column("id", guid, nullable=False),
        sa.Column("tenant_id", guid, nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cutoff_date", sa.Date(), nullable=True),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", name="uq_locked_period_tenant"),
    )

    op.create_table(
        "locked_period_violations",
        sa.Column("id", guid, nullable=False),
        sa.Column("tenant_id", guid, nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("attempted_date", sa.Date(), nullable=False),
        sa.Column("cutoff_date", sa.Date(), nullable=False),
        sa.Column("blocked", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_locked_period_violations_tenant_id",
        "locked_period_violations",
        ["tenant_id"],
    )

    for table_name in MAPPING_TABLES:
        op.create_table(
            table_name,
            sa.Column("id", guid, nullable=False),
            sa.Column("tenant_id", guid, nullable=False),
            sa.Column("local_id", guid, nullable=False),
            sa.Column("external_id", sa.String(length=64), nullable=True),
            sa.Column("external_doc_number", sa.String(length=100), nullable=True),
            sa.Column("sync_status", sync_status_enum, nullable=False, server_default="pending"),
            sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            _timestamp("created_at"),
            _timestamp("updated_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "local_id", name=f"uq_{table_name}_tenant_local"),
        )

    op.create_table(
        "quickbooks_sync_log",
        sa.Column("id", guid, nullable=False),
        sa.Column("tenant_id", guid, nullable=True),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("external_id", sa.String(length=64), nullable=True),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sync_log_entity", "quickbooks_sync_log", ["entity_type", "entity_id"])
    op.create_index("ix_sync_log_tenant_created", "quickbooks_sync_log", ["tenant_id", "created_at"])

    op.create_table(
        "user_roles",
        sa.Column("id", guid, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "role", name="uq_user_role"),
    )
    op.create_index("ix_user_roles_user_id", "user_roles", ["user_id"])

    op.create_table(
        "vendors",
        sa.Column("id", guid, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=100), nullable=True),
        sa.Column("address", sa.String(length=500), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("state", sa.String(length=100), nullable=True),
        sa.Column("zip", sa.String(length=50), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "customers",
        sa.Column("id", guid, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=100), nullable=True),
        sa.Column("address", sa.String(length=500), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "products",
        sa.Column("id", guid, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _money("unit_price", nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "expense_categories",
        sa.Column("id", guid, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "vendor_bills",
        sa.Column("id", guid, nullable=False),
        sa.Column("number", sa.String(length=100), nullable=False),
        sa.Column("vendor_id", guid, nullable=False),
        sa.Column("vendor_name", sa.String(length=255), nullable=True),
        sa.Column("customer_id", guid, nullable=True),
        sa.Column("purchase_order_id", guid, nullable=True),
        sa.Column("bill_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        _money("subtotal"),
        _money("total"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["vendor_id"], ["vendors.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "vendor_bill_line_items",
        sa.Column("id", guid, nullable=False),
        sa.Column("bill_id", guid, nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("quantity", sa.Numeric(14, 4), nullable=False, server_default="1"),
        _money("unit_cost", nullable=True),
        _money("total"),
        sa.Column("category_id", guid, nullable=True),
        sa.Column("product_id", guid, nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["bill_id"], ["vendor_bills.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["category_id"], ["expense_categories.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "vendor_bill_attachments",
        sa.Column("id", guid, nullable=False),
        sa.Column("bill_id", guid, nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column(
            "file_type",
            sa.String(length=100),
            nullable=False,
            server_default="application/octet-stream",
        ),
        sa.Column("storage_path", sa.String(length=1024), nullable=False),
        sa.Column("quickbooks_attachable_id", sa.String(length=64), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["bill_id"], ["vendor_bills.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "invoices",
        sa.Column("id", guid, nullable=False),
        sa.Column("number", sa.String(length=100), nullable=False),
        sa.Column("customer_id", guid, nullable=False),
        sa.Column("invoice_date", sa.Date(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        _money("subtotal"),
        sa.Column("tax_rate", sa.Numeric(7, 4), nullable=False, server_default="0"),
        _money("tax_amount"),
        _money("total"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("project_name", sa.String(length=255), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "invoice_line_items",
        sa.Column("id", guid, nullable=False),
        sa.Column("invoice_id", guid, nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("product_id", guid, nullable=True),
        sa.Column("product_name", sa.String(length=255), nullable=True),
        sa.Column("quantity", sa.Numeric(14, 4), nullable=False, server_default="1"),
        _money("unit_price", nullable=True),
        _money("total"),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "estimates",
        sa.Column("id", guid, nullable=False),
        sa.Column("number", sa.String(length=100), nullable=False),
        sa.Column("customer_id", guid, nullable=False),
        sa.Column("estimate_date", sa.Date(), nullable=True),
        sa.Column("valid_until", sa.Date(), nullable=True),
        _money("subtotal"),
        sa.Column("tax_rate", sa.Numeric(7, 4), nullable=False, server_default="0"),
        _money("tax_amount"),
        _money("total"),
        sa.Column("notes", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "estimate_line_items",
        sa.Column("id", guid, nullable=False),
        sa.Column("estimate_id", guid, nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("product_id", guid, nullable=True),
        sa.Column("product_name", sa.String(length=255), nullable=True),
        sa.Column("quantity", sa.Numeric(14, 4), nullable=False, server_default="1"),
        _money("unit_price", nullable=True),
        sa.Column("markup", sa.Numeric(7, 4), nullable=True),
        _money("total"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["estimate_id"], ["estimates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("estimate_line_items")
    op.drop_table("estimates")
    op.drop_table("invoice_line_items")
    op.drop_table("invoices")
    op.drop_table("vendor_bill_attachments")
    op.drop_table("vendor_bill_line_items")
    op.drop_table("vendor_bills")
    op.drop_table("expense_categories")
    op.drop_table("products")
    op.drop_table("customers")
    op.drop_table("vendors")
    op.drop_index("ix_user_roles_user_id", table_name="user_roles")
    op.drop_table("user_roles")
    op.drop_index("ix_sync_log_tenant_created", table_name="quickbooks_sync_log")
    op.drop_index("ix_sync_log_entity", table_name="quickbooks_sync_log")
    op.drop_table("quickbooks_sync_log")
    for table_name in reversed(MAPPING_TABLES):
        op.drop_table(table_name)
    op.drop_index("ix_locked_period_violations_tenant_id", table_name="locked_period_violations")
    op.drop_table("locked_period_violations")
    op.drop_table("locked_period_settings")
    op.drop_index("ix_tenant_credentials_realm_id", table_name="tenant_credentials")
    op.drop_table("tenant_credentials")
    op.drop_table("tenants")
    sync_status_enum.drop(op.get_bind(), checkfirst=True)
    environment_enum.drop(op.get_bind(), checkfirst=True)
    tenant_status_enum.drop(op.get_bind(), checkfirst=True)
