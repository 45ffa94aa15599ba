"""Initial schema: catalog, authorization graph, orders with settlement, audit events

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "catalog_products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("manufacturer_id", sa.String(length=64), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("category_id", sa.String(length=64), nullable=True),
        sa.Column("base_price_cents", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("manufacturer_id", "sku", name="uq_catalog_products_manufacturer_sku"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_catalog_products_manufacturer_id", "catalog_products", ["manufacturer_id"], unique=False)
    op.create_index(
        "ix_catalog_products_manufacturer_category", "catalog_products", ["manufacturer_id", "category_id"], unique=False
    )

    op.create_table(
        "authorization_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("grantor_id", sa.String(length=64), nullable=False),
        sa.Column("grantee_id", sa.String(length=64), nullable=False),
        sa.Column("grantee_type", sa.String(length=16), nullable=False),
        sa.Column("grantee_name", sa.String(length=255), nullable=True),
        sa.Column("requested_scope", sa.String(length=16), nullable=False),
        sa.Column("requested_categories", sa.JSON(), nullable=True),
        sa.Column("requested_products", sa.JSON(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("processed_by", sa.String(length=64), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_authorization_requests_status", "authorization_requests", ["status"], unique=False)
    op.create_index(
        "ix_authorization_requests_grantor_status", "authorization_requests", ["grantor_id", "status"], unique=False
    )
    op.create_index(
        "ix_authorization_requests_grantee_status", "authorization_requests", ["grantee_id", "status"], unique=False
    )

    op.create_table(
        "authorization_nodes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("request_id", sa.Integer(), nullable=True),
        sa.Column("grantor_id", sa.String(length=64), nullable=False),
        sa.Column("grantee_type", sa.String(length=16), nullable=False),
        sa.Column("grantee_id", sa.String(length=64), nullable=False),
        sa.Column("grantee_name", sa.String(length=255), nullable=True),
        sa.Column("scope", sa.String(length=16), nullable=False),
        sa.Column("global_discount_units", sa.Integer(), nullable=False),
        sa.Column("min_discount_rate_bps", sa.Integer(), nullable=False),
        sa.Column("commission_rate_bps", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("allow_sub_authorization", sa.Boolean(), nullable=False),
        sa.Column("tier_company_id", sa.String(length=36), nullable=True),
        sa.Column("tier_company_name", sa.String(length=255), nullable=True),
        sa.Column("tier_level", sa.Integer(), nullable=False),
        sa.Column("parent_authorization_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("tier_level >= 0", name="ck_authorization_nodes_tier_level"),
        sa.ForeignKeyConstraint(["request_id"], ["authorization_requests.id"]),
        sa.ForeignKeyConstraint(["parent_authorization_id"], ["authorization_nodes.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("request_id"),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "ix_authorization_nodes_tier_company_level", "authorization_nodes", ["tier_company_id", "tier_level"], unique=False
    )
    op.create_index("ix_authorization_nodes_grantor_status", "authorization_nodes", ["grantor_id", "status"], unique=False)
    op.create_index("ix_authorization_nodes_grantee_status", "authorization_nodes", ["grantee_id", "status"], unique=False)
    op.create_index(
        "ix_authorization_nodes_parent_authorization_id", "authorization_nodes", ["parent_authorization_id"], unique=False
    )

    op.create_table(
        "authorization_scope_categories",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("authorization_id", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.String(length=64), nullable=False),
        sa.Column("discount_units", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["authorization_id"], ["authorization_nodes.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("authorization_id", "category_id", name="uq_authorization_scope_categories"),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "ix_authorization_scope_categories_authorization_id",
        "authorization_scope_categories",
        ["authorization_id"],
        unique=False,
    )

    op.create_table(
        "authorization_scope_products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("authorization_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("fixed_price_cents", sa.Integer(), nullable=True),
        sa.Column("discount_units", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["authorization_id"], ["authorization_nodes.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["catalog_products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("authorization_id", "product_id", name="uq_authorization_scope_products"),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "ix_authorization_scope_products_authorization_id",
        "authorization_scope_products",
        ["authorization_id"],
        unique=False,
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("authorization_id", sa.Integer(), nullable=False),
        sa.Column("grantor_id", sa.String(length=64), nullable=False),
        sa.Column("grantee_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False),
        sa.Column("original_price_cents", sa.Integer(), nullable=False),
        sa.Column("need_invoice", sa.Boolean(), nullable=False),
        sa.Column("invoice_markup_percent_bps", sa.Integer(), nullable=False),
        sa.Column("invoice_markup_amount_cents", sa.Integer(), nullable=False),
        sa.Column("settlement_mode", sa.String(length=24), nullable=False),
        sa.Column("settlement_selected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("settlement_selected_by", sa.String(length=64), nullable=True),
        sa.Column("min_discount_rate_bps", sa.Integer(), nullable=True),
        sa.Column("commission_rate_bps", sa.Integer(), nullable=True),
        sa.Column("min_discount_price_cents", sa.Integer(), nullable=True),
        sa.Column("supplier_price_cents", sa.Integer(), nullable=True),
        sa.Column("commission_amount_cents", sa.Integer(), nullable=True),
        sa.Column("commission_status", sa.String(length=16), nullable=True),
        sa.Column("commission_applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("commission_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("commission_paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("commission_invoice_ref", sa.String(length=255), nullable=True),
        sa.Column("commission_payment_proof_ref", sa.String(length=255), nullable=True),
        sa.Column("commission_remark", sa.String(length=500), nullable=True),
        sa.Column("payment_ratio_enabled", sa.Boolean(), nullable=False),
        sa.Column("payment_ratio_bps", sa.Integer(), nullable=True),
        sa.Column("first_payment_amount_cents", sa.Integer(), nullable=True),
        sa.Column("remaining_payment_amount_cents", sa.Integer(), nullable=True),
        sa.Column("remaining_payment_status", sa.String(length=16), nullable=True),
        sa.Column("remaining_payment_paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["authorization_id"], ["authorization_nodes.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_orders_authorization_id", "orders", ["authorization_id"], unique=False)
    op.create_index("ix_orders_grantee_created", "orders", ["grantee_id", "created_at"], unique=False)
    op.create_index("ix_orders_grantor_status", "orders", ["grantor_id", "status"], unique=False)

    op.create_table(
        "order_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("base_price_cents", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.Column("pricing_basis", sa.String(length=32), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["catalog_products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_order_lines_order_id", "order_lines", ["order_id"], unique=False)

    op.create_table(
        "network_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(length=48), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("authorization_id", sa.Integer(), nullable=True),
        sa.Column("request_id", sa.Integer(), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.String(length=500), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_network_events_event_type", "network_events", ["event_type"], unique=False)
    op.create_index("ix_network_events_entity", "network_events", ["entity_type", "entity_id"], unique=False)
    op.create_index("ix_network_events_authorization_id", "network_events", ["authorization_id"], unique=False)
    op.create_index("ix_network_events_request_id", "network_events", ["request_id"], unique=False)
    op.create_index("ix_network_events_order_id", "network_events", ["order_id"], unique=False)


def downgrade():
    op.drop_table("network_events")
    op.drop_table("order_lines")
    op.drop_table("orders")
    op.drop_table("authorization_scope_products")
    op.drop_table("authorization_scope_categories")
    op.drop_table("authorization_nodes")
    op.drop_table("authorization_requests")
    op.drop_table("catalog_products")
