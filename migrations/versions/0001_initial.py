"""initial medstock schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


class GUID(sa.TypeDecorator):
    impl = sa.CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import UUID

            return dialect.type_descriptor(UUID(as_uuid=True))
        return dialect.type_descriptor(sa.CHAR(36))


def _status(length: int = 20):
    return sa.String(length=length)


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False, unique=True),
        sa.Column("slug", sa.String(length=100), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "departments",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("organization_id", GUID(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("organization_id", "slug", name="uq_departments_org_slug"),
    )
    op.create_index("ix_departments_organization_id", "departments", ["organization_id"])

    op.create_table(
        "users",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("organization_id", GUID(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("department_id", GUID(), sa.ForeignKey("departments.id"), nullable=True),
        sa.Column("username", sa.String(length=150), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=150), nullable=True),
        sa.Column("last_name", sa.String(length=150), nullable=True),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="MEMBER"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_organization_id", "users", ["organization_id"])
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "products",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("organization_id", GUID(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("code", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("generic_name", sa.String(length=255), nullable=True),
        sa.Column("base_unit", sa.String(length=50), nullable=False, server_default="unit"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("organization_id", "code", name="uq_products_org_code"),
    )
    op.create_index("ix_products_organization_id", "products", ["organization_id"])

    op.create_table(
        "stocks",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("organization_id", GUID(), nullable=False),
        sa.Column("department_id", GUID(), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("product_id", GUID(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("location", sa.String(length=100), nullable=True),
        sa.Column("last_movement_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("department_id", "product_id", name="uq_stocks_department_product"),
    )
    op.create_index("ix_stocks_organization_id", "stocks", ["organization_id"])

    op.create_table(
        "stock_batches",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("organization_id", GUID(), nullable=False),
        sa.Column("stock_id", GUID(), sa.ForeignKey("stocks.id"), nullable=False),
        sa.Column("lot_number", sa.String(length=100), nullable=False),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("manufacture_date", sa.Date(), nullable=True),
        sa.Column("supplier", sa.String(length=255), nullable=True),
        sa.Column("total_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("available_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reserved_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", _status(), nullable=False, server_default="AVAILABLE"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("received_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("available_quantity >= 0", name="ck_stock_batches_available_non_negative"),
        sa.CheckConstraint("reserved_quantity >= 0", name="ck_stock_batches_reserved_non_negative"),
        sa.UniqueConstraint("stock_id", "lot_number", name="uq_stock_batches_stock_lot"),
    )
    op.create_index("ix_stock_batches_organization_id", "stock_batches", ["organization_id"])
    op.create_index("ix_stock_batches_stock_id", "stock_batches", ["stock_id"])
    op.create_index("ix_stock_batches_stock_expiry", "stock_batches", ["stock_id", "expiry_date"])

    op.create_table(
        "transfers",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("organization_id", GUID(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("requesting_department_id", GUID(), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("supplying_department_id", GUID(), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("status", _status(), nullable=False, server_default="PENDING"),
        sa.Column("priority", _status(), nullable=False, server_default="NORMAL"),
        sa.Column("request_reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("requested_by_user_id", GUID(), nullable=False),
        sa.Column("requested_by_snapshot", sa.JSON(), nullable=False),
        sa.Column("requested_at", sa.DateTime(), nullable=False),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("prepared_at", sa.DateTime(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("organization_id", "code", name="uq_transfers_org_code"),
    )
    op.create_index("ix_transfers_organization_id", "transfers", ["organization_id"])
    op.create_index("ix_transfers_requesting_department_id", "transfers", ["requesting_department_id"])
    op.create_index("ix_transfers_supplying_department_id", "transfers", ["supplying_department_id"])
    op.create_index("ix_transfers_org_requested_at", "transfers", ["organization_id", "requested_at"])

    op.create_table(
        "transfer_items",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("organization_id", GUID(), nullable=False),
        sa.Column("transfer_id", GUID(), sa.ForeignKey("transfers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("product_id", GUID(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("status", _status(), nullable=False, server_default="PENDING"),
        sa.Column("requested_quantity", sa.Integer(), nullable=False),
        sa.Column("approved_quantity", sa.Integer(), nullable=True),
        sa.Column("prepared_quantity", sa.Integer(), nullable=True),
        sa.Column("received_quantity", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("prepared_at", sa.DateTime(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_transfer_items_organization_id", "transfer_items", ["organization_id"])
    op.create_index("ix_transfer_items_transfer_id", "transfer_items", ["transfer_id"])

    op.create_table(
        "transfer_item_batches",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("organization_id", GUID(), nullable=False),
        sa.Column(
            "transfer_item_id", GUID(), sa.ForeignKey("transfer_items.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("batch_id", GUID(), sa.ForeignKey("stock_batches.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lot_number", sa.String(length=100), nullable=False),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_transfer_item_batches_organization_id", "transfer_item_batches", ["organization_id"])
    op.create_index("ix_transfer_item_batches_transfer_item_id", "transfer_item_batches", ["transfer_item_id"])
    op.create_index("ix_transfer_item_batches_batch_id", "transfer_item_batches", ["batch_id"])

    op.create_table(
        "transfer_history",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("organization_id", GUID(), nullable=False),
        sa.Column("transfer_id", GUID(), sa.ForeignKey("transfers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("item_id", GUID(), nullable=True),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("from_status", sa.String(length=20), nullable=True),
        sa.Column("to_status", sa.String(length=20), nullable=False),
        sa.Column("actor_user_id", GUID(), nullable=False),
        sa.Column("actor_snapshot", sa.JSON(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("transfer_id", "sequence", name="uq_transfer_history_sequence"),
    )
    op.create_index("ix_transfer_history_organization_id", "transfer_history", ["organization_id"])
    op.create_index("ix_transfer_history_transfer_id", "transfer_history", ["transfer_id"])

    op.create_table(
        "idempotency_records",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("organization_id", GUID(), nullable=False),
        sa.Column("endpoint", sa.String(length=255), nullable=False),
        sa.Column("method", sa.String(length=10), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("request_hash", sa.String(length=64), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False, server_default="in_progress"),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("organization_id", "endpoint", "method", "idempotency_key", name="uq_idempotency"),
    )
    op.create_index("ix_idempotency_records_organization_id", "idempotency_records", ["organization_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("organization_id", GUID(), nullable=False),
        sa.Column("user_id", GUID(), nullable=True),
        sa.Column("department_id", GUID(), nullable=True),
        sa.Column("trace_id", sa.String(length=64), nullable=True),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("before_payload", sa.JSON(), nullable=True),
        sa.Column("after_payload", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("result", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_events_organization_id", "audit_events", ["organization_id"])
    op.create_index("ix_audit_events_user_id", "audit_events", ["user_id"])
    op.create_index("ix_audit_events_trace_id", "audit_events", ["trace_id"])


def downgrade() -> None:
    for table in (
        "audit_events",
        "idempotency_records",
        "transfer_history",
        "transfer_item_batches",
        "transfer_items",
        "transfers",
        "stock_batches",
        "stocks",
        "products",
        "users",
        "departments",
        "organizations",
    ):
        op.drop_table(table)
