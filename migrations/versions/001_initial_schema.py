"""Initial schema: users, addresses, orders, items, history, payments, promotions.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "userrole": ("CLIENT", "DRIVER", "PARTNER", "ADMIN"),
    "ordertype": ("DELIVERY", "FOOD", "SHOPPING"),
    "orderpriority": ("STANDARD", "EXPRESS", "URGENT"),
    "vehicletype": ("VELO", "SCOOTER", "MOTO", "TRICYCLE", "VOITURE", "CAMIONNETTE"),
    "itemcategory": (
        "FOOD",
        "DOCUMENTS",
        "ELECTRONICS",
        "CLOTHING",
        "PHARMACY",
        "GROCERIES",
        "OTHER",
    ),
    "orderstatus": (
        "PENDING",
        "ASSIGNED",
        "ACCEPTED",
        "PICKUP_IN_PROGRESS",
        "PICKED_UP",
        "DELIVERY_IN_PROGRESS",
        "DELIVERED",
        "CANCELLED",
        "FAILED",
    ),
    "paymentmethod": ("CASH", "ORANGE_MONEY", "MTN_MONEY", "WAVE", "CARD"),
    "paymentstatus": ("PENDING", "PAID", "FAILED", "REFUNDED"),
    "paymentprovider": ("ORANGE_MONEY", "MTN_MOMO", "WAVE", "FLUTTERWAVE", "CASH"),
    "transactionstatus": (
        "PENDING",
        "PROCESSING",
        "COMPLETED",
        "FAILED",
        "EXPIRED",
        "CANCELLED",
    ),
    "promotiontype": ("PERCENTAGE", "FIXED_AMOUNT", "FREE_DELIVERY"),
}


def _enum(name: str) -> postgresql.ENUM:
    # types are created once up front; several tables share them
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("phone", sa.String(20), unique=True, nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=True),
        sa.Column("role", _enum("userrole"), nullable=False),
        sa.Column("vehicle_type", _enum("vehicletype"), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_users_role_available", "users", ["role", "is_available"])

    # ── addresses ─────────────────────────────────────────────────────
    op.create_table(
        "addresses",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("label", sa.String(50), nullable=True),
        sa.Column("street", sa.String(255), nullable=False),
        sa.Column("city", sa.String(100), nullable=False),
        sa.Column("district", sa.String(100), nullable=True),
        sa.Column("landmark", sa.String(255), nullable=True),
        sa.Column("latitude", sa.Float, nullable=False),
        sa.Column("longitude", sa.Float, nullable=False),
        sa.Column("is_default", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_addresses_user", "addresses", ["user_id"])

    # ── orders ────────────────────────────────────────────────────────
    address_columns = []
    for prefix in ("pickup", "delivery"):
        address_columns += [
            sa.Column(f"{prefix}_street", sa.String(255), nullable=False),
            sa.Column(f"{prefix}_city", sa.String(100), nullable=False),
            sa.Column(f"{prefix}_district", sa.String(100), nullable=True),
            sa.Column(f"{prefix}_landmark", sa.String(255), nullable=True),
            sa.Column(f"{prefix}_latitude", sa.Float, nullable=False),
            sa.Column(f"{prefix}_longitude", sa.Float, nullable=False),
        ]
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("order_number", sa.String(20), unique=True, nullable=False),
        sa.Column("client_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("order_type", _enum("ordertype"), nullable=False),
        sa.Column("status", _enum("orderstatus"), nullable=False),
        sa.Column("priority", _enum("orderpriority"), nullable=False),
        sa.Column("preferred_vehicle_type", _enum("vehicletype"), nullable=True),
        *address_columns,
        sa.Column("pricing", sa.JSON, nullable=False),
        sa.Column("total_price", sa.Integer, nullable=False),
        sa.Column("payment_method", _enum("paymentmethod"), nullable=False),
        sa.Column("payment_status", _enum("paymentstatus"), nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("promotion_code", sa.String(50), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_orders_status_created", "orders", ["status", "created_at"])
    op.create_index("idx_orders_client", "orders", ["client_id"])
    op.create_index("idx_orders_driver", "orders", ["driver_id"])

    # ── order_items ───────────────────────────────────────────────────
    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="1"),
        sa.Column("weight_kg", sa.Float, nullable=False, server_default="0"),
        sa.Column("value", sa.Integer, nullable=False, server_default="0"),
        sa.Column("fragile", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("category", _enum("itemcategory"), nullable=False),
    )
    op.create_index("idx_order_items_order", "order_items", ["order_id"])

    # ── status_history ────────────────────────────────────────────────
    op.create_table(
        "status_history",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("status", _enum("orderstatus"), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("updated_by", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("updated_by_role", _enum("userrole"), nullable=False),
    )
    op.create_index(
        "idx_status_history_order", "status_history", ["order_id", "timestamp"]
    )

    # ── payment_transactions ──────────────────────────────────────────
    op.create_table(
        "payment_transactions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reference", sa.String(64), unique=True, nullable=False),
        sa.Column("provider", _enum("paymentprovider"), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="XOF"),
        sa.Column("status", _enum("transactionstatus"), nullable=False),
        sa.Column("phone_number", sa.String(20), nullable=True),
        sa.Column("provider_transaction_id", sa.String(100), nullable=True),
        sa.Column("payment_url", sa.String(500), nullable=True),
        sa.Column("ussd_code", sa.String(20), nullable=True),
        sa.Column("error_code", sa.String(50), nullable=True),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_payments_order", "payment_transactions", ["order_id"])
    op.create_index(
        "idx_payments_status_expires", "payment_transactions", ["status", "expires_at"]
    )

    # ── promotions ────────────────────────────────────────────────────
    op.create_table(
        "promotions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(50), unique=True, nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("promotion_type", _enum("promotiontype"), nullable=False),
        sa.Column("value", sa.Integer, nullable=False),
        sa.Column("max_discount", sa.Integer, nullable=True),
        sa.Column("min_order_value", sa.Integer, nullable=False, server_default="0"),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("usage_limit", sa.Integer, nullable=True),
        sa.Column("usage_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    op.drop_table("promotions")
    op.drop_table("payment_transactions")
    op.drop_table("status_history")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("addresses")
    op.drop_table("users")
    for name in ENUMS:
        op.execute(f"DROP TYPE IF EXISTS {name}")
