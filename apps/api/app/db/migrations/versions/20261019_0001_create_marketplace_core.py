"""create orders, timeline entries, couriers, commissions, notifications

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

order_status = sa.Enum(
    "pending",
    "accepted",
    "assigned",
    "ready",
    "out_for_delivery",
    "picked_up",
    "delivered",
    "rejected",
    name="order_status",
)
payment_type = sa.Enum("COD", "ONLINE", name="payment_type")
payment_status = sa.Enum("unpaid", "paid", name="payment_status")
commission_paid_status = sa.Enum("unpaid", "paid", name="commission_paid_status")


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    bind = op.get_bind()
    order_status.create(bind, checkfirst=True)
    payment_type.create(bind, checkfirst=True)
    payment_status.create(bind, checkfirst=True)
    commission_paid_status.create(bind, checkfirst=True)

    op.create_table(
        "orders",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("shop_id", sa.String(length=64), nullable=False),
        sa.Column("buyer_id", sa.String(length=64), nullable=False),
        sa.Column("buyer_name", sa.String(length=255), nullable=True),
        sa.Column("courier_id", sa.String(length=64), nullable=True),
        sa.Column("status", order_status, nullable=False),
        sa.Column("products", sa.JSON(), nullable=False),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("delivery_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_type", payment_type, nullable=False),
        sa.Column("payment_status", payment_status, nullable=False),
        sa.Column("otp", sa.String(length=16), nullable=False),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("otp_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_orders_shop_id"), "orders", ["shop_id"], unique=False)
    op.create_index(op.f("ix_orders_buyer_id"), "orders", ["buyer_id"], unique=False)
    op.create_index(op.f("ix_orders_courier_id"), "orders", ["courier_id"], unique=False)
    op.create_index(op.f("ix_orders_status"), "orders", ["status"], unique=False)

    op.create_table(
        "order_timeline_entries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("order_id", sa.Uuid(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("actor_role", sa.String(length=32), nullable=False),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("actor_name", sa.String(length=255), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id", "sequence", name="uq_order_timeline_entries_sequence"),
    )
    op.create_index(
        op.f("ix_order_timeline_entries_order_id"),
        "order_timeline_entries",
        ["order_id"],
        unique=False,
    )

    op.create_table(
        "couriers",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("contact", sa.String(length=64), nullable=True),
        sa.Column("login_code", sa.String(length=16), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False),
        sa.Column("total_commission", sa.Numeric(12, 2), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("login_code"),
    )
    op.create_index(op.f("ix_couriers_is_available"), "couriers", ["is_available"], unique=False)

    op.create_table(
        "commission_entries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("order_id", sa.Uuid(), nullable=False),
        sa.Column("courier_id", sa.String(length=64), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("paid_status", commission_paid_status, nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["courier_id"], ["couriers.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id"),
    )
    op.create_index(
        op.f("ix_commission_entries_courier_id"),
        "commission_entries",
        ["courier_id"],
        unique=False,
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("receiver_role", sa.String(length=16), nullable=False),
        sa.Column("receiver_id", sa.String(length=64), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_notifications_receiver_role"), "notifications", ["receiver_role"], unique=False
    )
    op.create_index(
        op.f("ix_notifications_receiver_id"), "notifications", ["receiver_id"], unique=False
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_notifications_receiver_id"), table_name="notifications")
    op.drop_index(op.f("ix_notifications_receiver_role"), table_name="notifications")
    op.drop_table("notifications")

    op.drop_index(op.f("ix_commission_entries_courier_id"), table_name="commission_entries")
    op.drop_table("commission_entries")

    op.drop_index(op.f("ix_couriers_is_available"), table_name="couriers")
    op.drop_table("couriers")

    op.drop_index(op.f("ix_order_timeline_entries_order_id"), table_name="order_timeline_entries")
    op.drop_table("order_timeline_entries")

    op.drop_index(op.f("ix_orders_status"), table_name="orders")
    op.drop_index(op.f("ix_orders_courier_id"), table_name="orders")
    op.drop_index(op.f("ix_orders_buyer_id"), table_name="orders")
    op.drop_index(op.f("ix_orders_shop_id"), table_name="orders")
    op.drop_table("orders")

    bind = op.get_bind()
    commission_paid_status.drop(bind, checkfirst=True)
    payment_status.drop(bind, checkfirst=True)
    payment_type.drop(bind, checkfirst=True)
    order_status.drop(bind, checkfirst=True)
