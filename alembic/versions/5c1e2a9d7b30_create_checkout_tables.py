"""create checkout tables

Revision ID: 5c1e2a9d7b30
Revises:
Create Date: 2026-10-19 10:12:44.118305

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5c1e2a9d7b30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_CODE = sa.text("state IN ('PENDING_PAYMENT', 'PAID')")


def upgrade() -> None:
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("can_login", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_user_email", "user", ["email"], unique=True)

    op.create_table(
        "book",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("DRAFT", "PUBLISHED", "ARCHIVED", name="bookstatus"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "book_file",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("book_id", sa.Integer(), sa.ForeignKey("book.id"), nullable=False),
        sa.Column("file_key", sa.String(), nullable=False),
        sa.Column("file_type", sa.String(), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_book_file_book_id", "book_file", ["book_id"])

    op.create_table(
        "coupon",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column(
            "discount_kind",
            sa.Enum("PERCENTAGE", "FIXED_AMOUNT", name="discountkind"),
            nullable=False,
        ),
        sa.Column("value", sa.Integer(), nullable=False),
        sa.Column("usage_limit", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "usage_limit = 0 OR usage_count <= usage_limit",
            name="ck_coupon_usage_within_limit",
        ),
    )
    op.create_index("ix_coupon_code", "coupon", ["code"], unique=True)

    op.create_table(
        "book_order",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("book_id", sa.Integer(), sa.ForeignKey("book.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("buyer_name", sa.String(), nullable=False),
        sa.Column("buyer_email", sa.String(), nullable=False),
        sa.Column("buyer_phone", sa.String(), nullable=True),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("coupon_code", sa.String(), nullable=True),
        sa.Column("discount_amount", sa.Integer(), nullable=False),
        sa.Column("final_amount", sa.Integer(), nullable=False),
        sa.Column("transfer_code", sa.String(), nullable=False),
        sa.Column(
            "state",
            sa.Enum("PENDING_PAYMENT", "PAID", "EXPIRED", "CANCELLED", name="orderstate"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("confirmed_amount", sa.Integer(), nullable=True),
        sa.Column("payment_reference", sa.String(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_by", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_book_order_book_id", "book_order", ["book_id"])
    op.create_index("ix_book_order_user_id", "book_order", ["user_id"])
    op.create_index("ix_book_order_state", "book_order", ["state"])
    op.create_index("ix_book_order_transfer_code", "book_order", ["transfer_code"])
    op.create_index(
        "uq_book_order_active_transfer_code",
        "book_order",
        ["transfer_code"],
        unique=True,
        postgresql_where=ACTIVE_CODE,
    )

    op.create_table(
        "order_event",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("book_order.id"), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("label", sa.String(), nullable=False),
        sa.Column("meta", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=False, server_default="system"),
    )
    op.create_index("ix_order_event_order_id", "order_event", ["order_id"])
    op.create_index("ix_order_event_event_type", "order_event", ["event_type"])

    op.create_table(
        "entitlement",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("book_id", sa.Integer(), sa.ForeignKey("book.id"), nullable=False),
        sa.Column("source_order_id", sa.Integer(), sa.ForeignKey("book_order.id"), nullable=False),
        sa.Column("granted_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "book_id", name="uq_entitlement_user_book"),
    )
    op.create_index("ix_entitlement_user_id", "entitlement", ["user_id"])

    op.create_table(
        "payment_confirmation",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transfer_code", sa.String(), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("received_at", sa.DateTime(), nullable=False),
        sa.Column("reference", sa.String(), nullable=True),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("content", sa.String(), nullable=True),
        sa.Column(
            "outcome",
            sa.Enum("MATCHED", "UNMATCHED", "AMOUNT_MISMATCH", "LATE", name="confirmationoutcome"),
            nullable=False,
        ),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("book_order.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_payment_confirmation_transfer_code", "payment_confirmation", ["transfer_code"])
    op.create_index("ix_payment_confirmation_reference", "payment_confirmation", ["reference"], unique=True)
    op.create_index("ix_payment_confirmation_order_id", "payment_confirmation", ["order_id"])

    op.create_table(
        "download_redemption",
        sa.Column("jti", sa.String(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("book_id", sa.Integer(), sa.ForeignKey("book.id"), nullable=False),
        sa.Column("file_id", sa.Integer(), sa.ForeignKey("book_file.id"), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("redeemed_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_download_redemption_expires_at", "download_redemption", ["expires_at"])


def downgrade() -> None:
    op.drop_table("download_redemption")
    op.drop_table("payment_confirmation")
    op.drop_table("entitlement")
    op.drop_table("order_event")
    op.drop_table("book_order")
    op.drop_table("coupon")
    op.drop_table("book_file")
    op.drop_table("book")
    op.drop_table("user")

    for enum_name in ("confirmationoutcome", "orderstate", "discountkind", "bookstatus"):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
