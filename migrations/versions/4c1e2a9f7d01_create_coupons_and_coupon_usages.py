"""Create coupons and coupon_usages tables

Revision ID: 4c1e2a9f7d01
Revises:
Create Date: 2026-10-16 09:12:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# Revision identifiers
revision: str = "4c1e2a9f7d01"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# ─────────────────────────────────────────────
# ✅ UPGRADE
# ─────────────────────────────────────────────
def upgrade() -> None:
    op.create_table(
        "coupons",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("discount_value", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=True),
        sa.Column("minimum_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("maximum_discount", sa.Numeric(10, 2), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("max_uses_per_user", sa.Integer(), nullable=True),
        sa.Column("current_uses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stackability_rule", sa.String(length=20), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("scope", sa.String(length=20), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("event_id", sa.String(length=36), nullable=True),
        sa.Column("category_id", sa.String(length=36), nullable=True),
        sa.Column("affiliate_id", sa.String(length=36), nullable=True),
        sa.Column("affiliate_commission", sa.Numeric(5, 2), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_by", sa.String(length=36), nullable=False),
        sa.Column("updated_by", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_coupons_code", "coupons", ["code"], unique=True)
    op.create_index("ix_coupons_affiliate_id", "coupons", ["affiliate_id"])
    op.create_index("ix_coupons_status_expires_at", "coupons", ["status", "expires_at"])
    op.create_index("ix_coupons_created_by_created_at", "coupons", ["created_by", "created_at"])
    op.create_index("ix_coupons_affiliate_id_status", "coupons", ["affiliate_id", "status"])

    op.create_table(
        "coupon_usages",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("coupon_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("order_id", sa.String(length=36), nullable=True),
        sa.Column("discount_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["coupon_id"], ["coupons.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_coupon_usages_coupon_user", "coupon_usages", ["coupon_id", "user_id"])
    op.create_index("ix_coupon_usages_coupon_used_at", "coupon_usages", ["coupon_id", "used_at"])
    op.create_index("ix_coupon_usages_user_used_at", "coupon_usages", ["user_id", "used_at"])


# ─────────────────────────────────────────────
# ✅ DOWNGRADE
# ─────────────────────────────────────────────
def downgrade() -> None:
    op.drop_index("ix_coupon_usages_user_used_at", table_name="coupon_usages")
    op.drop_index("ix_coupon_usages_coupon_used_at", table_name="coupon_usages")
    op.drop_index("ix_coupon_usages_coupon_user", table_name="coupon_usages")
    op.drop_table("coupon_usages")

    op.drop_index("ix_coupons_affiliate_id_status", table_name="coupons")
    op.drop_index("ix_coupons_created_by_created_at", table_name="coupons")
    op.drop_index("ix_coupons_status_expires_at", table_name="coupons")
    op.drop_index("ix_coupons_affiliate_id", table_name="coupons")
    op.drop_index("ix_coupons_code", table_name="coupons")
    op.drop_table("coupons")
