"""create_order_tables

Revision ID: 3f1c2a7b9d10
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f1c2a7b9d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'vouchers',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False, comment='券码（大写）'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('discount_type', sa.String(length=16), nullable=False, comment='percentage/fixed'),
        sa.Column('discount_value', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('min_purchase', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('max_discount', sa.Numeric(precision=15, scale=2), nullable=True, comment='仅百分比券生效'),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('user_usage_limit', sa.Integer(), nullable=True),
        sa.Column('valid_from', sa.DateTime(timezone=True), nullable=True),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('allowed_tiers', sa.JSON(), nullable=True, comment='允许的会员等级，空表示不限'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sa.CheckConstraint('usage_limit IS NULL OR usage_limit <= 0 OR usage_count <= usage_limit', name='ck_vouchers_usage_within_limit'),
    )

    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('order_number', sa.String(length=32), nullable=False, comment='订单号 ORD-YYYYMMDD-XXXXXX'),
        sa.Column('user_id', sa.String(length=64), nullable=True, comment='下单用户ID'),
        sa.Column('subtotal', sa.Numeric(precision=15, scale=2), nullable=False, comment='商品小计'),
        sa.Column('discount_amount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='优惠金额'),
        sa.Column('shipping_cost', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='运费'),
        sa.Column('total_amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='应付金额'),
        sa.Column('voucher_id', sa.String(length=64), nullable=True, comment='使用的优惠券'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='awaiting_payment'),
        sa.Column('payment_status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('payment_method', sa.String(length=50), nullable=True, comment='支付方式'),
        sa.Column('payment_deadline', sa.DateTime(timezone=True), nullable=True, comment='支付截止时间'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancellation_requested', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('cancellation_request_reason', sa.Text(), nullable=True),
        sa.Column('cancellation_request_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('recipient_name', sa.String(length=100), nullable=True),
        sa.Column('recipient_phone', sa.String(length=32), nullable=True),
        sa.Column('shipping_address', sa.Text(), nullable=True),
        sa.Column('shipping_method', sa.String(length=100), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['voucher_id'], ['vouchers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number'),
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'], unique=False)
    op.create_index('ix_orders_user_created', 'orders', ['user_id', 'created_at'], unique=False)
    # 过期清理扫描
    op.create_index('ix_orders_sweep', 'orders', ['status', 'payment_status', 'payment_deadline'], unique=False)

    op.create_table(
        'order_items',
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('line_index', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('variant_name', sa.String(length=255), nullable=True),
        sa.Column('product_image', sa.String(length=500), nullable=True),
        sa.Column('price', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('discount_percentage', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('subtotal', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('order_id', 'line_index', name='pk_order_items'),
    )

    op.create_table(
        'voucher_usage',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('voucher_id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('discount_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['voucher_id'], ['vouchers.id']),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('voucher_id', 'user_id', 'order_id', name='uq_voucher_usage_triple'),
    )
    op.create_index('ix_voucher_usage_voucher_id', 'voucher_usage', ['voucher_id'], unique=False)
    op.create_index('ix_voucher_usage_user_id', 'voucher_usage', ['user_id'], unique=False)

    op.create_table(
        'member_progress',
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('current_tier', sa.String(length=32), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('user_id'),
    )


def downgrade() -> None:
    op.drop_table('member_progress')
    op.drop_index('ix_voucher_usage_user_id', table_name='voucher_usage')
    op.drop_index('ix_voucher_usage_voucher_id', table_name='voucher_usage')
    op.drop_table('voucher_usage')
    op.drop_table('order_items')
    op.drop_index('ix_orders_sweep', table_name='orders')
    op.drop_index('ix_orders_user_created', table_name='orders')
    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_table('orders')
    op.drop_table('vouchers')
