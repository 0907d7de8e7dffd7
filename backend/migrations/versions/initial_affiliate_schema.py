"""initial affiliate ledger schema

Revision ID: initial_affiliate_schema
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = 'initial_affiliate_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'profiles',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('role', sa.String(20), server_default='affiliate', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('balance', sa.DECIMAL(12, 2), server_default='0', nullable=False),
        sa.Column('total_earnings', sa.DECIMAL(12, 2), server_default='0', nullable=False),
        sa.Column('invoice_limit', sa.DECIMAL(12, 2), server_default='1000.00', nullable=False),
        sa.Column('invoice_due_day', sa.Integer(), server_default='30', nullable=False),
        sa.Column('referred_by', sa.Uuid(), sa.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True),
        sa.Column('referral_code', sa.String(32), nullable=False),
        sa.Column('nickname', sa.String(64), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('referral_code'),
        sa.UniqueConstraint('nickname'),
        sa.CheckConstraint('invoice_due_day BETWEEN 1 AND 31', name='ck_profiles_invoice_due_day'),
    )
    op.create_index('ix_profiles_referred_by', 'profiles', ['referred_by'])
    op.create_index('ix_profiles_role', 'profiles', ['role'])

    op.create_table(
        'products',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('owner_id', sa.Uuid(), sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('final_price', sa.DECIMAL(12, 2), nullable=False),
        sa.Column('commission_rate', sa.DECIMAL(5, 2), nullable=True),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('price_type', sa.String(20), server_default='fixed', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            'commission_rate IS NULL OR (commission_rate >= 0 AND commission_rate <= 100)',
            name='ck_products_commission_rate',
        ),
    )
    op.create_index('ix_products_owner_id', 'products', ['owner_id'])
    op.create_index('ix_products_status', 'products', ['status'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('product_id', sa.Uuid(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('amount', sa.DECIMAL(12, 2), nullable=False),
        sa.Column('quantity', sa.Integer(), server_default='1', nullable=False),
        sa.Column('payment_method', sa.String(20), server_default='now', nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('payment_preference_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_product_id', 'orders', ['product_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_orders_user_method_status', 'orders', ['user_id', 'payment_method', 'status'])

    op.create_table(
        'commissions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('affiliate_id', sa.Uuid(), sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('amount', sa.DECIMAL(12, 2), nullable=False),
        sa.Column('rate', sa.DECIMAL(5, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', name='uq_commissions_order_id'),
    )
    op.create_index('ix_commissions_affiliate_id', 'commissions', ['affiliate_id'])

    op.create_table(
        'withdrawals',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('amount', sa.DECIMAL(12, 2), nullable=False),
        sa.Column('pix_key', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_withdrawals_user_id', 'withdrawals', ['user_id'])
    op.create_index('ix_withdrawals_status', 'withdrawals', ['status'])

    op.create_table(
        'ledger_entries',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('profile_id', sa.Uuid(), sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('kind', sa.String(32), nullable=False),
        sa.Column('amount', sa.DECIMAL(12, 2), nullable=False),
        sa.Column('earnings_delta', sa.DECIMAL(12, 2), server_default='0', nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=True),
        sa.Column('withdrawal_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_ledger_entries_profile_id', 'ledger_entries', ['profile_id'])
    op.create_index('ix_ledger_entries_order_id', 'ledger_entries', ['order_id'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('type', sa.String(20), server_default='info', nullable=False),
        sa.Column('is_read', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_user_read', 'notifications', ['user_id', 'is_read'])


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('ledger_entries')
    op.drop_table('withdrawals')
    op.drop_table('commissions')
    op.drop_table('orders')
    op.drop_table('products')
    op.drop_table('profiles')
