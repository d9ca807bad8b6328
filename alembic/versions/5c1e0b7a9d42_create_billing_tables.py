"""create_billing_tables

Revision ID: 5c1e0b7a9d42
Revises: 
Create Date: 2026-10-18 10:12:41.118204

Production-safe migration: only creates tables that do not exist yet.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '5c1e0b7a9d42'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def table_exists(table_name: str) -> bool:
    """Check if a table exists in the database."""
    bind = op.get_bind()
    inspector = inspect(bind)
    return table_name in inspector.get_table_names()


def upgrade() -> None:
    if not table_exists('users'):
        op.create_table('users',
            sa.Column('id', sa.String(length=32), nullable=False),
            sa.Column('name', sa.String(), nullable=True),
            sa.Column('email', sa.String(), nullable=True),
            sa.Column('roles', sa.JSON(), nullable=False),
            sa.Column('max_posts', sa.Integer(), nullable=False),
            sa.Column('max_bookings', sa.Integer(), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    if not table_exists('plans'):
        op.create_table('plans',
            sa.Column('id', sa.String(length=32), nullable=False),
            sa.Column('name', sa.String(), nullable=False),
            sa.Column('description', sa.String(), nullable=True),
            sa.Column('price', sa.Float(), nullable=False),
            sa.Column('currency', sa.String(length=3), nullable=False),
            sa.Column('billing_cycle', sa.String(), nullable=False),
            sa.Column('mercadopago_plan_id', sa.String(), nullable=True),
            sa.Column('max_posts', sa.Integer(), nullable=False),
            sa.Column('max_bookings', sa.Integer(), nullable=False),
            sa.Column('features', sa.JSON(), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_plans_mercadopago_plan_id'), 'plans', ['mercadopago_plan_id'], unique=False)

    if not table_exists('subscriptions'):
        op.create_table('subscriptions',
            sa.Column('id', sa.String(length=32), nullable=False),
            sa.Column('user_id', sa.String(length=32), nullable=False),
            sa.Column('plan_id', sa.String(length=32), nullable=False),
            sa.Column('plan_name', sa.String(), nullable=True),
            sa.Column('status', sa.String(), nullable=False),
            sa.Column('mercadopago_subscription_id', sa.String(), nullable=True),
            sa.Column('subscription_email', sa.String(), nullable=True),
            sa.Column('amount', sa.Float(), nullable=False),
            sa.Column('currency', sa.String(length=3), nullable=False),
            sa.Column('billing_cycle', sa.String(), nullable=False),
            sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
            sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
            sa.Column('metadata', sa.JSON(), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.Column('created_by', sa.String(), nullable=False),
            sa.ForeignKeyConstraint(['plan_id'], ['plans.id'], ),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('idx_subscription_user_status', 'subscriptions', ['user_id', 'status'], unique=False)
        op.create_index(op.f('ix_subscriptions_mercadopago_subscription_id'), 'subscriptions', ['mercadopago_subscription_id'], unique=True)
        op.create_index(op.f('ix_subscriptions_plan_id'), 'subscriptions', ['plan_id'], unique=False)
        op.create_index(op.f('ix_subscriptions_status'), 'subscriptions', ['status'], unique=False)
        op.create_index(op.f('ix_subscriptions_user_id'), 'subscriptions', ['user_id'], unique=False)

    if not table_exists('payments'):
        op.create_table('payments',
            sa.Column('id', sa.String(length=32), nullable=False),
            sa.Column('subscription_id', sa.String(length=32), nullable=True),
            sa.Column('user_id', sa.String(length=32), nullable=True),
            sa.Column('mercadopago_payment_id', sa.String(), nullable=False),
            sa.Column('mercadopago_subscription_id', sa.String(), nullable=True),
            sa.Column('amount', sa.Float(), nullable=True),
            sa.Column('currency', sa.String(length=3), nullable=True),
            sa.Column('status', sa.String(), nullable=False),
            sa.Column('status_detail', sa.String(), nullable=True),
            sa.Column('operation_type', sa.String(), nullable=True),
            sa.Column('payment_method', sa.String(), nullable=True),
            sa.Column('external_reference', sa.String(), nullable=True),
            sa.Column('description', sa.String(), nullable=True),
            sa.Column('provider_data', sa.JSON(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_payments_external_reference'), 'payments', ['external_reference'], unique=False)
        op.create_index(op.f('ix_payments_mercadopago_payment_id'), 'payments', ['mercadopago_payment_id'], unique=True)
        op.create_index(op.f('ix_payments_subscription_id'), 'payments', ['subscription_id'], unique=False)
        op.create_index(op.f('ix_payments_user_id'), 'payments', ['user_id'], unique=False)

    if not table_exists('bookings'):
        op.create_table('bookings',
            sa.Column('id', sa.String(length=32), nullable=False),
            sa.Column('user_id', sa.String(length=32), nullable=True),
            sa.Column('post_id', sa.String(length=32), nullable=True),
            sa.Column('status', sa.String(), nullable=False),
            sa.Column('total_amount', sa.Float(), nullable=True),
            sa.Column('payment_info', sa.JSON(), nullable=True),
            sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_bookings_post_id'), 'bookings', ['post_id'], unique=False)
        op.create_index(op.f('ix_bookings_user_id'), 'bookings', ['user_id'], unique=False)

    if not table_exists('mercadopago_accounts'):
        op.create_table('mercadopago_accounts',
            sa.Column('id', sa.String(length=32), nullable=False),
            sa.Column('user_id', sa.String(length=32), nullable=False),
            sa.Column('mercadopago_user_id', sa.String(), nullable=False),
            sa.Column('access_token', sa.String(), nullable=False),
            sa.Column('is_active', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_mercadopago_accounts_mercadopago_user_id'), 'mercadopago_accounts', ['mercadopago_user_id'], unique=False)
        op.create_index(op.f('ix_mercadopago_accounts_user_id'), 'mercadopago_accounts', ['user_id'], unique=False)

    if not table_exists('upgrade_attempts'):
        op.create_table('upgrade_attempts',
            sa.Column('id', sa.String(length=32), nullable=False),
            sa.Column('user_id', sa.String(length=32), nullable=False),
            sa.Column('target_plan_id', sa.String(length=32), nullable=False),
            sa.Column('old_subscription_id', sa.String(length=32), nullable=True),
            sa.Column('new_subscription_id', sa.String(length=32), nullable=True),
            sa.Column('phase', sa.String(), nullable=False),
            sa.Column('outcome', sa.String(), nullable=False),
            sa.Column('error', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('idx_upgrade_user_outcome', 'upgrade_attempts', ['user_id', 'outcome'], unique=False)
        op.create_index(op.f('ix_upgrade_attempts_outcome'), 'upgrade_attempts', ['outcome'], unique=False)
        op.create_index(op.f('ix_upgrade_attempts_user_id'), 'upgrade_attempts', ['user_id'], unique=False)


def downgrade() -> None:
    for table_name in (
        'upgrade_attempts',
        'mercadopago_accounts',
        'bookings',
        'payments',
        'subscriptions',
        'plans',
        'users',
    ):
        if table_exists(table_name):
            op.drop_table(table_name)
