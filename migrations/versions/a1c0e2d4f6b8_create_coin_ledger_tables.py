"""Create merchant coin ledger tables.

Revision ID: a1c0e2d4f6b8
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1c0e2d4f6b8'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create coin program, tier, balance and transaction tables."""
    op.create_table(
        'merchant_coin_configs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('merchant_id', sa.String(100), nullable=False),
        sa.Column('project_id', sa.String(100), nullable=True),
        sa.Column('coin_name', sa.String(50), nullable=False, server_default='Coins'),
        sa.Column('coin_symbol', sa.String(10), nullable=False),
        sa.Column('brand_color', sa.String(20), nullable=True),
        sa.Column('logo_url', sa.String(500), nullable=True),
        sa.Column('business_name', sa.String(255), nullable=True),
        sa.Column('business_type', sa.String(30), nullable=False, server_default='marketplace_seller'),
        sa.Column('business_status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('earn_rate', sa.Numeric(10, 4), nullable=False, server_default='1.0'),
        sa.Column('redemption_rate', sa.Numeric(10, 4), nullable=False, server_default='0.01'),
        sa.Column('min_redemption', sa.Numeric(14, 2), nullable=False, server_default='100'),
        sa.Column('max_redemption_pct', sa.Numeric(5, 2), nullable=False, server_default='50.0'),
        sa.Column('max_redemption_per_visit', sa.Numeric(14, 2), nullable=True),
        sa.Column('coins_expire_days', sa.Integer(), nullable=False, server_default='365'),
        sa.Column('fundraising_goal', sa.Numeric(14, 2), nullable=True),
        sa.Column('current_funding', sa.Numeric(14, 2), nullable=True, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('merchant_id', name='uq_merchant_coin_configs_merchant_id'),
    )

    op.create_table(
        'merchant_coin_tiers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('merchant_config_id', sa.Integer(), nullable=False),
        sa.Column('tier_name', sa.String(50), nullable=False),
        sa.Column('tier_level', sa.Integer(), nullable=False),
        sa.Column('min_coins_earned', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('min_purchases', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_total_spent', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('earn_multiplier', sa.Numeric(4, 2), nullable=False, server_default='1.0'),
        sa.Column('redemption_bonus_pct', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('exclusive_discounts', sa.Boolean(), server_default=sa.false()),
        sa.Column('early_access', sa.Boolean(), server_default=sa.false()),
        sa.Column('free_shipping', sa.Boolean(), server_default=sa.false()),
        sa.Column('priority_support', sa.Boolean(), server_default=sa.false()),
        sa.Column('benefits_description', sa.String(500), nullable=True),
        sa.Column('badge_icon', sa.String(20), nullable=True),
        sa.Column('badge_color', sa.String(20), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['merchant_config_id'], ['merchant_coin_configs.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('merchant_config_id', 'tier_level', name='uq_merchant_coin_tiers_level'),
    )
    op.create_index(
        'ix_merchant_coin_tiers_config_level', 'merchant_coin_tiers', ['merchant_config_id', 'tier_level']
    )

    op.create_table(
        'merchant_coin_balances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('holder_id', sa.String(100), nullable=False),
        sa.Column('merchant_config_id', sa.Integer(), nullable=False),
        sa.Column('total_earned', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('total_spent', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('total_expired', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('current_balance', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('current_tier', sa.String(50), nullable=False, server_default='bronze'),
        sa.Column('tier_progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lifetime_purchases', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lifetime_spent', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('last_earned_at', sa.DateTime(), nullable=True),
        sa.Column('last_spent_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['merchant_config_id'], ['merchant_coin_configs.id']),
        sa.UniqueConstraint('holder_id', 'merchant_config_id', name='uq_merchant_coin_balances_holder'),
        sa.CheckConstraint('current_balance >= 0', name='ck_merchant_coin_balances_non_negative'),
    )
    op.create_index(
        'ix_merchant_coin_balances_holder_balance', 'merchant_coin_balances', ['holder_id', 'current_balance']
    )

    op.create_table(
        'merchant_coin_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('balance_id', sa.Integer(), nullable=False),
        sa.Column('holder_id', sa.String(100), nullable=False),
        sa.Column('merchant_config_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(30), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('balance_before', sa.Numeric(14, 2), nullable=False),
        sa.Column('balance_after', sa.Numeric(14, 2), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('order_id', sa.String(100), nullable=True),
        sa.Column('donation_id', sa.String(100), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='completed'),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('remaining_amount', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('expiry_processed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('idempotency_key', sa.String(100), nullable=True),
        sa.Column('related_transaction_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['balance_id'], ['merchant_coin_balances.id']),
        sa.ForeignKeyConstraint(['merchant_config_id'], ['merchant_coin_configs.id']),
        sa.ForeignKeyConstraint(['related_transaction_id'], ['merchant_coin_transactions.id']),
        sa.UniqueConstraint(
            'merchant_config_id', 'idempotency_key', name='uq_merchant_coin_transactions_idempotency'
        ),
    )
    op.create_index(
        'ix_merchant_coin_transactions_holder_created',
        'merchant_coin_transactions',
        ['holder_id', 'merchant_config_id', 'created_at']
    )
    op.create_index(
        'ix_merchant_coin_transactions_expires',
        'merchant_coin_transactions',
        ['expires_at', 'expiry_processed']
    )


def downgrade():
    """Drop coin ledger tables."""
    op.drop_index('ix_merchant_coin_transactions_expires', table_name='merchant_coin_transactions')
    op.drop_index('ix_merchant_coin_transactions_holder_created', table_name='merchant_coin_transactions')
    op.drop_table('merchant_coin_transactions')
    op.drop_index('ix_merchant_coin_balances_holder_balance', table_name='merchant_coin_balances')
    op.drop_table('merchant_coin_balances')
    op.drop_index('ix_merchant_coin_tiers_config_level', table_name='merchant_coin_tiers')
    op.drop_table('merchant_coin_tiers')
    op.drop_table('merchant_coin_configs')
