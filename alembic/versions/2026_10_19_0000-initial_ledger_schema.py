"""initial ledger schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create accounts, transaction log and profiles."""

    # ========================================================================
    # Create user_points table
    # ========================================================================
    op.create_table(
        'user_points',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('balance', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('credits', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('xp', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('level', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('balance >= 0', name='ck_user_points_balance_non_negative'),
        sa.CheckConstraint('credits >= 0', name='ck_user_points_credits_non_negative'),
        sa.CheckConstraint('xp >= 0', name='ck_user_points_xp_non_negative'),
        sa.CheckConstraint('level >= 1', name='ck_user_points_level_positive'),
        sa.UniqueConstraint('user_id', name='uq_user_points_user_id'),
    )

    op.create_index('idx_user_points_xp', 'user_points', ['xp'])

    # ========================================================================
    # Create points_transactions table (append-only)
    # ========================================================================
    op.create_table(
        'points_transactions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('transaction_type', sa.String(20), nullable=False),
        sa.Column('currency', sa.String(10), nullable=False, server_default='points'),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('balance_after', sa.BigInteger(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('metadata', JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('idempotency_key', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('amount <> 0', name='ck_points_transaction_amount_non_zero'),
        sa.CheckConstraint('balance_after >= 0', name='ck_points_transaction_balance_non_negative'),
        sa.CheckConstraint(
            "transaction_type IN ('credit', 'bonus', 'referral', 'login', 'achievement', 'task', "
            "'activity', 'streak', 'goal', 'quiz', 'deduction', 'debit')",
            name='ck_points_transaction_type',
        ),
        sa.CheckConstraint("currency IN ('points', 'credits')", name='ck_points_transaction_currency'),
        sa.UniqueConstraint('user_id', 'idempotency_key', name='uq_points_transaction_idempotency'),
    )

    op.create_index('idx_points_transactions_user_created', 'points_transactions', ['user_id', 'created_at'])
    op.create_index('idx_points_transactions_type', 'points_transactions', ['transaction_type'])

    # ========================================================================
    # Create profiles table (owned by the profile component)
    # ========================================================================
    op.create_table(
        'profiles',
        sa.Column('user_id', sa.String(255), primary_key=True),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('avatar_url', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )


def downgrade() -> None:
    """Drop ledger schema."""
    op.drop_table('profiles')
    op.drop_index('idx_points_transactions_type', table_name='points_transactions')
    op.drop_index('idx_points_transactions_user_created', table_name='points_transactions')
    op.drop_table('points_transactions')
    op.drop_index('idx_user_points_xp', table_name='user_points')
    op.drop_table('user_points')
