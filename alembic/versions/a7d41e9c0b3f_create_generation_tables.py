"""create generation tables

Revision ID: a7d41e9c0b3f
Revises:
Create Date: 2026-10-18 09:00:00.000000

This migration creates everything the generation core persists:
1. accounts - tier and the unified credit balance
2. credit_ledger - append-only record of every balance change
3. projects - committed HTML and conversation history
4. generation_sessions - status machine and delivery cursor per request
5. generation_snapshots - full HTML of every completed pass
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a7d41e9c0b3f'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the generation tables."""
    op.create_table(
        'accounts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tier', sa.String(length=20), nullable=False),
        sa.Column('credits', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),

        # A negative balance is refused by the database itself
        sa.CheckConstraint('credits >= 0', name='ck_accounts_credits_non_negative'),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'credit_ledger',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=False),
        # Not a foreign key: charges are written before the session row exists
        sa.Column('session_ref', sa.String(length=64), nullable=True),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
    )
    op.create_index(op.f('ix_credit_ledger_account_id'), 'credit_ledger', ['account_id'], unique=False)
    op.create_index(op.f('ix_credit_ledger_session_ref'), 'credit_ledger', ['session_ref'], unique=False)

    op.create_table(
        'projects',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('html', sa.Text(), nullable=True),
        sa.Column('conversation_history', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
    )
    op.create_index(op.f('ix_projects_account_id'), 'projects', ['account_id'], unique=False)

    op.create_table(
        'generation_sessions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('project_id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),

        # Policy, fixed at creation
        sa.Column('tier', sa.String(length=20), nullable=False),
        sa.Column('mode', sa.String(length=20), nullable=False),
        sa.Column('credit_cost', sa.Integer(), nullable=False),
        sa.Column('passes_total', sa.Integer(), nullable=False),
        sa.Column('passes_completed', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),

        # Durable inputs for resume after restart
        sa.Column('system_prompt', sa.Text(), nullable=False),
        sa.Column('sanitized_request', sa.Text(), nullable=False),
        sa.Column('conversation_history', sa.JSON(), nullable=False),
        sa.Column('brief_is_fallback', sa.Boolean(), nullable=False),

        # Outcome
        sa.Column('error_code', sa.String(length=40), nullable=True),
        sa.Column('pass_error_code', sa.String(length=40), nullable=True),
        sa.Column('refunded', sa.Boolean(), nullable=False),

        # Delivery
        sa.Column('last_seq', sa.Integer(), nullable=False),
        sa.Column('terminal_seq', sa.Integer(), nullable=True),
        sa.Column('resume_deadline', sa.DateTime(timezone=True), nullable=True),

        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
    )
    op.create_index(op.f('ix_generation_sessions_project_id'), 'generation_sessions', ['project_id'], unique=False)
    op.create_index(op.f('ix_generation_sessions_account_id'), 'generation_sessions', ['account_id'], unique=False)
    op.create_index(op.f('ix_generation_sessions_status'), 'generation_sessions', ['status'], unique=False)

    op.create_table(
        'generation_snapshots',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('session_id', sa.Uuid(), nullable=False),
        sa.Column('pass_number', sa.Integer(), nullable=False),
        sa.Column('html', sa.Text(), nullable=False),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['session_id'], ['generation_sessions.id'], ondelete='CASCADE'),
        # Snapshots are immutable, one per pass
        sa.UniqueConstraint('session_id', 'pass_number', name='uq_snapshot_session_pass'),
    )
    op.create_index(op.f('ix_generation_snapshots_session_id'), 'generation_snapshots', ['session_id'], unique=False)


def downgrade() -> None:
    """Drop the generation tables."""
    op.drop_index(op.f('ix_generation_snapshots_session_id'), table_name='generation_snapshots')
    op.drop_table('generation_snapshots')
    op.drop_index(op.f('ix_generation_sessions_status'), table_name='generation_sessions')
    op.drop_index(op.f('ix_generation_sessions_account_id'), table_name='generation_sessions')
    op.drop_index(op.f('ix_generation_sessions_project_id'), table_name='generation_sessions')
    op.drop_table('generation_sessions')
    op.drop_index(op.f('ix_projects_account_id'), table_name='projects')
    op.drop_table('projects')
    op.drop_index(op.f('ix_credit_ledger_session_ref'), table_name='credit_ledger')
    op.drop_index(op.f('ix_credit_ledger_account_id'), table_name='credit_ledger')
    op.drop_table('credit_ledger')
    op.drop_table('accounts')
