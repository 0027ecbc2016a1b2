"""add session open deadline and edit kind

Revision ID: c3f92b6d1e58
Revises: a7d41e9c0b3f
Create Date: 2026-10-18 14:30:00.000000

Adds to generation_sessions:
1. kind - GENERATE (full page) or EDIT (line-range edit of the committed page)
2. base_html - the page an EDIT session applies its blocks to
3. open_deadline - PENDING sessions not opened by then fail and are refunded
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'c3f92b6d1e58'
down_revision: Union[str, None] = 'a7d41e9c0b3f'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add kind, base_html and open_deadline."""
    # Existing rows are all full-page generations
    op.add_column(
        'generation_sessions',
        sa.Column('kind', sa.String(length=20), nullable=False, server_default='GENERATE'),
    )
    op.add_column('generation_sessions', sa.Column('base_html', sa.Text(), nullable=True))
    op.add_column(
        'generation_sessions',
        sa.Column('open_deadline', sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    """Remove kind, base_html and open_deadline."""
    op.drop_column('generation_sessions', 'open_deadline')
    op.drop_column('generation_sessions', 'base_html')
    op.drop_column('generation_sessions', 'kind')
