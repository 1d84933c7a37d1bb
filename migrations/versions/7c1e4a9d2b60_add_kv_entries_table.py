"""Add kv_entries table backing the job queue and scheduler

Revision ID: 7c1e4a9d2b60
Revises:
Create Date: 2026-10-19 09:12:44.518303

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7c1e4a9d2b60'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Encoded tuple keys sort in tuple order, so prefix scans are PK range scans
    op.create_table(
        'kv_entries',
        sa.Column('key', sa.LargeBinary(), nullable=False, comment='Order-preserving encoded tuple key'),
        sa.Column('value', sa.JSON(), nullable=True, comment='JSON value'),
        sa.Column('versionstamp', sa.String(32), nullable=False, comment='Versionstamp of the last write'),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('key'),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('kv_entries')
