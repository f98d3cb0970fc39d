"""create_containers_table

Revision ID: 6a1f3c9e2b70
Revises:
Create Date: 2026-10-17 09:12:41.530214

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '6a1f3c9e2b70'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'containers',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('device', sa.Text(), nullable=False),
        sa.Column('port', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        if_not_exists=True,
    )
    # Databases created before ports were constrained get the index here
    op.create_index(
        'ix_containers_port',
        'containers',
        ['port'],
        unique=True,
        if_not_exists=True,
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_containers_port', table_name='containers')
    op.drop_table('containers')
