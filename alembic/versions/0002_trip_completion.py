"""trip_completion

Revision ID: 0002_trip_completion
Revises: 0001_freight_auction_schema
Create Date: 2026-10-19 16:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0002_trip_completion'
down_revision: Union[str, None] = '0001_freight_auction_schema'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column('trips', sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True))
    op.add_column('trips', sa.Column('delivery_notes', sa.Text(), nullable=True))


def downgrade() -> None:
    op.drop_column('trips', 'delivery_notes')
    op.drop_column('trips', 'completed_at')
