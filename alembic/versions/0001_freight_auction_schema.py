"""freight_auction_schema

Revision ID: 0001_freight_auction_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_freight_auction_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID = sa.String(length=36)
TS = sa.DateTime(timezone=True)

profile_role = sa.Enum('consigner', 'driver', name='profile_role_enum')
auction_status = sa.Enum('active', 'completed', 'cancelled', 'incomplete', name='auction_status_enum')
trip_status = sa.Enum('in_progress', 'completed', 'cancelled', name='trip_status_enum')


def upgrade() -> None:
    op.create_table(
        'auth_users',
        sa.Column('id', ID, primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('hashed_password', sa.String(), nullable=False),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', TS, server_default=sa.func.now(), nullable=False),
        sa.Column('last_login', TS, nullable=True),
    )
    op.create_index('ix_auth_users_email', 'auth_users', ['email'], unique=True)

    op.create_table(
        'profiles',
        sa.Column('id', ID, primary_key=True),
        sa.Column('role', profile_role, nullable=False),
        sa.Column('username', sa.String(), nullable=True),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('phone_number', sa.String(), nullable=True),
        sa.Column('address', sa.String(), nullable=True),
        sa.Column('vehicle_type', sa.String(), nullable=True),
        sa.Column('vehicle_number', sa.String(), nullable=True),
        sa.Column('created_at', TS, server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', TS, nullable=True),
    )
    op.create_index('ix_profiles_role', 'profiles', ['role'])
    op.create_index('ix_profiles_phone_number', 'profiles', ['phone_number'])

    # winning_bid_id получает внешний ключ после создания auction_bids
    op.create_table(
        'auctions',
        sa.Column('id', ID, primary_key=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('vehicle_type', sa.String(), nullable=True),
        sa.Column('body_type', sa.String(), nullable=True),
        sa.Column('wheel_type', sa.Integer(), nullable=True),
        sa.Column('length_value', sa.Numeric(10, 2), nullable=True),
        sa.Column('length_unit', sa.String(), nullable=True),
        sa.Column('start_time', TS, nullable=False),
        sa.Column('end_time', TS, nullable=False),
        sa.Column('consignment_date', TS, nullable=True),
        sa.Column('status', auction_status, nullable=False, server_default='active'),
        sa.Column('created_by', ID, sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('winner_id', ID, sa.ForeignKey('profiles.id'), nullable=True),
        sa.Column('winning_bid_id', ID, nullable=True),
        sa.Column('bid_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lowest_bid_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('highest_bid_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('created_at', TS, server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', TS, nullable=True),
    )
    op.create_index('ix_auctions_status', 'auctions', ['status'])
    op.create_index('ix_auctions_winner_id', 'auctions', ['winner_id'])
    op.create_index('ix_auctions_winning_bid_id', 'auctions', ['winning_bid_id'])
    op.create_index('ix_auctions_created_by_status', 'auctions', ['created_by', 'status'])

    op.create_table(
        'auction_bids',
        sa.Column('id', ID, primary_key=True),
        sa.Column('auction_id', ID, sa.ForeignKey('auctions.id'), nullable=False),
        sa.Column('user_id', ID, sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_winning_bid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', TS, server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('auction_id', 'user_id', name='uq_auction_bids_auction_user'),
    )
    op.create_index('ix_auction_bids_user_id', 'auction_bids', ['user_id'])
    op.create_index('ix_auction_bids_auction_amount', 'auction_bids', ['auction_id', 'amount'])

    op.create_foreign_key(
        'fk_auctions_winning_bid_id', 'auctions', 'auction_bids', ['winning_bid_id'], ['id']
    )

    op.create_table(
        'trips',
        sa.Column('id', ID, primary_key=True),
        sa.Column('auction_id', ID, sa.ForeignKey('auctions.id'), nullable=False),
        sa.Column('driver_id', ID, sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('consigner_id', ID, sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('status', trip_status, nullable=False, server_default='in_progress'),
        sa.Column('created_at', TS, server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', TS, nullable=True),
    )
    op.create_index('ix_trips_auction_id', 'trips', ['auction_id'])
    op.create_index('ix_trips_driver_id', 'trips', ['driver_id'])
    op.create_index('ix_trips_consigner_id', 'trips', ['consigner_id'])

    op.create_table(
        'auction_notifications',
        sa.Column('id', ID, primary_key=True),
        sa.Column('user_id', ID, sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('auction_id', ID, sa.ForeignKey('auctions.id'), nullable=True),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('created_at', TS, server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_auction_notifications_user_id', 'auction_notifications', ['user_id'])
    op.create_index('ix_auction_notifications_auction_id', 'auction_notifications', ['auction_id'])

    op.create_table(
        'auction_audit_logs',
        sa.Column('id', ID, primary_key=True),
        sa.Column('auction_id', ID, sa.ForeignKey('auctions.id'), nullable=True),
        sa.Column('user_id', ID, sa.ForeignKey('profiles.id'), nullable=True),
        sa.Column('action', sa.Text(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('created_at', TS, server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_auction_audit_logs_auction_id', 'auction_audit_logs', ['auction_id'])
    op.create_index('ix_auction_audit_logs_user_id', 'auction_audit_logs', ['user_id'])


def downgrade() -> None:
    op.drop_table('auction_audit_logs')
    op.drop_table('auction_notifications')
    op.drop_table('trips')
    op.drop_constraint('fk_auctions_winning_bid_id', 'auctions', type_='foreignkey')
    op.drop_table('auction_bids')
    op.drop_table('auctions')
    op.drop_table('profiles')
    op.drop_table('auth_users')

    bind = op.get_bind()
    trip_status.drop(bind, checkfirst=True)
    auction_status.drop(bind, checkfirst=True)
    profile_role.drop(bind, checkfirst=True)
