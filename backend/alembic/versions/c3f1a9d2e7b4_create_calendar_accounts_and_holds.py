"""Create calendar_accounts and provisional_holds tables

Revision ID: c3f1a9d2e7b4
Revises:
Create Date: 2026-10-16 09:12:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'c3f1a9d2e7b4'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'calendar_accounts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_email', sa.String(), nullable=False),
        sa.Column('calendar_email', sa.String(), nullable=False, unique=True),
        sa.Column('calendar_type', sa.String(), nullable=False, server_default='google'),
        sa.Column('is_primary', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('oauth_credentials', sa.Text(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(), nullable=True),
        sa.Column('webhook_channel_id', sa.String(), nullable=True),
        sa.Column('webhook_resource_id', sa.String(), nullable=True),
        sa.Column('webhook_expires_at', sa.DateTime(), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()')),
    )
    # At most one primary account
    op.create_index(
        'uq_calendar_accounts_primary',
        'calendar_accounts',
        ['is_primary'],
        unique=True,
        postgresql_where=sa.text('is_primary'),
    )
    op.create_index('idx_calendar_accounts_active', 'calendar_accounts', ['is_active', 'priority'])

    op.create_table(
        'provisional_holds',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('booking_inquiry_id', sa.Uuid(), nullable=False),
        sa.Column('calendar_account_id', sa.Uuid(), sa.ForeignKey('calendar_accounts.id'), nullable=False),
        sa.Column('calendar_email', sa.String(), nullable=False),
        sa.Column('slot_start', sa.DateTime(), nullable=False),
        sa.Column('slot_end', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('released_at', sa.DateTime(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('confirmed_event_id', sa.String(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.CheckConstraint('slot_end > slot_start', name='ck_provisional_holds_slot_order'),
        sa.CheckConstraint('expires_at > created_at', name='ck_provisional_holds_expiry_order'),
        sa.CheckConstraint(
            "status IN ('active', 'confirmed', 'expired', 'released')",
            name='ck_provisional_holds_status',
        ),
    )
    op.create_index(
        'idx_provisional_holds_active',
        'provisional_holds',
        ['expires_at'],
        postgresql_where=sa.text("status = 'active'"),
    )
    op.create_index(
        'idx_provisional_holds_calendar',
        'provisional_holds',
        ['calendar_account_id', 'slot_start', 'slot_end'],
        postgresql_where=sa.text("status = 'active'"),
    )
    op.create_index('idx_provisional_holds_inquiry', 'provisional_holds', ['booking_inquiry_id'])

    # Active holds on one calendar may never overlap, even if the
    # application lock is bypassed.
    op.execute('CREATE EXTENSION IF NOT EXISTS btree_gist')
    op.execute(
        """
        ALTER TABLE provisional_holds
        ADD CONSTRAINT ex_provisional_holds_active_overlap
        EXCLUDE USING gist (
            calendar_account_id WITH =,
            tsrange(slot_start, slot_end, '[)') WITH &&
        ) WHERE (status = 'active')
        """
    )


def downgrade() -> None:
    op.execute('ALTER TABLE provisional_holds DROP CONSTRAINT IF EXISTS ex_provisional_holds_active_overlap')
    op.drop_index('idx_provisional_holds_inquiry', table_name='provisional_holds')
    op.drop_index('idx_provisional_holds_calendar', table_name='provisional_holds')
    op.drop_index('idx_provisional_holds_active', table_name='provisional_holds')
    op.drop_table('provisional_holds')

    op.drop_index('idx_calendar_accounts_active', table_name='calendar_accounts')
    op.drop_index('uq_calendar_accounts_primary', table_name='calendar_accounts')
    op.drop_table('calendar_accounts')
