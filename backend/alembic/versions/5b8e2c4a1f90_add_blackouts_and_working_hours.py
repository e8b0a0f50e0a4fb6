"""Add blackout_periods and working_hours tables

Revision ID: 5b8e2c4a1f90
Revises: c3f1a9d2e7b4
Create Date: 2026-10-16 09:40:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5b8e2c4a1f90'
down_revision: Union[str, None] = 'c3f1a9d2e7b4'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'blackout_periods',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_email', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('is_recurring', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('recurrence_pattern', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()')),
        sa.CheckConstraint('end_time > start_time', name='ck_blackout_periods_time_range'),
    )
    op.create_index(
        'idx_blackout_periods_user_time',
        'blackout_periods',
        ['user_email', 'start_time', 'end_time'],
    )

    op.create_table(
        'working_hours',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_email', sa.String(), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('timezone', sa.String(), nullable=False, server_default='America/New_York'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()')),
        sa.CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='ck_working_hours_day'),
        sa.CheckConstraint('end_time > start_time', name='ck_working_hours_range'),
        sa.UniqueConstraint('user_email', 'day_of_week', name='uq_working_hours_user_day'),
    )


def downgrade() -> None:
    op.drop_table('working_hours')
    op.drop_index('idx_blackout_periods_user_time', table_name='blackout_periods')
    op.drop_table('blackout_periods')
