"""calendar sync tables

Revision ID: 4c2a9d7e1f30
Revises:
Create Date: 2026-10-18 09:12:44.318201

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4c2a9d7e1f30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

task_status = sa.Enum('TODO', 'IN_PROGRESS', 'IN_REVIEW', 'COMPLETED', 'CANCELLED', name='taskstatus')
task_priority = sa.Enum('LOW', 'MEDIUM', 'HIGH', 'URGENT', name='taskpriority')
event_type = sa.Enum('MEETING', 'DEADLINE', 'REMINDER', 'MILESTONE', 'PERSONAL', name='eventtype')
sync_direction = sa.Enum('PUSH_ONLY', 'PULL_ONLY', 'BOTH', name='syncdirection')


def _sync_columns():
    return [
        sa.Column('external_calendar_id', sa.String(255), nullable=True),
        sa.Column('external_event_id', sa.String(255), nullable=True),
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""

    # 1. People
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('first_name', sa.String(120), nullable=True),
        sa.Column('last_name', sa.String(120), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'])

    op.create_table(
        'teams',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )

    # 2. Tasks
    op.create_table(
        'tasks',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', task_status, nullable=False),
        sa.Column('priority', task_priority, nullable=False),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('recurrence', sa.String(255), nullable=True),
        sa.Column('creator_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('assignee_id', sa.String(36), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('team_id', sa.String(36), sa.ForeignKey('teams.id'), nullable=True),
        *_sync_columns(),
        sa.UniqueConstraint('external_calendar_id', 'external_event_id', name='uq_tasks_external_event'),
    )
    op.create_index('ix_tasks_external_event_id', 'tasks', ['external_event_id'])

    op.create_table(
        'task_collaborators',
        sa.Column('task_id', sa.String(36), sa.ForeignKey('tasks.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
    )

    # 3. Events
    op.create_table(
        'events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', event_type, nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('all_day', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('recurrence', sa.String(255), nullable=True),
        sa.Column('creator_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('team_id', sa.String(36), sa.ForeignKey('teams.id'), nullable=True),
        sa.Column('task_id', sa.String(36), sa.ForeignKey('tasks.id', ondelete='SET NULL'), nullable=True),
        sa.Column('source', sa.String(20), nullable=False, server_default='internal'),
        *_sync_columns(),
        sa.UniqueConstraint('external_calendar_id', 'external_event_id', name='uq_events_external_event'),
    )
    op.create_index('ix_events_creator_id', 'events', ['creator_id'])
    op.create_index('ix_events_external_event_id', 'events', ['external_event_id'])

    # 4. Per-user sync configuration
    op.create_table(
        'calendar_sync_settings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('external_calendar_id', sa.String(255), nullable=True),
        sa.Column('sync_direction', sync_direction, nullable=False, server_default='BOTH'),
        sa.Column('sync_task_deadlines', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('sync_team_events', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('sync_personal_events', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('access_token_encrypted', sa.LargeBinary(), nullable=True),
        sa.Column('refresh_token_encrypted', sa.LargeBinary(), nullable=True),
        sa.Column('token_expiry', sa.DateTime(timezone=True), nullable=True),
        sa.Column('channel_id', sa.String(255), nullable=True),
        sa.Column('resource_id', sa.String(255), nullable=True),
        sa.Column('channel_expiry', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('ix_calendar_sync_settings_channel_id', 'calendar_sync_settings', ['channel_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_calendar_sync_settings_channel_id', table_name='calendar_sync_settings')
    op.drop_table('calendar_sync_settings')
    op.drop_index('ix_events_external_event_id', table_name='events')
    op.drop_index('ix_events_creator_id', table_name='events')
    op.drop_table('events')
    op.drop_table('task_collaborators')
    op.drop_index('ix_tasks_external_event_id', table_name='tasks')
    op.drop_table('tasks')
    op.drop_table('teams')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')

    for enum in (sync_direction, event_type, task_priority, task_status):
        enum.drop(op.get_bind(), checkfirst=True)
