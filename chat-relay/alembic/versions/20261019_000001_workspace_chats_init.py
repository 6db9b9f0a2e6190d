# alembic/versions/20261019_000001_workspace_chats_init.py
"""workspaces, threads, chats, users, event logs

Revision ID: 20261019_000001_workspace_chats_init
Revises:
Create Date: 2026-10-19

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261019_000001_workspace_chats_init'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('username', sa.String(length=128), nullable=False, unique=True),
        sa.Column('role', sa.String(length=32), nullable=True, server_default='default'),
        sa.Column('daily_message_limit', sa.Integer(), nullable=True),
        sa.Column('suspended', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.CheckConstraint("role in ('admin','manager','default')", name='ck_users_role'),
    )

    op.create_table(
        'workspaces',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(length=256), nullable=False),
        sa.Column('slug', sa.String(length=256), nullable=False, unique=True),
        sa.Column('chat_provider', sa.String(length=64), nullable=True),
        sa.Column('chat_model', sa.String(length=256), nullable=True),
        sa.Column('system_prompt', sa.Text(), nullable=True),
        sa.Column('temperature', sa.Float(), nullable=True),
        sa.Column('history_count', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
    )
    op.create_index('ix_workspaces_slug', 'workspaces', ['slug'])

    op.create_table(
        'workspace_threads',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('workspace_id', sa.Integer(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('slug', sa.String(length=256), nullable=False, unique=True),
        sa.Column('name', sa.String(length=256), nullable=False, server_default='Thread'),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
    )
    op.create_index('ix_workspace_threads_workspace_id', 'workspace_threads', ['workspace_id'])
    op.create_index('ix_workspace_threads_slug', 'workspace_threads', ['slug'])

    op.create_table(
        'workspace_chats',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('workspace_id', sa.Integer(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('thread_id', sa.Integer(), sa.ForeignKey('workspace_threads.id', ondelete='CASCADE'), nullable=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('response', sa.Text(), nullable=False),
        sa.Column('include', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('feedback_score', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
    )
    op.create_index('ix_workspace_chats_workspace_id', 'workspace_chats', ['workspace_id'])
    op.create_index('ix_workspace_chats_thread_id', 'workspace_chats', ['thread_id'])
    op.create_index('ix_workspace_chats_user_id', 'workspace_chats', ['user_id'])
    op.create_index('ix_workspace_chats_created_at', 'workspace_chats', ['created_at'])

    op.create_table(
        'event_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('event', sa.String(length=128), nullable=False),
        sa.Column('metadata_json', sa.Text(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
    )
    op.create_index('ix_event_logs_event', 'event_logs', ['event'])
    op.create_index('ix_event_logs_occurred_at', 'event_logs', ['occurred_at'])


def downgrade() -> None:
    op.drop_index('ix_event_logs_occurred_at', table_name='event_logs')
    op.drop_index('ix_event_logs_event', table_name='event_logs')
    op.drop_table('event_logs')

    op.drop_index('ix_workspace_chats_created_at', table_name='workspace_chats')
    op.drop_index('ix_workspace_chats_user_id', table_name='workspace_chats')
    op.drop_index('ix_workspace_chats_thread_id', table_name='workspace_chats')
    op.drop_index('ix_workspace_chats_workspace_id', table_name='workspace_chats')
    op.drop_table('workspace_chats')

    op.drop_index('ix_workspace_threads_slug', table_name='workspace_threads')
    op.drop_index('ix_workspace_threads_workspace_id', table_name='workspace_threads')
    op.drop_table('workspace_threads')

    op.drop_index('ix_workspaces_slug', table_name='workspaces')
    op.drop_table('workspaces')

    op.drop_table('users')
