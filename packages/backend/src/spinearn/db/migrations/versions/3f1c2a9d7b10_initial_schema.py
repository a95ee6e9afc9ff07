"""initial schema: users, admin_messages, daily_leaderboard, events

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-19 09:12:41.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=True),
        sa.Column('role', sa.String(length=20), server_default='user', nullable=False),
        sa.Column('coins', sa.Integer(), server_default='0', nullable=False),
        sa.Column('profile_picture_url', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )
    op.create_index('idx_users_coins', 'users', ['coins'], unique=False)

    op.create_table(
        'admin_messages',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('admin_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_name', sa.String(length=100), nullable=True),
        sa.Column('user_email', sa.String(length=255), nullable=True),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('message_type', sa.String(length=20), server_default='info', nullable=False),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('read', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('sent_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['admin_id'], ['users.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_admin_messages_unread', 'admin_messages', ['user_id', 'read'], unique=False)
    op.create_index('idx_admin_messages_sent', 'admin_messages', ['user_id', 'sent_at'], unique=False)

    op.create_table(
        'daily_leaderboard',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('leaderboard_date', sa.Date(), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=True),
        sa.Column('profile_picture_url', sa.Text(), nullable=True),
        sa.Column('coins', sa.Integer(), nullable=False),
        sa.Column('rank', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('leaderboard_date', 'user_id', name='uq_daily_leaderboard_user'),
    )
    op.create_index('idx_daily_leaderboard_date', 'daily_leaderboard', ['leaderboard_date', 'rank'], unique=False)

    op.create_table(
        'events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('stream_id', sa.String(length=200), nullable=False),
        sa.Column('type', sa.String(length=100), nullable=False),
        sa.Column('data', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), server_default='{}', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_events_stream', 'events', ['stream_id', 'id'], unique=False)
    op.create_index('idx_events_type', 'events', ['type'], unique=False)
    op.create_index('idx_events_created', 'events', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_events_created', table_name='events')
    op.drop_index('idx_events_type', table_name='events')
    op.drop_index('idx_events_stream', table_name='events')
    op.drop_table('events')
    op.drop_index('idx_daily_leaderboard_date', table_name='daily_leaderboard')
    op.drop_table('daily_leaderboard')
    op.drop_index('idx_admin_messages_sent', table_name='admin_messages')
    op.drop_index('idx_admin_messages_unread', table_name='admin_messages')
    op.drop_table('admin_messages')
    op.drop_index('idx_users_coins', table_name='users')
    op.drop_table('users')
