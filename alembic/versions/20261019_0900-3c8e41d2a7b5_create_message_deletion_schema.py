"""create_message_deletion_schema

Revision ID: 3c8e41d2a7b5
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3c8e41d2a7b5'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create the messaging tables with deletion metadata.

    - messages carries the global deletion states plus media release bookkeeping
    - user_deleted_messages holds the per-user hide overlay
    - grace_delete_queue holds deferred deletions for offline recipients
    """
    op.create_table('users',
        sa.Column('id', sa.String(length=255), nullable=False),
        sa.Column('username', sa.String(length=255), nullable=True),
        sa.Column('role', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_role'), 'users', ['role'], unique=False)

    op.create_table('conversations',
        sa.Column('id', sa.String(length=255), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('group_admin_id', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('last_message_id', sa.String(length=255), nullable=True),
        sa.Column('last_message_content', sa.Text(), nullable=True),
        sa.Column('last_message_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['group_admin_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_conversations_type', 'conversations', ['type'], unique=False)

    op.create_table('conversation_members',
        sa.Column('conversation_id', sa.String(length=255), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('unread_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('last_read_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('conversation_id', 'user_id')
    )
    op.create_index('idx_conversation_members_user', 'conversation_members', ['user_id'], unique=False)
    op.create_index('idx_conversation_members_conversation', 'conversation_members', ['conversation_id'], unique=False)

    op.create_table('messages',
        sa.Column('id', sa.String(length=255), nullable=False),
        sa.Column('conversation_id', sa.String(length=255), nullable=False),
        sa.Column('sender_id', sa.String(length=255), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('media_ref', sa.String(length=1024), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('hard_deleted', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('hard_deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_for_everyone', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('deleted_for_everyone_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_for_everyone_by', sa.String(length=255), nullable=True),
        sa.Column('soft_deleted', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('soft_deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('soft_deleted_by', sa.String(length=255), nullable=True),
        sa.Column('auto_delete_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('media_release_pending', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('media_release_attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('media_release_next_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('media_released_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['sender_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_messages_conversation_id'), 'messages', ['conversation_id'], unique=False)
    op.create_index(op.f('ix_messages_sender_id'), 'messages', ['sender_id'], unique=False)
    op.create_index(op.f('ix_messages_created_at'), 'messages', ['created_at'], unique=False)
    op.create_index(
        'idx_messages_conversation_created',
        'messages',
        ['conversation_id', sa.text('created_at DESC'), sa.text('id DESC')],
        unique=False
    )
    op.create_index('idx_messages_auto_delete', 'messages', ['auto_delete_expires_at'], unique=False)
    op.create_index(
        'idx_messages_media_release',
        'messages',
        ['media_release_pending', 'media_release_next_attempt_at'],
        unique=False
    )

    op.create_table('message_status',
        sa.Column('message_id', sa.String(length=255), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['message_id'], ['messages.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('message_id', 'user_id')
    )
    op.create_index('idx_message_status_user', 'message_status', ['user_id', 'status'], unique=False)

    op.create_table('user_deleted_messages',
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('message_id', sa.String(length=255), nullable=False),
        sa.Column('delete_mode', sa.String(length=20), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['message_id'], ['messages.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id', 'message_id')
    )
    op.create_index('idx_user_deleted_messages_message', 'user_deleted_messages', ['message_id'], unique=False)
    op.create_index('idx_user_deleted_messages_user', 'user_deleted_messages', ['user_id'], unique=False)

    op.create_table('grace_delete_queue',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('conversation_id', sa.String(length=255), nullable=False),
        sa.Column('recipient_id', sa.String(length=255), nullable=False),
        sa.Column('message_ids', sa.JSON(), nullable=False),
        sa.Column('transition', sa.String(length=20), nullable=False),
        sa.Column('operation', sa.String(length=50), nullable=False),
        sa.Column('actor_id', sa.String(length=255), nullable=True),
        sa.Column('enqueued_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['recipient_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_grace_delete_recipient', 'grace_delete_queue', ['recipient_id', 'enqueued_at'], unique=False)


def downgrade() -> None:
    """Drop the messaging tables."""
    op.drop_index('idx_grace_delete_recipient', table_name='grace_delete_queue')
    op.drop_table('grace_delete_queue')
    op.drop_index('idx_user_deleted_messages_user', table_name='user_deleted_messages')
    op.drop_index('idx_user_deleted_messages_message', table_name='user_deleted_messages')
    op.drop_table('user_deleted_messages')
    op.drop_index('idx_message_status_user', table_name='message_status')
    op.drop_table('message_status')
    op.drop_index('idx_messages_media_release', table_name='messages')
    op.drop_index('idx_messages_auto_delete', table_name='messages')
    op.drop_index('idx_messages_conversation_created', table_name='messages')
    op.drop_index(op.f('ix_messages_created_at'), table_name='messages')
    op.drop_index(op.f('ix_messages_sender_id'), table_name='messages')
    op.drop_index(op.f('ix_messages_conversation_id'), table_name='messages')
    op.drop_table('messages')
    op.drop_index('idx_conversation_members_conversation', table_name='conversation_members')
    op.drop_index('idx_conversation_members_user', table_name='conversation_members')
    op.drop_table('conversation_members')
    op.drop_index('idx_conversations_type', table_name='conversations')
    op.drop_table('conversations')
    op.drop_index(op.f('ix_users_role'), table_name='users')
    op.drop_table('users')
