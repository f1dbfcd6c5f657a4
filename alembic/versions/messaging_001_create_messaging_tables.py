"""create messaging tables

Revision ID: messaging_001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = 'messaging_001'
down_revision = None
branch_labels = None
depends_on = None


def _base_columns():
    return [
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
    ]


def upgrade() -> None:
    # Create messages table
    op.create_table('messages',
        *_base_columns(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('sender_id', sa.Uuid(), nullable=False),
        sa.Column('receiver_id', sa.Uuid(), nullable=True),
        sa.Column('conversation_id', sa.Uuid(), nullable=True),
        sa.Column('text', sa.Text(), nullable=True),
        sa.Column('message_type', sa.String(length=10), nullable=False),
        sa.Column('attachment_url', sa.String(length=1000), nullable=True),
        sa.Column('attachment_name', sa.String(length=255), nullable=True),
        sa.Column('attachment_mime_type', sa.String(length=255), nullable=True),
        sa.Column('is_group', sa.Boolean(), nullable=False),
        sa.Column('group_name', sa.String(length=200), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    # Create indexes for messages
    op.create_index('idx_message_pair_time', 'messages', ['tenant_id', 'sender_id', 'receiver_id', 'sent_at'])
    op.create_index('idx_message_conversation_time', 'messages', ['conversation_id', 'sent_at'])
    op.create_index('idx_message_unread', 'messages', ['receiver_id', 'read_at'])
    for column in ('id', 'created_at', 'tenant_id', 'sender_id', 'receiver_id', 'conversation_id'):
        op.create_index(op.f(f'ix_messages_{column}'), 'messages', [column])

    # Create group_conversations table
    op.create_table('group_conversations',
        *_base_columns(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('avatar_url', sa.String(length=1000), nullable=True),
        sa.Column('created_by', sa.Uuid(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    for column in ('id', 'created_at', 'tenant_id'):
        op.create_index(op.f(f'ix_group_conversations_{column}'), 'group_conversations', [column])

    # Create conversation_participants table
    op.create_table('conversation_participants',
        *_base_columns(),
        sa.Column('conversation_id', sa.Uuid(), nullable=False),
        sa.Column('participant_id', sa.Uuid(), nullable=False),
        sa.Column('role', sa.String(length=10), nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_read_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['conversation_id'], ['group_conversations.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'idx_conversation_participant_unique', 'conversation_participants',
        ['conversation_id', 'participant_id'], unique=True
    )
    for column in ('id', 'created_at', 'conversation_id', 'participant_id'):
        op.create_index(op.f(f'ix_conversation_participants_{column}'), 'conversation_participants', [column])

    # Create user_presence table
    op.create_table('user_presence',
        *_base_columns(),
        sa.Column('participant_id', sa.Uuid(), nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('is_online', sa.Boolean(), nullable=False),
        sa.Column('last_seen', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_user_presence_participant_id'), 'user_presence', ['participant_id'], unique=True)
    for column in ('id', 'created_at', 'tenant_id'):
        op.create_index(op.f(f'ix_user_presence_{column}'), 'user_presence', [column])

    # Create typing_indicators table
    op.create_table('typing_indicators',
        *_base_columns(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('conversation_id', sa.Uuid(), nullable=False),
        sa.Column('participant_id', sa.Uuid(), nullable=False),
        sa.Column('is_typing', sa.Boolean(), nullable=False),
        sa.Column('signal_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_typing_unique', 'typing_indicators', ['conversation_id', 'participant_id'], unique=True)
    for column in ('id', 'created_at', 'tenant_id'):
        op.create_index(op.f(f'ix_typing_indicators_{column}'), 'typing_indicators', [column])

    # Create chat_requests table
    op.create_table('chat_requests',
        *_base_columns(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('sender_id', sa.Uuid(), nullable=False),
        sa.Column('receiver_id', sa.Uuid(), nullable=False),
        sa.Column('status', sa.String(length=10), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'idx_chat_request_pending_pair', 'chat_requests',
        ['tenant_id', 'sender_id', 'receiver_id'], unique=True,
        postgresql_where=sa.text("status = 'pending'")
    )
    for column in ('id', 'created_at', 'tenant_id', 'sender_id', 'receiver_id'):
        op.create_index(op.f(f'ix_chat_requests_{column}'), 'chat_requests', [column])


def downgrade() -> None:
    op.drop_table('chat_requests')
    op.drop_table('typing_indicators')
    op.drop_table('user_presence')
    op.drop_table('conversation_participants')
    op.drop_table('group_conversations')
    op.drop_table('messages')
