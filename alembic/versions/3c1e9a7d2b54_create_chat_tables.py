"""Create businesses, conversations, messages and away message deliveries

Revision ID: 3c1e9a7d2b54
Revises: 
Create Date: 2026-10-18 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1e9a7d2b54'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'businesses',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('business_name', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('business_logo', sa.String(), nullable=True),
        sa.Column('online', sa.Boolean(), nullable=False),
        sa.Column('away_message', sa.Text(), nullable=True),
        sa.Column('away_message_enabled', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_businesses_email', 'businesses', ['email'], unique=True)
    op.create_index('ix_businesses_phone', 'businesses', ['phone'], unique=True)

    op.create_table(
        'conversations',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('business_id', sa.String(length=36), nullable=False),
        sa.Column('customer_email', sa.String(), nullable=False),
        sa.Column('customer_name', sa.String(), nullable=True),
        sa.Column('customer_phone', sa.String(), nullable=True),
        sa.Column('pinned', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'customer_email', name='uq_conversations_business_customer'),
    )
    op.create_index('ix_conversations_business_id', 'conversations', ['business_id'])
    op.create_index(
        'ix_conversations_business_pinned_updated',
        'conversations',
        ['business_id', 'pinned', 'updated_at'],
    )

    op.create_table(
        'messages',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('conversation_id', sa.String(length=36), nullable=False),
        sa.Column('sender_type', sa.String(length=8), nullable=False),
        sa.Column('sender_id', sa.String(), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('image_url', sa.String(), nullable=True),
        sa.Column('status', sa.String(length=9), nullable=False),
        sa.Column('reply_to_id', sa.String(length=36), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_messages_conversation_created_id',
        'messages',
        ['conversation_id', 'created_at', 'id'],
    )

    op.create_table(
        'away_message_deliveries',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('conversation_id', sa.String(length=36), nullable=False),
        sa.Column('business_id', sa.String(length=36), nullable=False),
        sa.Column('content_digest', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('conversation_id', 'content_digest', name='uq_away_delivery_conversation_digest'),
    )


def downgrade() -> None:
    op.drop_table('away_message_deliveries')
    op.drop_index('ix_messages_conversation_created_id', table_name='messages')
    op.drop_table('messages')
    op.drop_index('ix_conversations_business_pinned_updated', table_name='conversations')
    op.drop_index('ix_conversations_business_id', table_name='conversations')
    op.drop_table('conversations')
    op.drop_index('ix_businesses_phone', table_name='businesses')
    op.drop_index('ix_businesses_email', table_name='businesses')
    op.drop_table('businesses')
