"""create negotiation tables

Revision ID: 1c2d3e4f5a6b
Revises:
Create Date: 2026-10-18 00:01:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '1c2d3e4f5a6b'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create conversations table
    op.create_table(
        'conversations',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('buyer_id', sa.String(64), nullable=False),
        sa.Column('seller_id', sa.String(64), nullable=False),
        sa.Column('item_id', sa.String(64), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='ongoing'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_conversations_buyer_id', 'conversations', ['buyer_id'])
    op.create_index('ix_conversations_seller_id', 'conversations', ['seller_id'])

    # Create negotiation_proposals table
    op.create_table(
        'negotiation_proposals',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('conversation_id', sa.String(255), sa.ForeignKey('conversations.id'), nullable=False),
        sa.Column('version', sa.Integer, nullable=False),
        sa.Column('author_id', sa.String(64), nullable=False),
        sa.Column('author_role', sa.String(10), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('discount_percent', sa.Numeric(7, 4), nullable=False),
        sa.Column('final_price', sa.Numeric(20, 8), nullable=False),
        sa.Column('downpayment_percent', sa.Numeric(7, 4), nullable=False),
        sa.Column('payload', sa.JSON, nullable=False),
        sa.Column('submitted_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('conversation_id', 'version', name='uq_negotiation_proposals_conversation_version'),
    )
    op.create_index('ix_negotiation_proposals_conversation_id', 'negotiation_proposals', ['conversation_id'])

    # Create negotiation_index table
    op.create_table(
        'negotiation_index',
        sa.Column('conversation_id', sa.String(255), primary_key=True),
        sa.Column('buyer_id', sa.String(64), nullable=False),
        sa.Column('seller_id', sa.String(64), nullable=False),
        sa.Column('item_id', sa.String(64), nullable=True),
        sa.Column('role_type', sa.String(20), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='ongoing'),
        sa.Column('started_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_negotiation_index_buyer_id', 'negotiation_index', ['buyer_id'])
    op.create_index('ix_negotiation_index_seller_id', 'negotiation_index', ['seller_id'])
    op.create_index('ix_negotiation_index_updated_at', 'negotiation_index', ['updated_at'])

    # Create conversation_messages table
    op.create_table(
        'conversation_messages',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'conversation_id', sa.String(255),
            sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column('sender_id', sa.String(64), nullable=True),
        sa.Column('message_type', sa.String(20), nullable=False),
        sa.Column('content', sa.JSON, nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_conversation_messages_conversation_id', 'conversation_messages', ['conversation_id'])
    op.create_index('ix_conversation_messages_created_at', 'conversation_messages', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_conversation_messages_created_at', 'conversation_messages')
    op.drop_index('ix_conversation_messages_conversation_id', 'conversation_messages')
    op.drop_table('conversation_messages')

    op.drop_index('ix_negotiation_index_updated_at', 'negotiation_index')
    op.drop_index('ix_negotiation_index_seller_id', 'negotiation_index')
    op.drop_index('ix_negotiation_index_buyer_id', 'negotiation_index')
    op.drop_table('negotiation_index')

    op.drop_index('ix_negotiation_proposals_conversation_id', 'negotiation_proposals')
    op.drop_table('negotiation_proposals')

    op.drop_index('ix_conversations_seller_id', 'conversations')
    op.drop_index('ix_conversations_buyer_id', 'conversations')
    op.drop_table('conversations')
