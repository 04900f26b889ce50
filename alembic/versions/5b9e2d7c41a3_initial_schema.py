"""initial_schema

Revision ID: 5b9e2d7c41a3
Revises:
Create Date: 2026-10-19 09:40:12.218734

Schema for the Sim platform:
- advisors (Sims) with x402 pricing and X verification state
- conversations/messages with escalation analysis per message
- knowledge base documents and pgvector chunk embeddings
- escalation rules and captured leads
- agent offerings and x402 purchases
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector

# revision identifiers, used by Alembic.
revision: str = '5b9e2d7c41a3'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Enable pgvector extension
    op.execute('CREATE EXTENSION IF NOT EXISTS vector')

    # ==========================================================================
    # Sims
    # ==========================================================================

    op.create_table('advisors',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('owner_id', sa.UUID(), nullable=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('short_description', sa.Text(), nullable=True),
        sa.Column('prompt', sa.Text(), nullable=True),
        sa.Column('model', sa.String(length=100), nullable=True),
        sa.Column('sim_category', sa.String(length=100), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('is_public', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('social_links', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('verification_status', sa.Enum('pending', 'verified', 'failed', name='verificationstatus'), nullable=True),
        sa.Column('verification_post_required', sa.Text(), nullable=True),
        sa.Column('verification_deadline', sa.DateTime(timezone=True), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('x402_price', sa.Numeric(precision=12, scale=6), nullable=True),
        sa.Column('x402_wallet_address', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_advisors_owner_id'), 'advisors', ['owner_id'], unique=False)
    op.create_index(op.f('ix_advisors_sim_category'), 'advisors', ['sim_category'], unique=False)
    op.create_index(op.f('ix_advisors_verification_status'), 'advisors', ['verification_status'], unique=False)

    # ==========================================================================
    # Conversations
    # ==========================================================================

    op.create_table('conversations',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('advisor_id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.ForeignKeyConstraint(['advisor_id'], ['advisors.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_conversations_advisor_id'), 'conversations', ['advisor_id'], unique=False)
    op.create_index(op.f('ix_conversations_user_id'), 'conversations', ['user_id'], unique=False)

    op.create_table('messages',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('conversation_id', sa.UUID(), nullable=False),
        sa.Column('role', sa.Enum('user', 'assistant', 'system', name='messagerole'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('intent', sa.String(length=50), nullable=False, server_default='general'),
        sa.Column('urgency_level', sa.Enum('low', 'medium', 'high', 'critical', name='urgencylevel'), nullable=False),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_messages_conversation_id'), 'messages', ['conversation_id'], unique=False)
    op.create_index(op.f('ix_messages_created_at'), 'messages', ['created_at'], unique=False)

    # ==========================================================================
    # Knowledge base
    # ==========================================================================

    op.create_table('advisor_documents',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('advisor_id', sa.UUID(), nullable=False),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('file_type', sa.String(length=50), nullable=False, server_default='text'),
        sa.Column('file_size', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['advisor_id'], ['advisors.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_advisor_documents_advisor_id'), 'advisor_documents', ['advisor_id'], unique=False)

    op.create_table('advisor_embeddings',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('document_id', sa.UUID(), nullable=False),
        sa.Column('advisor_id', sa.UUID(), nullable=False),
        sa.Column('chunk_text', sa.Text(), nullable=False),
        sa.Column('chunk_index', sa.Integer(), nullable=False),
        sa.Column('start_char', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('end_char', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('embedding', Vector(1536), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['document_id'], ['advisor_documents.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['advisor_id'], ['advisors.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_advisor_embeddings_document_id'), 'advisor_embeddings', ['document_id'], unique=False)
    op.create_index(op.f('ix_advisor_embeddings_advisor_id'), 'advisor_embeddings', ['advisor_id'], unique=False)
    # Cosine distance index for <=> similarity search
    op.execute(
        'CREATE INDEX ix_advisor_embeddings_embedding ON advisor_embeddings '
        'USING ivfflat (embedding vector_cosine_ops) WITH (lists = 100)'
    )

    # ==========================================================================
    # Escalation
    # ==========================================================================

    op.create_table('escalation_rules',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('advisor_id', sa.UUID(), nullable=False),
        sa.Column('score_threshold', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('message_count_threshold', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('urgency_keywords', postgresql.ARRAY(sa.Text()), nullable=False, server_default='{}'),
        sa.Column('value_keywords', postgresql.ARRAY(sa.Text()), nullable=False, server_default='{}'),
        sa.Column('vip_keywords', postgresql.ARRAY(sa.Text()), nullable=False, server_default='{}'),
        sa.Column('custom_keywords', postgresql.ARRAY(sa.Text()), nullable=False, server_default='{}'),
        sa.Column('contact_capture_enabled', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('contact_capture_message', sa.Text(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['advisor_id'], ['advisors.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_escalation_rules_advisor_id'), 'escalation_rules', ['advisor_id'], unique=False)

    op.create_table('conversation_captures',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('conversation_id', sa.UUID(), nullable=False),
        sa.Column('advisor_id', sa.UUID(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('name', sa.String(length=200), nullable=True),
        sa.Column('trigger_reason', sa.Text(), nullable=False),
        sa.Column('conversation_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('message_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.Enum('new', 'contacted', 'converted', 'archived', name='capturestatus'), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], ),
        sa.ForeignKeyConstraint(['advisor_id'], ['advisors.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_conversation_captures_conversation_id'), 'conversation_captures', ['conversation_id'], unique=False)
    op.create_index(op.f('ix_conversation_captures_advisor_id'), 'conversation_captures', ['advisor_id'], unique=False)
    op.create_index(op.f('ix_conversation_captures_created_at'), 'conversation_captures', ['created_at'], unique=False)

    # ==========================================================================
    # Commerce (x402)
    # ==========================================================================

    op.create_table('agent_offerings',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('agent_id', sa.UUID(), nullable=False),
        sa.Column('title', sa.String(length=300), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('price', sa.Numeric(precision=12, scale=6), nullable=False, server_default='0'),
        sa.Column('price_per_conversation', sa.Numeric(precision=12, scale=6), nullable=True),
        sa.Column('offering_type', sa.Enum('standard', 'digital_file', 'agent', name='offeringtype'), nullable=False),
        sa.Column('delivery_method', sa.String(length=100), nullable=True),
        sa.Column('digital_file_url', sa.Text(), nullable=True),
        sa.Column('required_info', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['agent_id'], ['advisors.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_agent_offerings_agent_id'), 'agent_offerings', ['agent_id'], unique=False)

    op.create_table('agent_purchases',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('offering_id', sa.UUID(), nullable=False),
        sa.Column('agent_id', sa.UUID(), nullable=False),
        sa.Column('buyer_wallet', sa.String(length=100), nullable=False),
        sa.Column('amount_paid', sa.Numeric(precision=12, scale=6), nullable=False),
        sa.Column('transaction_signature', sa.String(length=200), nullable=False),
        sa.Column('payment_network', sa.String(length=50), nullable=False),
        sa.Column('payment_method', sa.String(length=50), nullable=False, server_default='x402'),
        sa.Column('buyer_info', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('status', sa.Enum('pending', 'completed', 'refunded', name='purchasestatus'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['offering_id'], ['agent_offerings.id'], ),
        sa.ForeignKeyConstraint(['agent_id'], ['advisors.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_signature')
    )
    op.create_index(op.f('ix_agent_purchases_offering_id'), 'agent_purchases', ['offering_id'], unique=False)
    op.create_index(op.f('ix_agent_purchases_agent_id'), 'agent_purchases', ['agent_id'], unique=False)
    op.create_index(op.f('ix_agent_purchases_created_at'), 'agent_purchases', ['created_at'], unique=False)

    # ==========================================================================
    # Analytics
    # ==========================================================================

    op.create_table('analytics_events',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('advisor_id', sa.UUID(), nullable=True),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('event_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_analytics_events_advisor_id'), 'analytics_events', ['advisor_id'], unique=False)
    op.create_index(op.f('ix_analytics_events_created_at'), 'analytics_events', ['created_at'], unique=False)
    op.create_index(op.f('ix_analytics_events_event_type'), 'analytics_events', ['event_type'], unique=False)


def downgrade() -> None:
    # Drop tables in reverse order (respect foreign keys)
    op.drop_table('analytics_events')
    op.drop_table('agent_purchases')
    op.drop_table('agent_offerings')
    op.drop_table('conversation_captures')
    op.drop_table('escalation_rules')
    op.execute('DROP INDEX IF EXISTS ix_advisor_embeddings_embedding')
    op.drop_table('advisor_embeddings')
    op.drop_table('advisor_documents')
    op.drop_table('messages')
    op.drop_table('conversations')
    op.drop_table('advisors')

    # Drop enums
    op.execute('DROP TYPE IF EXISTS purchasestatus')
    op.execute('DROP TYPE IF EXISTS offeringtype')
    op.execute('DROP TYPE IF EXISTS capturestatus')
    op.execute('DROP TYPE IF EXISTS urgencylevel')
    op.execute('DROP TYPE IF EXISTS messagerole')
    op.execute('DROP TYPE IF EXISTS verificationstatus')
