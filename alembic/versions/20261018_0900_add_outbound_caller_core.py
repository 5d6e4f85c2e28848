"""add_outbound_caller_core

Revision ID: 20261018_0900_core
Revises: None
Create Date: 2026-10-18 09:00:00

Adds: idempotency_records, user_agents, prompt_versions tables
Purpose: Idempotent voice platform operations and dynamic prompt caching
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261018_0900_core'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """
    Create core tables:
    1. idempotency_records - one row per attempt of a deduplicated operation
    2. user_agents - agents with prompt cache columns
    3. prompt_versions - numbered prompt versions per session
    """
    op.create_table(
        'idempotency_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('key', sa.String(length=255), nullable=False),
        sa.Column('operation', sa.String(length=100), nullable=False),
        sa.Column('request_hash', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('response', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'failed')",
            name='idempotency_status_check'
        ),
    )
    op.create_index('ix_idempotency_records_key', 'idempotency_records', ['key'], unique=True)
    op.create_index('ix_idempotency_operation_hash', 'idempotency_records', ['operation', 'request_hash'])
    op.create_index('ix_idempotency_records_expires_at', 'idempotency_records', ['expires_at'])

    op.create_table(
        'user_agents',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('configured_prompt', sa.Text(), nullable=True),
        sa.Column('dynamic_prompt', sa.Text(), nullable=True),
        sa.Column('prompt_cache_key', sa.Text(), nullable=True),
        sa.Column('prompt_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('retell_agent_id', sa.String(length=128), nullable=True),
        sa.Column('retell_llm_id', sa.String(length=128), nullable=True),
        sa.Column('customizations', sa.JSON(), nullable=True),
        sa.Column('settings', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_user_agents_user_id', 'user_agents', ['user_id'])
    op.create_index('ix_user_agents_user_id_id', 'user_agents', ['user_id', 'id'])

    op.create_table(
        'prompt_versions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.String(length=64), nullable=False),
        sa.Column('version_number', sa.Integer(), nullable=False),
        sa.Column('base_prompt', sa.Text(), nullable=False),
        sa.Column('states', sa.JSON(), nullable=False),
        sa.Column('markdown_source', sa.Text(), nullable=True),
        sa.Column('generation_context', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('version_number > 0', name='version_number_positive'),
        sa.UniqueConstraint('session_id', 'version_number', name='uq_prompt_versions_session_version'),
    )
    op.create_index('ix_prompt_versions_id', 'prompt_versions', ['id'])
    op.create_index('ix_prompt_versions_session_id', 'prompt_versions', ['session_id'])
    op.create_index('ix_prompt_versions_created_at', 'prompt_versions', ['created_at'])


def downgrade() -> None:
    """
    Drop core tables.
    """
    op.drop_index('ix_prompt_versions_created_at', table_name='prompt_versions')
    op.drop_index('ix_prompt_versions_session_id', table_name='prompt_versions')
    op.drop_index('ix_prompt_versions_id', table_name='prompt_versions')
    op.drop_table('prompt_versions')

    op.drop_index('ix_user_agents_user_id_id', table_name='user_agents')
    op.drop_index('ix_user_agents_user_id', table_name='user_agents')
    op.drop_table('user_agents')

    op.drop_index('ix_idempotency_records_expires_at', table_name='idempotency_records')
    op.drop_index('ix_idempotency_operation_hash', table_name='idempotency_records')
    op.drop_index('ix_idempotency_records_key', table_name='idempotency_records')
    op.drop_table('idempotency_records')
